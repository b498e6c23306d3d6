"""Snapshot value type and the raw frame payload emitted by display channels."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from PIL import Image

CHANNELS = 4  # RGBA


@dataclass(frozen=True)
class Rect:
    """A framebuffer update as delivered by the display channel.

    `request_id` echoes the id passed to request_frame(), None for
    updates nobody asked for.
    """

    x: int
    y: int
    width: int
    height: int
    data: bytes = dataclasses.field(repr=False)
    request_id: int | None = None


@dataclass(frozen=True)
class Snapshot:
    """Immutable RGBA capture of the emulator screen."""

    width: int
    height: int
    data: bytes = dataclasses.field(repr=False)
    path: str | None = None

    def __post_init__(self) -> None:
        expected = self.width * self.height * CHANNELS
        if len(self.data) != expected:
            msg = (
                f"Snapshot buffer is {len(self.data)} bytes, expected "
                f"{expected} ({self.width}x{self.height}x{CHANNELS})"
            )
            raise ValueError(msg)
        # Accept bytearray/memoryview but always store bytes
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def from_rect(cls, rect: Rect, path: str | None = None) -> Snapshot:
        return cls(width=rect.width, height=rect.height, data=rect.data, path=path)

    @classmethod
    def from_image(cls, image: Image.Image, path: str | None = None) -> Snapshot:
        """Build a snapshot from any Pillow image (converted to RGBA)."""
        rgba = image.convert("RGBA")
        return cls(width=rgba.width, height=rgba.height, data=rgba.tobytes(), path=path)

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", (self.width, self.height), self.data)

    def hex(self) -> str:
        """Serialized buffer used for screen change detection."""
        return self.data.hex()

    def with_path(self, path: str) -> Snapshot:
        return dataclasses.replace(self, path=path)

    def same_pixels(self, other: Snapshot) -> bool:
        return (self.width, self.height, self.data) == (other.width, other.height, other.data)
