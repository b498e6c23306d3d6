"""Pixel-exact snapshot comparison.

Golden comparisons tolerate nothing: a single differing pixel fails the
pair. pixelmatch is only used to render a human-readable diff image.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from emutest.lib import frame_codec
from emutest.lib.snapshot import CHANNELS, Snapshot


@dataclass
class ComparisonResult:
    """Outcome of comparing one candidate against its golden reference."""

    equal: bool
    index: int = 0
    diff_pixels: int = 0
    total_pixels: int = 0
    diff_locations: list[tuple[int, int]] = field(default_factory=list)
    bbox: tuple[int, int, int, int] | None = None
    tmp_path: str | None = None
    golden_path: str | None = None
    diff_path: str | None = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.equal


def diff_locations(actual: Snapshot, expected: Snapshot) -> list[tuple[int, int]]:
    """(x, y) of every pixel whose RGBA value differs. Sizes must match."""
    locations = []
    a, b = actual.data, expected.data
    for offset in range(0, len(a), CHANNELS):
        if a[offset:offset + CHANNELS] != b[offset:offset + CHANNELS]:
            pixel = offset // CHANNELS
            locations.append((pixel % actual.width, pixel // actual.width))
    return locations


def _bbox(locations: list[tuple[int, int]]) -> tuple[int, int, int, int] | None:
    if not locations:
        return None
    xs = [x for x, _ in locations]
    ys = [y for _, y in locations]
    return min(xs), min(ys), max(xs) + 1, max(ys) + 1


def compare_snapshots(actual: Snapshot, expected: Snapshot, index: int = 0) -> ComparisonResult:
    """Compare two in-memory snapshots pixel for pixel."""
    if (actual.width, actual.height) != (expected.width, expected.height):
        return ComparisonResult(
            equal=False,
            index=index,
            total_pixels=expected.width * expected.height,
            message=(
                f"#{index:05d}: size {actual.width}x{actual.height} != "
                f"golden {expected.width}x{expected.height}"
            ),
        )

    locations = diff_locations(actual, expected)
    total = actual.width * actual.height
    if not locations:
        message = f"#{index:05d}: identical"
    else:
        message = f"#{index:05d}: {len(locations)}/{total} pixels differ in {_bbox(locations)}"
    return ComparisonResult(
        equal=not locations,
        index=index,
        diff_pixels=len(locations),
        total_pixels=total,
        diff_locations=locations,
        bbox=_bbox(locations),
        message=message,
    )


def compare_files(
    tmp_path: str | os.PathLike[str],
    golden_path: str | os.PathLike[str],
    index: int = 0,
) -> ComparisonResult:
    """Load and compare a candidate PNG against its golden PNG."""
    tmp_path, golden_path = os.fspath(tmp_path), os.fspath(golden_path)
    for path, role in ((tmp_path, "candidate"), (golden_path, "golden")):
        if not os.path.isfile(path):
            return ComparisonResult(
                equal=False,
                index=index,
                tmp_path=tmp_path,
                golden_path=golden_path,
                message=f"#{index:05d}: missing {role} image {path}",
            )

    result = compare_snapshots(frame_codec.load_png(tmp_path), frame_codec.load_png(golden_path), index)
    result.tmp_path = tmp_path
    result.golden_path = golden_path
    return result


def write_diff_image(result: ComparisonResult, output: str | os.PathLike[str]) -> str | None:
    """Render a pixelmatch diff image for a failed file comparison.

    Returns the written path, or None when there is nothing to draw
    (equal pair, missing file or size mismatch).
    """
    from pixelmatch.contrib.PIL import pixelmatch

    if result.equal or not result.tmp_path or not result.golden_path or not result.diff_pixels:
        return None

    with Image.open(result.tmp_path) as tmp, Image.open(result.golden_path) as golden:
        img1 = tmp.convert("RGBA")
        img2 = golden.convert("RGBA")
    diff_img = Image.new("RGBA", img1.size)
    pixelmatch(img1, img2, output=diff_img, threshold=0.0, includeAA=True)

    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    diff_img.save(output)
    result.diff_path = str(output)
    return result.diff_path
