"""Simulated button gestures.

Every gesture is press -> settle -> release -> settle -> capture. The
first settle lets the firmware register the press, the second lets it
render the resulting screen before it is sampled.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Sequence

from emutest.lib.config import KEY_DELAY_MS
from emutest.lib.display_channel import DisplayChannel, Key
from emutest.lib.errors import NoSessionError
from emutest.lib.snapshot import Snapshot
from emutest.lib.snapshot_engine import SnapshotEngine

log = logging.getLogger(__name__)


class InputDriver:
    """Left/right/both button taps followed by a snapshot."""

    def __init__(
        self,
        channel: DisplayChannel | None,
        engine: SnapshotEngine | None,
        *,
        press_delay: int = KEY_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel = channel
        self.engine = engine
        self.press_delay = press_delay
        self._sleep = sleep
        self.pressed: dict[Key, bool] = {Key.LEFT: False, Key.RIGHT: False}

    def press_left(self, filename: str | os.PathLike[str] | None = None) -> Snapshot:
        return self._click((Key.LEFT,), filename)

    def press_right(self, filename: str | os.PathLike[str] | None = None) -> Snapshot:
        return self._click((Key.RIGHT,), filename)

    def press_both(self, filename: str | os.PathLike[str] | None = None) -> Snapshot:
        return self._click((Key.LEFT, Key.RIGHT), filename)

    def release_all(self) -> None:
        """Force both buttons to not-pressed (used right after connecting)."""
        channel = self._require_channel()
        for key in Key:
            self._send(channel, key, pressed=False)

    def settle(self) -> None:
        self._sleep(self.press_delay / 1000)

    def _click(self, keys: Sequence[Key], filename: str | os.PathLike[str] | None) -> Snapshot:
        channel = self._require_channel()
        log.debug("Tap %s", "+".join(k.name for k in keys))
        try:
            for key in keys:
                self._send(channel, key, pressed=True)
            self.settle()
        finally:
            for key in keys:
                self._send(channel, key, pressed=False)
        self.settle()
        return self.engine.capture(filename)

    def _send(self, channel: DisplayChannel, key: Key, *, pressed: bool) -> None:
        channel.send_key_event(key, pressed)
        self.pressed[key] = pressed

    def _require_channel(self) -> DisplayChannel:
        if self.channel is None or self.engine is None:
            msg = "No display session: start() the emulator first"
            raise NoSessionError(msg)
        return self.channel
