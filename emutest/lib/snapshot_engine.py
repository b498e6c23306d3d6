"""Single-frame capture over a display channel.

The protocol is strictly one request in flight: tag the request with a
fresh id, request a full (non-incremental) update of the device region,
wait for the first frame carrying that id. Frames answering an earlier,
timed-out request are ignored, and on timeout the request is cancelled
so a channel that has not served it yet can skip it.
"""

from __future__ import annotations

import logging
import os
import itertools
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout

from emutest.lib import frame_codec
from emutest.lib.config import (
    CAPTURE_TIMEOUT_MS,
    WINDOW_HEIGHT,
    WINDOW_WIDTH,
    WINDOW_X,
    WINDOW_Y,
)
from emutest.lib.display_channel import DisplayChannel
from emutest.lib.errors import EmuConnectionError, EmuTestError, EmuTimeoutError, InvalidStateError
from emutest.lib.snapshot import Rect, Snapshot

log = logging.getLogger(__name__)


class SnapshotEngine:
    """Requests and receives exactly one frame per capture()."""

    def __init__(
        self,
        channel: DisplayChannel,
        *,
        x: int = WINDOW_X,
        y: int = WINDOW_Y,
        width: int = WINDOW_WIDTH,
        height: int = WINDOW_HEIGHT,
        timeout_ms: int = CAPTURE_TIMEOUT_MS,
    ) -> None:
        self.channel = channel
        self.region = (x, y, width, height)
        self.timeout_ms = timeout_ms
        self._in_flight = threading.Lock()
        self._request_ids = itertools.count(1)

    def capture(self, filename: str | os.PathLike[str] | None = None) -> Snapshot:
        """Capture the device region, optionally persisting it as PNG."""
        if not self._in_flight.acquire(blocking=False):
            msg = "A capture is already in flight on this display channel"
            raise InvalidStateError(msg)
        try:
            rect = self._request_one_frame()
        finally:
            self._in_flight.release()

        snapshot = Snapshot.from_rect(rect)
        if filename is not None:
            path = frame_codec.save_png(snapshot, filename)
            snapshot = snapshot.with_path(path)
            log.debug("Snapshot saved to %s", path)
        return snapshot

    def _request_one_frame(self) -> Rect:
        future: Future[Rect] = Future()
        request_id = next(self._request_ids)

        def on_frame(rect: Rect) -> None:
            if rect.request_id != request_id:
                log.debug("Ignoring frame for request %s (waiting for %d)", rect.request_id, request_id)
                return
            if not future.done():
                future.set_result(rect)

        def on_error(error: BaseException) -> None:
            if not future.done():
                future.set_exception(error)

        self.channel.on("frame", on_frame)
        self.channel.once("error", on_error)
        try:
            self.channel.request_frame(False, *self.region, request_id=request_id)
            try:
                return future.result(timeout=self.timeout_ms / 1000)
            except FutureTimeout as e:
                self.channel.cancel_request(request_id)
                msg = f"No frame received within {self.timeout_ms} ms"
                raise EmuTimeoutError(msg) from e
            except EmuTestError:
                raise
            except Exception as e:
                msg = f"Display channel failed during capture: {e}"
                raise EmuConnectionError(msg) from e
        finally:
            future.cancel()
            self.channel.off("frame", on_frame)
            self.channel.off("error", on_error)
