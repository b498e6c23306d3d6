"""Event-driven display connection to the emulator framebuffer.

A DisplayChannel emits three events:
- "connected": handshake finished (emitted once)
- "frame": a framebuffer update, payload is a Rect with RGBA bytes
- "error": the connection failed, payload is the exception

VNCDisplayChannel binds this interface to vncdotool. All vncdotool calls
run on one worker thread, so requests reach the RFB client in order and
never block the test-driver thread on the network.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from emutest.lib.errors import NoSessionError
from emutest.lib.snapshot import Rect

log = logging.getLogger(__name__)

EVENTS = ("connected", "frame", "error")


class Key(enum.IntEnum):
    """X11 keysyms of the two device buttons."""

    LEFT = 0xFF51
    RIGHT = 0xFF53


PRESSED = 1
NOT_PRESSED = 0


class DisplayChannel:
    """Listener registry plus the request side of a display connection."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[Callable[..., Any], bool]]] = {e: [] for e in EVENTS}
        self._lock = threading.Lock()

    # ── Events ──

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self._add(event, callback, once=False)

    def once(self, event: str, callback: Callable[..., Any]) -> None:
        """Register a listener removed after its first call."""
        self._add(event, callback, once=True)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        """Remove a listener. Unknown callbacks are ignored."""
        with self._lock:
            self._listeners[event] = [
                (cb, once) for cb, once in self._listeners[event] if cb is not callback
            ]

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners[event])

    def emit(self, event: str, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
            self._listeners[event] = [(cb, once) for cb, once in listeners if not once]
        for callback, _once in listeners:
            callback(*args)

    def _add(self, event: str, callback: Callable[..., Any], *, once: bool) -> None:
        if event not in self._listeners:
            msg = f"Unknown display event {event!r} (expected one of {', '.join(EVENTS)})"
            raise ValueError(msg)
        with self._lock:
            self._listeners[event].append((callback, once))

    # ── Requests ──

    def open(self) -> None:
        raise NotImplementedError

    def request_frame(
        self,
        incremental: bool,
        x: int,
        y: int,
        width: int,
        height: int,
        request_id: int | None = None,
    ) -> None:
        """Ask for one update; the "frame" event carries `request_id` back."""
        raise NotImplementedError

    def cancel_request(self, request_id: int) -> None:
        """Drop a request whose caller stopped waiting, if not yet served."""

    def send_key_event(self, keysym: int, pressed: bool) -> None:
        raise NotImplementedError

    def end(self) -> None:
        raise NotImplementedError


class VNCDisplayChannel(DisplayChannel):
    """DisplayChannel over vncdotool's threaded client."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        password: str | None = None,
        timeout: float = 10,
    ) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._client: Any = None
        self._executor: ThreadPoolExecutor | None = None
        self._abandoned: set[int] = set()

    @property
    def server(self) -> str:
        """vncdotool address; '::' means a raw port, not a display number."""
        return f"{self.host}::{self.port}"

    @property
    def is_open(self) -> bool:
        return self._executor is not None

    def open(self) -> None:
        """Start the handshake. Completion is reported as an event."""
        if self._executor is not None:
            msg = f"Display channel {self.server} already opened"
            raise RuntimeError(msg)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="emutest-vnc")
        self._executor.submit(self._handshake)

    def _handshake(self) -> None:
        from vncdotool import api as vnc_api

        try:
            self._client = vnc_api.connect(self.server, password=self.password, timeout=self.timeout)
            # The proxy connects lazily: the first request completes the RFB handshake
            self._client.refreshScreen(False)
        except Exception as e:  # noqa: BLE001
            log.debug("VNC handshake with %s failed: %s", self.server, e)
            self.emit("error", e)
            return
        self.emit("connected")

    def request_frame(
        self,
        incremental: bool,
        x: int,
        y: int,
        width: int,
        height: int,
        request_id: int | None = None,
    ) -> None:
        executor = self._require_open()
        executor.submit(self._fetch_frame, incremental, x, y, width, height, request_id)

    def cancel_request(self, request_id: int) -> None:
        with self._lock:
            self._abandoned.add(request_id)

    def _fetch_frame(
        self,
        incremental: bool,
        x: int,
        y: int,
        width: int,
        height: int,
        request_id: int | None,
    ) -> None:
        with self._lock:
            if request_id in self._abandoned:
                self._abandoned.discard(request_id)
                log.debug("Skipping abandoned frame request %d", request_id)
                return
        try:
            protocol = self._client.refreshScreen(incremental)
            region = protocol.screen.crop((x, y, x + width, y + height)).convert("RGBA")
        except Exception as e:  # noqa: BLE001
            self.emit("error", e)
            return
        finally:
            # Cancelled while already running: the frame is still emitted
            with self._lock:
                self._abandoned.discard(request_id)
        self.emit("frame", Rect(x, y, width, height, region.tobytes(), request_id))

    def send_key_event(self, keysym: int, pressed: bool) -> None:
        """Send one key transition and wait until the client accepted it."""
        executor = self._require_open()
        down = PRESSED if pressed else NOT_PRESSED
        executor.submit(lambda: self._client.keyEvent(int(keysym), down)).result(timeout=self.timeout)

    def end(self) -> None:
        """Disconnect. Safe to call on a channel that never opened."""
        executor, self._executor = self._executor, None
        if executor is None:
            return
        client, self._client = self._client, None
        if client is not None:
            executor.submit(client.disconnect)
        executor.shutdown(wait=False)

    def _require_open(self) -> ThreadPoolExecutor:
        if self._executor is None:
            msg = f"Display channel {self.server} is not open"
            raise NoSessionError(msg)
        return self._executor
