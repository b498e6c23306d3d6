"""Emulator session: runtime, display channel and APDU transport as one unit.

Lifecycle is a small state machine:

    CREATED --start()--> STARTED --close()--> CLOSED
       \\________________close()______________/

start() launches the container, opens the transport and the display
channel, then caches a baseline ("main menu") snapshot. If any step
fails the session is closed before the error propagates, so a caller
never sees a half-started session.
"""

from __future__ import annotations

import contextlib
import enum
import functools
import logging
import os
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

from emutest.lib import comparison, frame_codec
from emutest.lib.asset_store import AssetStore
from emutest.lib.command_router import CommandRouter
from emutest.lib.comparison import ComparisonResult
from emutest.lib.config import (
    BASE_NAME,
    CAPTURE_TIMEOUT_MS,
    DEFAULT_EMU_IMG,
    DEFAULT_HOST,
    DEFAULT_TRANSPORT_PORT,
    DEFAULT_VNC_PORT,
    KEY_DELAY_MS,
    KILL_TIMEOUT_MS,
    SCREEN_CHANGE_TIMEOUT_MS,
    SCREEN_POLL_INTERVAL_MS,
    VNC_CONNECT_TIMEOUT_MS,
    StartOptions,
)
from emutest.lib.display_channel import DisplayChannel, VNCDisplayChannel
from emutest.lib.emulator_runtime import DockerEmulatorRuntime, random_container_name
from emutest.lib.errors import (
    ComparisonFailure,
    ConfigurationError,
    EmuConnectionError,
    EmuTestError,
    EmuTimeoutError,
    InvalidStateError,
    NoSessionError,
    NotInitializedError,
    NotStartedError,
)
from emutest.lib.input_driver import InputDriver
from emutest.lib.snapshot import Snapshot
from emutest.lib.snapshot_engine import SnapshotEngine
from emutest.lib.transport import HttpTransport

log = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

PathLike = str | os.PathLike[str]


class SessionState(enum.Enum):
    CREATED = "created"
    STARTED = "started"
    CLOSED = "closed"


def requires_started(method: F) -> F:
    """Reject the call unless the session is STARTED."""

    @functools.wraps(method)
    def wrapper(self: Session, *args: Any, **kwargs: Any) -> Any:
        if self.state is not SessionState.STARTED:
            msg = f"{method.__name__}() needs a started session (state: {self.state.value})"
            raise NotStartedError(msg)
        return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class Session:
    """Context-managed emulator session with display + transport channels."""

    def __init__(
        self,
        elf_path: PathLike,
        host: str = DEFAULT_HOST,
        vnc_port: int = DEFAULT_VNC_PORT,
        transport_port: int = DEFAULT_TRANSPORT_PORT,
        *,
        image: str = DEFAULT_EMU_IMG,
        runtime: Any = None,
        name_factory: Callable[[], str] = random_container_name,
        display_factory: Callable[[], DisplayChannel] | None = None,
        transport_opener: Callable[[str], HttpTransport] = HttpTransport.open,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not elf_path:
            msg = "elf_path cannot be empty"
            raise ConfigurationError(msg)
        if not os.path.isfile(elf_path):
            msg = f"ELF file not found: {elf_path}. Did you compile?"
            raise ConfigurationError(msg)

        self.elf_path = os.fspath(elf_path)
        self.host = host
        self.vnc_port = vnc_port
        self.transport_port = transport_port
        self.transport_url = f"http://{host}:{transport_port}"
        self._press_delay = KEY_DELAY_MS
        self.logging = False
        self.connect_timeout_ms = VNC_CONNECT_TIMEOUT_MS
        self.capture_timeout_ms = CAPTURE_TIMEOUT_MS
        self.state = SessionState.CREATED

        if runtime is None:
            runtime = DockerEmulatorRuntime(
                self.elf_path,
                image,
                name_factory(),
                vnc_port=vnc_port,
                transport_port=transport_port,
            )
        self.runtime = runtime

        self._display_factory = display_factory or self._vnc_channel
        self._transport_opener = transport_opener
        self._sleep = sleep
        self._clock = clock

        self.display: DisplayChannel | None = None
        self.transport: HttpTransport | None = None
        self.command_router: CommandRouter | None = None
        self._engine: SnapshotEngine | None = None
        self._input: InputDriver | None = None
        self._main_menu: Snapshot | None = None

    def __enter__(self) -> Session:
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Session({self.elf_path!r}, {self.host}:{self.vnc_port}, {self.state.value})"

    @property
    def press_delay(self) -> int:
        """Settle time in ms after each button press and release."""
        return self._press_delay

    @press_delay.setter
    def press_delay(self, ms: int) -> None:
        self._press_delay = ms
        if self._input is not None:
            self._input.press_delay = ms

    def _log(self, msg: str, *args: Any) -> None:
        log.log(logging.INFO if self.logging else logging.DEBUG, msg, *args)

    def _vnc_channel(self) -> DisplayChannel:
        return VNCDisplayChannel(self.host, self.vnc_port, timeout=self.connect_timeout_ms / 1000)

    def delay(self, ms: int | None = None) -> None:
        """Blocking wait; None means the default key delay."""
        self._sleep((KEY_DELAY_MS if ms is None else ms) / 1000)

    # ── Lifecycle ──

    def start(self, options: StartOptions | None = None, **overrides: Any) -> None:
        """Launch the emulator, connect both channels, cache the baseline screen."""
        options = (options or StartOptions()).merged(**overrides)
        if self.runtime is None:
            msg = "No emulator runtime"
            raise NotInitializedError(msg)
        if self.state is not SessionState.CREATED:
            msg = f"Cannot start a session in state {self.state.value}"
            raise InvalidStateError(msg)

        self.press_delay = options.press_delay
        self.logging = options.logging
        self._log("Starting emulator for %s", self.elf_path)
        self.runtime.run(options)

        try:
            self.connect()
            self.state = SessionState.STARTED
            self._main_menu = self.snapshot()
        except Exception:
            try:
                self.close()
            except Exception as e:  # noqa: BLE001
                log.warning("Cleanup after failed start also failed: %s", e)
            raise
        self._log("Session started")

    def connect(self) -> None:
        """Wait for the emulator to boot, then open transport and display."""
        if self.runtime is None:
            msg = "Emulator runtime not initialized"
            raise NotInitializedError(msg)
        # No readiness probe: published container ports accept TCP before the emulator listens
        self._log("Waiting %d ms for emulator boot", self.runtime.start_delay)
        self.delay(self.runtime.start_delay)

        self.transport = self._transport_opener(self.transport_url)
        self._log("Transport open on %s", self.transport_url)
        self.connect_vnc()

    def connect_vnc(self) -> bool:
        """Open the display channel and reset both buttons to not-pressed."""
        channel = self._display_factory()
        ready: Future[bool] = Future()

        def on_connected() -> None:
            if not ready.done():
                ready.set_result(True)

        def on_error(error: BaseException) -> None:
            if not ready.done():
                ready.set_exception(error)

        channel.once("connected", on_connected)
        channel.once("error", on_error)
        self._log("VNC connection created %s:%d", self.host, self.vnc_port)
        try:
            channel.open()
            ready.result(timeout=self.connect_timeout_ms / 1000)
        except FutureTimeout as e:
            channel.end()
            msg = f"VNC handshake with {self.host}:{self.vnc_port} timed out after {self.connect_timeout_ms} ms"
            raise EmuTimeoutError(msg) from e
        except Exception as e:
            channel.end()
            log.error("Could not connect to port %d on %s", self.vnc_port, self.host)
            if isinstance(e, EmuTestError):
                raise
            msg = f"VNC connection to {self.host}:{self.vnc_port} failed: {e}"
            raise EmuConnectionError(msg) from e
        finally:
            ready.cancel()
            channel.off("connected", on_connected)
            channel.off("error", on_error)

        self.display = channel
        self._engine = SnapshotEngine(channel, timeout_ms=self.capture_timeout_ms)
        self._input = InputDriver(channel, self._engine, press_delay=self.press_delay, sleep=self._sleep)
        self._input.release_all()
        self._log("VNC session ready")
        return True

    def close(self) -> None:
        """Release the runtime and both channels. Safe to call repeatedly."""
        if self.runtime is None:
            msg = "No emulator runtime"
            raise NotInitializedError(msg)

        self._log("Closing session")
        try:
            self.runtime.stop()
        finally:
            self._release_channels()
            self.state = SessionState.CLOSED

    def _release_channels(self) -> None:
        display, self.display = self.display, None
        if display is not None:
            with contextlib.suppress(Exception):
                display.end()
        with contextlib.suppress(Exception):
            self.stop_command_router()
        self.command_router = None
        transport, self.transport = self.transport, None
        if transport is not None:
            with contextlib.suppress(Exception):
                transport.close()
        self._engine = None
        self._input = None

    # ── Snapshots and input ──

    @requires_started
    def snapshot(self, filename: PathLike | None = None) -> Snapshot:
        """Capture the device screen, optionally saving it as PNG."""
        if self._engine is None:
            msg = "No display session"
            raise NoSessionError(msg)
        return self._engine.capture(filename)

    @requires_started
    def get_main_menu_snapshot(self) -> Snapshot:
        if self._main_menu is None:
            msg = "Baseline snapshot not captured"
            raise NotStartedError(msg)
        return self._main_menu

    def press_left(self, filename: PathLike | None = None) -> Snapshot:
        return self._driver().press_left(filename)

    def press_right(self, filename: PathLike | None = None) -> Snapshot:
        return self._driver().press_right(filename)

    def press_both(self, filename: PathLike | None = None) -> Snapshot:
        return self._driver().press_both(filename)

    @property
    def buttons_pressed(self) -> dict[str, bool]:
        """Last sent state of each simulated button."""
        if self._input is None:
            return {"LEFT": False, "RIGHT": False}
        return {key.name: pressed for key, pressed in self._input.pressed.items()}

    def _driver(self) -> InputDriver:
        if self._input is None:
            msg = "No display session: start() the emulator first"
            raise NoSessionError(msg)
        return self._input

    # ── Test protocols ──

    @requires_started
    def wait_until_screen_is_not(
        self,
        reference: Snapshot,
        timeout_ms: int = SCREEN_CHANGE_TIMEOUT_MS,
    ) -> Snapshot:
        """Poll until the screen differs from `reference`; return the new screen.

        The deadline runs from the call, not from the last poll.
        """
        start = self._clock()
        reference_hex = reference.hex()
        current = self.snapshot()
        while current.hex() == reference_hex:
            elapsed_ms = (self._clock() - start) * 1000
            if elapsed_ms > timeout_ms:
                msg = f"Timeout waiting for screen to change ({timeout_ms} ms)"
                raise EmuTimeoutError(msg)
            self._sleep(SCREEN_POLL_INTERVAL_MS / 1000)
            current = self.snapshot()
        return current

    @requires_started
    def compare_snapshots_and_accept(
        self,
        path: PathLike,
        test_case_name: str,
        snapshot_count: int,
    ) -> list[ComparisonResult]:
        """Record the candidate sequence and compare it to the golden one.

        Captures the current screen as 00000, taps right `snapshot_count - 1`
        times (one capture each), then taps both buttons once (one more
        capture). Ordinals 0..snapshot_count-1 must match golden exactly.
        The tmp directory is left in place for the caller to accept.
        """
        if snapshot_count < 1:
            msg = f"snapshot_count must be >= 1, got {snapshot_count}"
            raise ValueError(msg)

        store = AssetStore(path, test_case_name)
        store.ensure_dirs()
        store.clear_tmp()

        self.snapshot(store.tmp_path(0))
        for i in range(1, snapshot_count):
            self.press_right(store.tmp_path(i))
        self.press_both(store.tmp_path(snapshot_count))

        self._log("Start comparison of %d snapshot(s) for %s", snapshot_count, test_case_name)
        results = self.compare_snapshots(path, test_case_name, snapshot_count)
        failures = [r for r in results if not r.equal]
        if failures:
            lines = "\n".join(f"  {r.message}" for r in failures)
            msg = f"{len(failures)}/{snapshot_count} snapshot(s) differ from golden for {test_case_name}:\n{lines}"
            raise ComparisonFailure(msg, results)
        return results

    @staticmethod
    def compare_snapshots(path: PathLike, test_case_name: str, snapshot_count: int) -> list[ComparisonResult]:
        """Compare tmp against golden for ordinals 0..snapshot_count-1 (no capture)."""
        store = AssetStore(path, test_case_name)
        return [comparison.compare_files(tmp, golden, i) for i, tmp, golden in store.pairs(snapshot_count)]

    # ── Command transport ──

    @requires_started
    def get_transport(self) -> HttpTransport:
        if self.transport is None:
            msg = "No transport"
            raise NoSessionError(msg)
        return self.transport

    @requires_started
    def start_command_router(self, host: str, port: int, options: dict[str, Any] | None = None) -> CommandRouter:
        """Expose the transport as an HTTP service for external probes."""
        if self.command_router is not None:
            msg = f"Command router already running on {self.command_router.host}:{self.command_router.port}"
            raise InvalidStateError(msg)
        router = CommandRouter(host, port, options, self.get_transport())
        router.start_server()
        self.command_router = router
        return router

    def stop_command_router(self) -> None:
        if self.command_router is not None:
            self.command_router.stop_server()
            self.command_router = None

    # ── Process-wide helpers ──

    @staticmethod
    def stop_all_emulators(timeout_ms: int = KILL_TIMEOUT_MS, prefix: str = BASE_NAME) -> None:
        """Remove every emulator container this tool spawned.

        A stuck container runtime cannot be recovered from here: if removal
        takes longer than `timeout_ms` the whole process exits with status 1.
        """

        def abort() -> None:
            log.critical("Could not remove all emulator containers within %d ms", timeout_ms)
            os._exit(1)

        timer = threading.Timer(timeout_ms / 1000, abort)
        timer.daemon = True
        timer.start()
        try:
            DockerEmulatorRuntime.kill_containers_by_name(prefix)
        finally:
            timer.cancel()

    @staticmethod
    def check_and_pull_image(image: str = DEFAULT_EMU_IMG) -> bool:
        return DockerEmulatorRuntime.check_and_pull_image(image)

    @staticmethod
    def save_rgba_png(snapshot: Snapshot, filename: PathLike) -> str:
        return frame_codec.save_png(snapshot, filename)

    @staticmethod
    def load_png_rgba(filename: PathLike) -> Snapshot:
        return frame_codec.load_png(filename)
