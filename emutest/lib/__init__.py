"""Emulator session stack.

- runtime: one emulator container per session (emulator_runtime)
- display: VNC framebuffer and button events (display_channel, snapshot_engine, input_driver)
- transport: APDU exchange over HTTP (transport, command_router)
- assertions: golden snapshots on disk (asset_store, comparison, report_generator)

Session ties the layers together.
"""

from emutest.lib.asset_store import AssetStore
from emutest.lib.comparison import ComparisonResult, compare_files, compare_snapshots
from emutest.lib.config import StartOptions, load_options
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
    RuntimeCommandError,
    TransportError,
)
from emutest.lib.session import Session, SessionState
from emutest.lib.snapshot import Rect, Snapshot
from emutest.lib.transport import HttpTransport

__all__ = [
    "AssetStore",
    "ComparisonFailure",
    "ComparisonResult",
    "ConfigurationError",
    "EmuConnectionError",
    "EmuTestError",
    "EmuTimeoutError",
    "HttpTransport",
    "InvalidStateError",
    "NoSessionError",
    "NotInitializedError",
    "NotStartedError",
    "Rect",
    "RuntimeCommandError",
    "Session",
    "SessionState",
    "Snapshot",
    "StartOptions",
    "TransportError",
    "compare_files",
    "compare_snapshots",
    "load_options",
]
