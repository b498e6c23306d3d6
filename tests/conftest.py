"""Shared fixtures and helpers: fake display channel, fake docker binary, sessions."""

import os
import stat
from unittest.mock import MagicMock

import pytest

from emutest.lib.config import WINDOW_HEIGHT, WINDOW_WIDTH
from emutest.lib.display_channel import DisplayChannel, Key
from emutest.lib.snapshot import Rect

pytest_plugins = ["pytester"]


# ---------------------------------------------------------------------------
# Shared helpers (importable by test files)
# ---------------------------------------------------------------------------


def read_log(log_file):
    """Return list of commands from a log file written by a mock binary."""
    if log_file.exists():
        return [line.strip() for line in log_file.read_text().splitlines() if line.strip()]
    return []


def make_mock_script(path, content="#!/usr/bin/env bash\nexit 0\n"):
    """Write an executable shell script to path."""
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)


def frame(*lit, width=WINDOW_WIDTH, height=WINDOW_HEIGHT):
    """Opaque black RGBA buffer with the given (x, y) pixels set to white."""
    data = bytearray(b"\x00\x00\x00\xff" * (width * height))
    for x, y in lit:
        offset = (y * width + x) * 4
        data[offset:offset + 4] = b"\xff\xff\xff\xff"
    return bytes(data)


class FakeDisplayChannel(DisplayChannel):
    """In-process display channel answering synchronously.

    `screens` are served in order; the last one repeats forever.
    `connect` is "ok", "error" or "silent" (never answers the handshake).
    """

    def __init__(self, screens=None, *, connect="ok", respond=True):
        super().__init__()
        self.screens = list(screens or [frame()])
        self.connect = connect
        self.respond = respond
        self.key_events = []
        self.frame_requests = []
        self.opened = False
        self.ended = False

    def open(self):
        self.opened = True
        if self.connect == "ok":
            self.emit("connected")
        elif self.connect == "error":
            self.emit("error", ConnectionRefusedError("connection refused"))

    def request_frame(self, incremental, x, y, width, height, request_id=None):
        self.frame_requests.append((incremental, x, y, width, height))
        if not self.respond:
            return
        data = self.screens.pop(0) if len(self.screens) > 1 else self.screens[0]
        self.emit("frame", Rect(x, y, width, height, data, request_id))

    def send_key_event(self, keysym, pressed):
        self.key_events.append((Key(keysym), pressed))

    def end(self):
        self.ended = True


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_bin_env(tmp_path):
    """Create a mock bin directory and environment with PATH pointing to it.

    Returns (mock_bin, env) where mock_bin is a Path to the bin directory
    and env is a copy of os.environ with mock_bin prepended to PATH.
    """
    mock_bin = tmp_path / "bin"
    mock_bin.mkdir()
    env = os.environ.copy()
    env["PATH"] = f"{mock_bin}:{env['PATH']}"
    return mock_bin, env


@pytest.fixture()
def elf(tmp_path):
    """A firmware file that exists on disk."""
    path = tmp_path / "app.elf"
    path.write_bytes(b"\x7fELF")
    return path


@pytest.fixture()
def make_session(elf):
    """Factory for Sessions wired to fakes: returns (session, channel, runtime)."""
    from emutest.lib.session import Session

    def factory(channel=None, runtime=None, **kwargs):
        channel = channel or FakeDisplayChannel()
        runtime = runtime or MagicMock(start_delay=0)
        kwargs.setdefault("sleep", lambda _s: None)
        session = Session(
            elf,
            runtime=runtime,
            display_factory=lambda: channel,
            transport_opener=MagicMock(),
            **kwargs,
        )
        return session, channel, runtime

    return factory
