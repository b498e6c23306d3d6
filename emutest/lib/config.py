"""Session constants and start options.

Options can come from keyword arguments, a YAML file, or environment
variables:
    EMUTEST_HOST            Emulator host address
    EMUTEST_VNC_PORT        Display (VNC) port
    EMUTEST_TRANSPORT_PORT  APDU transport port
    EMUTEST_IMAGE           Emulator container image
    EMUTEST_PRESS_DELAY     Button settle delay in milliseconds
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from emutest.lib.errors import ConfigurationError

# ── Display region (device screen) ──
WINDOW_X = 0
WINDOW_Y = 0
WINDOW_WIDTH = 128
WINDOW_HEIGHT = 32

# ── Timeouts (milliseconds) ──
CAPTURE_TIMEOUT_MS = 1000
VNC_CONNECT_TIMEOUT_MS = 10000
KILL_TIMEOUT_MS = 10000
SCREEN_CHANGE_TIMEOUT_MS = 10000
SCREEN_POLL_INTERVAL_MS = 100

# ── Defaults ──
KEY_DELAY_MS = 350
DEFAULT_EMU_IMG = "speculos"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_VNC_PORT = 8001
DEFAULT_TRANSPORT_PORT = 9998
DEFAULT_START_DELAY_MS = 3000
BASE_NAME = "emutest-656d75-"


@dataclass
class StartOptions:
    """Options accepted by Session.start().

    `start_delay`, `custom`, `x11` and `image` are forwarded to the
    emulator runtime untouched.
    """

    logging: bool = False
    press_delay: int = KEY_DELAY_MS
    start_delay: int = DEFAULT_START_DELAY_MS
    custom: str = ""
    x11: bool = False
    image: str | None = None

    def merged(self, **overrides: Any) -> StartOptions:
        """Return a copy with non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **values)


def _field_names() -> set[str]:
    return {f.name for f in dataclasses.fields(StartOptions)}


def load_options(path: str | Path) -> StartOptions:
    """Load StartOptions from a YAML mapping. Unknown keys are rejected."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        msg = f"Config file not found: {path}"
        raise ConfigurationError(msg) from e
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {path}: {e}"
        raise ConfigurationError(msg) from e

    if not isinstance(data, dict):
        msg = f"{path}: expected a mapping, got {type(data).__name__}"
        raise ConfigurationError(msg)

    unknown = sorted(set(data) - _field_names())
    if unknown:
        msg = f"{path}: unknown option(s): {', '.join(unknown)}"
        raise ConfigurationError(msg)

    return StartOptions(**data)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from e


def connection_from_env() -> dict[str, Any]:
    """Host and ports for Session(), honouring EMUTEST_* overrides."""
    return {
        "host": os.environ.get("EMUTEST_HOST", DEFAULT_HOST),
        "vnc_port": _env_int("EMUTEST_VNC_PORT", DEFAULT_VNC_PORT),
        "transport_port": _env_int("EMUTEST_TRANSPORT_PORT", DEFAULT_TRANSPORT_PORT),
    }


def options_from_env(base: StartOptions | None = None) -> StartOptions:
    """Apply EMUTEST_IMAGE / EMUTEST_PRESS_DELAY on top of `base`."""
    base = base or StartOptions()
    return base.merged(
        image=os.environ.get("EMUTEST_IMAGE") or None,
        press_delay=_env_int("EMUTEST_PRESS_DELAY", base.press_delay),
    )
