"""Exception hierarchy for emulator sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from emutest.lib.comparison import ComparisonResult


class EmuTestError(Exception):
    """Base class for all emutest errors."""


class ConfigurationError(EmuTestError):
    """Missing or invalid firmware path, or an unusable configuration file."""


class InvalidStateError(EmuTestError):
    """Operation invoked in a session state that does not allow it."""


class NotInitializedError(InvalidStateError):
    """The emulator runtime handle was never created."""


class NotStartedError(InvalidStateError):
    """The session has not been started (or was already closed)."""


class NoSessionError(InvalidStateError):
    """No display connection is open."""


class EmuConnectionError(EmuTestError, ConnectionError):
    """The display channel or the command transport failed to open."""


class EmuTimeoutError(EmuTestError, TimeoutError):
    """A bounded wait exceeded its deadline."""


class RuntimeCommandError(EmuTestError):
    """A container runtime command failed."""


class TransportError(EmuTestError):
    """An APDU exchange failed or returned an error status word."""

    def __init__(self, message: str, status_word: int | None = None) -> None:
        super().__init__(message)
        self.status_word = status_word


class ComparisonFailure(EmuTestError, AssertionError):
    """Candidate snapshots differ from the golden reference."""

    def __init__(self, message: str, results: list[ComparisonResult]) -> None:
        super().__init__(message)
        self.results = results

    @property
    def failures(self) -> list[ComparisonResult]:
        return [r for r in self.results if not r.equal]
