"""Error taxonomy for sshp and the process exit codes they map to."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .aggregator import HostResult


EXIT_SUCCESS = 0
EXIT_HOST_FAILURE = 1
EXIT_USAGE = 2
EXIT_RUNTIME = 3
EXIT_INTERRUPTED = 4


class SshpError(Exception):
    """Base class for errors that abort a run."""

    exit_code: int = EXIT_RUNTIME


class ConfigError(SshpError):
    """Invalid options, host file or defaults file. Raised before any spawn."""

    exit_code = EXIT_USAGE


class MultiplexerError(SshpError):
    """The multiplexer can no longer observe every active session."""

    exit_code = EXIT_RUNTIME


class OutputError(SshpError):
    """A per-host output file could not be written."""

    exit_code = EXIT_RUNTIME


class RunCancelled(SshpError):
    """The whole run was cancelled; active sessions have been terminated."""

    exit_code = EXIT_INTERRUPTED

    def __init__(self, message: str, partial: list[HostResult] | None = None):
        super().__init__(message)
        self.partial = partial or []


class DuplicateOutcomeError(RuntimeError):
    """A host was recorded twice. This is a programming error, never caught."""
