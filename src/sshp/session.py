"""Session lifecycle: one spawned ssh subprocess for one host."""

from __future__ import annotations

import asyncio
import errno
import os
import signal
import time
from dataclasses import dataclass
from enum import Enum

from .errors import MultiplexerError
from .hosts import HostDescriptor
from .logger import get_logger

logger = get_logger(__name__)

# Spawn errors that mean the machine is out of resources rather than the
# host's command being unrunnable
_RESOURCE_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.EAGAIN, errno.ENOMEM})


class StreamKind(str, Enum):
    """Which output channel of a session a chunk came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


class SessionState(Enum):
    """Lifecycle state of a session."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionState.STARTING, SessionState.RUNNING)


@dataclass(frozen=True)
class TerminalState:
    """Final outcome of a session."""

    state: SessionState
    exit_code: int | None = None
    signal: int | None = None
    error: str | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> TerminalState:
        """Build from a Popen-style return code (negative means signal)."""
        if returncode < 0:
            return cls(SessionState.SIGNALED, signal=-returncode)
        return cls(SessionState.EXITED, exit_code=returncode)

    def describe(self) -> str:
        """Short human-readable form, used after ``exited:``."""
        if self.state is SessionState.EXITED:
            return str(self.exit_code)
        if self.state is SessionState.SIGNALED:
            try:
                name = signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            return f"signal {self.signal} ({name})"
        if self.state is SessionState.TIMED_OUT:
            return "timed out"
        if self.state is SessionState.SPAWN_FAILED:
            return f"spawn failed: {self.error}"
        return self.state.value


class LineBuffer:
    """Reassembles lines from arbitrary byte chunks.

    Complete lines keep their trailing newline. A line longer than
    ``max_line_length`` bytes is cut into pieces of that size so a process
    that never writes a newline cannot grow the buffer without bound.
    """

    def __init__(self, max_line_length: int = 1024):
        if max_line_length < 1:
            raise ValueError("max_line_length must be positive")
        self.max_line_length = max_line_length
        self._pending = bytearray()

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, data: bytes) -> list[bytes]:
        """Add a chunk and return every line it completes."""
        buf = self._pending
        buf.extend(data)
        limit = self.max_line_length
        lines: list[bytes] = []
        pos = 0
        end = len(buf)
        while pos < end:
            nl = buf.find(b"\n", pos, min(end, pos + limit + 1))
            if nl != -1:
                cut = nl + 1
            elif end - pos > limit:
                cut = pos + limit
            else:
                break
            lines.append(bytes(buf[pos:cut]))
            pos = cut
        del buf[:pos]
        return lines

    def flush(self) -> bytes | None:
        """Return the unterminated tail, if any, and reset."""
        if not self._pending:
            return None
        tail = bytes(self._pending)
        self._pending.clear()
        return tail


class Session:
    """Runtime object for one host's in-flight remote command.

    The executor owns every session for its whole lifetime; the multiplexer
    only holds a registration that it drops when the process exits.
    """

    def __init__(
        self,
        host: HostDescriptor,
        argv: list[str],
        *,
        timeout: float | None = None,
        max_line_length: int = 1024,
        merge_stderr: bool = False,
    ):
        self.host = host
        self.argv = argv
        self.timeout = timeout
        self.merge_stderr = merge_stderr
        self.process: asyncio.subprocess.Process | None = None
        self.stdout_buffer = LineBuffer(max_line_length)
        self.stderr_buffer = LineBuffer(max_line_length)
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.state = SessionState.STARTING
        self.terminal: TerminalState | None = None
        self.timed_out = False
        self._kill_handle: asyncio.TimerHandle | None = None

    def __repr__(self) -> str:
        return f"<Session {self.host.label} pid={self.pid} {self.state.value}>"

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def deadline(self) -> float | None:
        """Monotonic time at which the session times out."""
        if self.timeout is None or self.started_at is None:
            return None
        return self.started_at + self.timeout

    @property
    def elapsed_ms(self) -> int:
        if self.started_at is None:
            return 0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return int((end - self.started_at) * 1000)

    @property
    def is_finished(self) -> bool:
        return self.terminal is not None

    def buffer_for(self, stream: StreamKind) -> LineBuffer:
        return self.stdout_buffer if stream is StreamKind.STDOUT else self.stderr_buffer

    def streams(self) -> list[tuple[StreamKind, asyncio.StreamReader]]:
        """The pipes to observe for this session."""
        assert self.process is not None
        streams = [(StreamKind.STDOUT, self.process.stdout)]
        if not self.merge_stderr:
            streams.append((StreamKind.STDERR, self.process.stderr))
        return streams

    async def spawn(self) -> bool:
        """Start the subprocess. Returns False if it could not be started.

        A missing or unrunnable binary is a per-host spawn failure; running
        out of descriptors or processes is fatal to the whole run.
        """
        self.started_at = time.monotonic()
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=(
                    asyncio.subprocess.STDOUT
                    if self.merge_stderr
                    else asyncio.subprocess.PIPE
                ),
                start_new_session=True,
            )
        except OSError as e:
            if e.errno in _RESOURCE_ERRNOS:
                raise MultiplexerError(
                    f"cannot spawn process for {self.host.label}: {e}"
                ) from e
            self._finish(TerminalState(SessionState.SPAWN_FAILED, error=str(e)))
            logger.warning("spawn_failed", host=self.host.label, error=str(e))
            return False
        except ValueError as e:
            # e.g. an embedded null byte in argv
            self._finish(TerminalState(SessionState.SPAWN_FAILED, error=str(e)))
            logger.warning("spawn_failed", host=self.host.label, error=str(e))
            return False

        self.state = SessionState.RUNNING
        logger.debug("session_spawned", host=self.host.label, pid=self.pid)
        return True

    def mark_timed_out(self) -> None:
        self.timed_out = True

    def terminate(self, grace: float) -> None:
        """Ask the process group to stop: SIGTERM now, SIGKILL after ``grace``.

        Never blocks; the escalation is scheduled on the running loop.
        """
        if self.process is None or self.is_finished or self._kill_handle is not None:
            return
        logger.debug("session_terminate", host=self.host.label, pid=self.pid, grace=grace)
        self._signal(signal.SIGTERM)
        loop = asyncio.get_running_loop()
        self._kill_handle = loop.call_later(grace, self.kill)

    def kill(self) -> None:
        """SIGKILL the process group immediately."""
        if self.process is None or self.is_finished:
            return
        logger.debug("session_kill", host=self.host.label, pid=self.pid)
        self._signal(signal.SIGKILL)

    def _signal(self, sig: signal.Signals) -> None:
        assert self.process is not None
        try:
            # start_new_session made the child its own process group leader
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            if self.process.returncode is None:
                self.process.send_signal(sig)

    def complete(self, returncode: int) -> TerminalState:
        """Record the reaped exit status and return the terminal state."""
        if self.timed_out:
            terminal = TerminalState(
                SessionState.TIMED_OUT,
                exit_code=returncode if returncode >= 0 else None,
                signal=-returncode if returncode < 0 else None,
            )
        else:
            terminal = TerminalState.from_returncode(returncode)
        self._finish(terminal)
        logger.debug(
            "session_exited",
            host=self.host.label,
            pid=self.pid,
            status=terminal.describe(),
            elapsed_ms=self.elapsed_ms,
        )
        return terminal

    def _finish(self, terminal: TerminalState) -> None:
        self.terminal = terminal
        self.state = terminal.state
        self.finished_at = time.monotonic()
        if self._kill_handle is not None:
            self._kill_handle.cancel()
            self._kill_handle = None
