"""I/O multiplexer: one wait point covering every live session's pipes."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Union

from .errors import MultiplexerError
from .logger import get_logger
from .session import Session, StreamKind, TerminalState

logger = get_logger(__name__)


@dataclass(frozen=True)
class DataReady:
    """Bytes read from one stream of a session."""

    session: Session
    stream: StreamKind
    data: bytes


@dataclass(frozen=True)
class ProcessExited:
    """A session's process exited and both of its pipes are drained."""

    session: Session
    terminal: TerminalState


IOEvent = Union[DataReady, ProcessExited]


@dataclass(frozen=True)
class _Reaped:
    session: Session
    returncode: int


@dataclass(frozen=True)
class _Fault:
    session: Session
    error: BaseException


class Multiplexer:
    """Observes many subprocesses through asyncio's single selector.

    Every registered pipe has a reader coroutine that forwards whatever bytes
    are available into one bounded channel; ``poll`` is the only place the
    coordinating path waits, and it wakes when *any* session has something.
    Because the channel is bounded, a host that floods output stalls only its
    own reader, and through it its own pipe.
    """

    READ_CHUNK = 64 * 1024
    MAX_EVENTS = 50

    def __init__(self, max_jobs: int, kill_grace: float = 2.0):
        self.kill_grace = kill_grace
        self._events: asyncio.Queue[DataReady | _Reaped | _Fault] = asyncio.Queue(
            maxsize=4 * max_jobs + 16
        )
        self._watchers: dict[Session, asyncio.Task[None]] = {}
        self._wakeup = asyncio.Event()

    def __len__(self) -> int:
        return len(self._watchers)

    @property
    def sessions(self) -> list[Session]:
        return list(self._watchers)

    def register(self, session: Session) -> None:
        """Start observing a freshly spawned session."""
        if session in self._watchers:
            raise ValueError(f"{session!r} is already registered")
        self._watchers[session] = asyncio.create_task(
            self._watch(session), name=f"sshp-watch-{session.host.index}"
        )

    def wakeup(self) -> None:
        """Make a pending ``poll`` return early (used for cancellation)."""
        self._wakeup.set()

    async def poll(self) -> list[IOEvent]:
        """Wait until any session has output or exited, then return events.

        May return an empty list when woken up or when a timeout deadline
        passed; overdue sessions are asked to terminate before returning.
        """
        first = None
        if self._events.empty():
            first = await self._wait(self._next_timeout())
        self._expire_overdue()

        events: list[IOEvent] = []
        if first is not None:
            self._handle(first, events)
        while len(events) < self.MAX_EVENTS and not self._events.empty():
            self._handle(self._events.get_nowait(), events)
        return events

    async def close(self) -> None:
        """Stop every watcher; used when the run is torn down early."""
        watchers = list(self._watchers.values())
        for task in watchers:
            task.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)
        self._watchers.clear()

    async def _wait(self, timeout: float | None) -> DataReady | _Reaped | _Fault | None:
        getter = asyncio.ensure_future(self._events.get())
        waker = asyncio.ensure_future(self._wakeup.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, waker}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waker.cancel()
            if not getter.done():
                # An item the getter was about to take stays in the queue
                getter.cancel()
        self._wakeup.clear()
        if getter in done:
            return getter.result()
        return None

    def _next_timeout(self) -> float | None:
        deadlines = [
            s.deadline
            for s in self._watchers
            if s.deadline is not None and not s.timed_out
        ]
        if not deadlines:
            return None
        return max(0.0, min(deadlines) - time.monotonic())

    def _expire_overdue(self) -> None:
        now = time.monotonic()
        for session in self._watchers:
            deadline = session.deadline
            if deadline is None or session.timed_out or now < deadline:
                continue
            logger.info(
                "session_timed_out",
                host=session.host.label,
                pid=session.pid,
                timeout=session.timeout,
            )
            session.mark_timed_out()
            session.terminate(self.kill_grace)

    def _handle(self, item: DataReady | _Reaped | _Fault, events: list[IOEvent]) -> None:
        if isinstance(item, DataReady):
            events.append(item)
        elif isinstance(item, _Reaped):
            self._watchers.pop(item.session, None)
            terminal = item.session.complete(item.returncode)
            events.append(ProcessExited(item.session, terminal))
        else:
            raise MultiplexerError(
                f"lost track of {item.session.host.label}: {item.error}"
            ) from item.error

    async def _watch(self, session: Session) -> None:
        try:
            await asyncio.gather(
                *(self._pump(session, kind, reader) for kind, reader in session.streams())
            )
            assert session.process is not None
            returncode = await session.process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._events.put(_Fault(session, e))
            return
        await self._events.put(_Reaped(session, returncode))

    async def _pump(
        self, session: Session, kind: StreamKind, reader: asyncio.StreamReader
    ) -> None:
        while True:
            data = await reader.read(self.READ_CHUNK)
            if not data:
                return
            await self._events.put(DataReady(session, kind, data))
