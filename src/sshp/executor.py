"""Execution engine for sshp: a bounded worker pool over ssh subprocesses."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .aggregator import ExitAggregator, RunResult
from .coalescer import Coalescer, DeliveryPolicy, GroupOrder, HostBlock, OutputRecord
from .errors import ConfigError, RunCancelled
from .hosts import HostDescriptor
from .logger import get_logger
from .multiplexer import DataReady, IOEvent, Multiplexer
from .session import Session, SessionState, StreamKind
from .ssh import CommandBuilder

logger = get_logger(__name__)

# Type aliases for callbacks
OutputCallback = Callable[[HostDescriptor, OutputRecord], None]  # (host, record) -> None
BlockCallback = Callable[[HostBlock], None]  # (block) -> None
StatusCallback = Callable[[HostDescriptor, SessionState], None]  # (host, state) -> None
FinishCallback = Callable[[Session], None]  # (finished session) -> None


@dataclass
class StatusReport:
    """Snapshot of run progress."""

    pending: int
    finished: int
    total: int
    running: list[tuple[int | None, str]] = field(default_factory=list)  # (pid, host)


class Executor:
    """Schedules hosts onto at most ``max_jobs`` concurrent sessions.

    A single coroutine owns the pending queue, the active sessions, the
    coalescer and the aggregator; everything else only reports to it
    through the multiplexer.
    """

    def __init__(
        self,
        build_command: CommandBuilder,
        max_jobs: int,
        *,
        timeout: float | None = None,
        policy: DeliveryPolicy = DeliveryPolicy.STREAM,
        group_order: GroupOrder = GroupOrder.ADMISSION,
        max_line_length: int = 1024,
        kill_grace: float = 2.0,
        merge_stderr: bool = False,
        on_record: OutputCallback | None = None,
        on_output: OutputCallback | None = None,
        on_block: BlockCallback | None = None,
        on_status: StatusCallback | None = None,
        on_finish: FinishCallback | None = None,
    ):
        if max_jobs < 1:
            raise ConfigError("invalid value for `-m`: must be an integer > 0")
        self.build_command = build_command
        self.max_jobs = max_jobs
        self.timeout = timeout
        self.policy = policy
        self.group_order = group_order
        self.max_line_length = max_line_length
        self.kill_grace = kill_grace
        self.merge_stderr = merge_stderr
        self.on_record = on_record
        self.on_output = on_output
        self.on_block = on_block
        self.on_status = on_status
        self.on_finish = on_finish

        self.states: dict[int, SessionState] = {}
        self.peak_active = 0
        self._total = 0
        self._queue: deque[HostDescriptor] = deque()
        self._active: dict[int, Session] = {}
        self._mux: Multiplexer | None = None
        self._coalescer = Coalescer(policy, group_order)
        self._aggregator = ExitAggregator([])
        self._running = False
        self._cancelled = False
        self._terminating = False

    @property
    def active_count(self) -> int:
        return len(self._active)

    def cancel(self) -> None:
        """Cancel the whole run: active sessions are terminated, none admitted."""
        if self._cancelled:
            return
        logger.info("run_cancel_requested", active=len(self._active), pending=len(self._queue))
        self._cancelled = True
        if self._mux is not None:
            self._mux.wakeup()

    def status_report(self) -> StatusReport:
        return StatusReport(
            pending=len(self._queue),
            finished=len(self._aggregator),
            total=self._total,
            running=[(s.pid, s.host.label) for s in self._active.values()],
        )

    async def run(self, hosts: Iterable[HostDescriptor]) -> RunResult:
        """Run the command on every host and return the aggregated result."""
        if self._running:
            raise RuntimeError("executor is already running")
        hosts = list(hosts)
        self._running = True
        self._cancelled = False
        self._terminating = False
        self.states = {}
        self.peak_active = 0
        self._total = len(hosts)
        self._queue = deque(hosts)
        self._active = {}
        self._coalescer = Coalescer(self.policy, self.group_order)
        self._aggregator = ExitAggregator(hosts)
        self._mux = Multiplexer(self.max_jobs, self.kill_grace)

        logger.info(
            "run_started",
            hosts=len(hosts),
            max_jobs=self.max_jobs,
            policy=self.policy.value,
            timeout=self.timeout,
        )
        try:
            await self._admit()
            while self._active:
                if self._cancelled and not self._terminating:
                    self._terminate_all()
                for event in await self._mux.poll():
                    self._dispatch(event)
                await self._admit()
        except BaseException:
            await self._abort()
            raise
        finally:
            self._running = False

        if self._cancelled:
            raise RunCancelled("run interrupted", self._aggregator.partial())

        result = self._aggregator.finalize()
        logger.info(
            "run_finished",
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            signaled=result.signaled,
            timed_out=result.timed_out,
            spawn_failed=result.spawn_failed,
            peak_active=self.peak_active,
        )
        return result

    async def _admit(self) -> None:
        """Fill free slots from the queue, in input order."""
        assert self._mux is not None
        while self._queue and len(self._active) < self.max_jobs and not self._cancelled:
            host = self._queue.popleft()
            session = Session(
                host,
                self.build_command(host),
                timeout=self.timeout,
                max_line_length=self.max_line_length,
                merge_stderr=self.merge_stderr,
            )
            self._coalescer.admit(host)
            self._emit_status(host, SessionState.STARTING)

            if not await session.spawn():
                self._retire(session)
                continue

            self._active[host.index] = session
            self._mux.register(session)
            self.peak_active = max(self.peak_active, len(self._active))
            self._emit_status(host, SessionState.RUNNING)

    def _dispatch(self, event: IOEvent) -> None:
        session = event.session
        if isinstance(event, DataReady):
            for line in session.buffer_for(event.stream).feed(event.data):
                self._emit_line(session.host, event.stream, line)
            return

        # Exit: flush partial lines, then free the slot
        for stream in (StreamKind.STDOUT, StreamKind.STDERR):
            tail = session.buffer_for(stream).flush()
            if tail is not None:
                self._emit_line(session.host, stream, tail)
        del self._active[session.host.index]
        self._retire(session)

    def _retire(self, session: Session) -> None:
        host = session.host
        terminal = session.terminal
        assert terminal is not None
        self._aggregator.record(host, terminal)
        self._emit_status(host, terminal.state)
        if self.on_finish:
            self.on_finish(session)
        for block in self._coalescer.finish(host, terminal, session.elapsed_ms):
            if self.on_block:
                self.on_block(block)

    def _terminate_all(self) -> None:
        self._terminating = True
        for session in self._active.values():
            session.terminate(self.kill_grace)

    async def _abort(self) -> None:
        """Tear down after an error: nothing may outlive the run."""
        sessions = list(self._active.values())
        for session in sessions:
            session.kill()
        if self._mux is not None:
            await self._mux.close()
        waits = [
            asyncio.ensure_future(s.process.wait())
            for s in sessions
            if s.process is not None
        ]
        if waits:
            _, stuck = await asyncio.wait(waits, timeout=self.kill_grace + 1)
            for task in stuck:
                task.cancel()
        if sessions:
            logger.warning("run_aborted", killed=[s.host.label for s in sessions])

    def _emit_line(self, host: HostDescriptor, stream: StreamKind, content: bytes) -> None:
        """Record one line and forward whatever the policy releases."""
        record, emitted = self._coalescer.add(host, stream, content)
        if self.on_record:
            self.on_record(host, record)
        if self.on_output:
            for rec in emitted:
                self.on_output(host, rec)

    def _emit_status(self, host: HostDescriptor, state: SessionState) -> None:
        """Emit a state change for a host."""
        self.states[host.index] = state
        if self.on_status:
            self.on_status(host, state)


def execute(
    hosts: Iterable[HostDescriptor],
    concurrency: int,
    build_command: CommandBuilder,
    **kwargs,
) -> RunResult:
    """Synchronous entry point: run ``build_command(host)`` on every host."""
    executor = Executor(build_command, concurrency, **kwargs)
    return asyncio.run(executor.run(hosts))
