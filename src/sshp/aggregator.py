"""Exit aggregation: N per-host outcomes into one run result."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .errors import EXIT_HOST_FAILURE, EXIT_SUCCESS, DuplicateOutcomeError
from .hosts import HostDescriptor
from .session import SessionState, TerminalState


class Outcome(str, Enum):
    """Classification of a terminal state."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


def classify(terminal: TerminalState) -> Outcome:
    """Map a terminal state to exactly one outcome."""
    if terminal.state is SessionState.EXITED:
        return Outcome.SUCCEEDED if terminal.exit_code == 0 else Outcome.FAILED
    if terminal.state is SessionState.SIGNALED:
        return Outcome.SIGNALED
    if terminal.state is SessionState.TIMED_OUT:
        return Outcome.TIMED_OUT
    if terminal.state is SessionState.SPAWN_FAILED:
        return Outcome.SPAWN_FAILED
    raise ValueError(f"{terminal.state} is not a terminal state")


@dataclass(frozen=True)
class HostResult:
    """Terminal outcome of one host."""

    host: HostDescriptor
    terminal: TerminalState
    outcome: Outcome

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED


@dataclass(frozen=True)
class RunResult:
    """Final result of a run, ordered by host input position."""

    per_host: tuple[HostResult, ...]

    @property
    def total(self) -> int:
        return len(self.per_host)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.per_host if r.outcome is outcome)

    @property
    def succeeded(self) -> int:
        return self.count(Outcome.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAILED)

    @property
    def signaled(self) -> int:
        return self.count(Outcome.SIGNALED)

    @property
    def timed_out(self) -> int:
        return self.count(Outcome.TIMED_OUT)

    @property
    def spawn_failed(self) -> int:
        return self.count(Outcome.SPAWN_FAILED)

    @property
    def failures(self) -> list[HostResult]:
        return [r for r in self.per_host if not r.succeeded]

    @property
    def exit_code(self) -> int:
        """0 only if every host succeeded, otherwise 1."""
        if all(r.succeeded for r in self.per_host):
            return EXIT_SUCCESS
        return EXIT_HOST_FAILURE


class ExitAggregator:
    """Collects exactly one terminal state per host."""

    def __init__(self, hosts: Iterable[HostDescriptor]):
        self._hosts = {host.index: host for host in hosts}
        self._results: dict[int, HostResult] = {}
        self._final: RunResult | None = None

    def __len__(self) -> int:
        return len(self._results)

    @property
    def complete(self) -> bool:
        return len(self._results) == len(self._hosts)

    def record(self, host: HostDescriptor, terminal: TerminalState) -> HostResult:
        """Record a host's terminal state. Recording a host twice is fatal."""
        if host.index not in self._hosts:
            raise KeyError(f"unknown host {host.label} (index {host.index})")
        if host.index in self._results:
            raise DuplicateOutcomeError(
                f"host {host.label} (index {host.index}) recorded twice"
            )
        result = HostResult(host, terminal, classify(terminal))
        self._results[host.index] = result
        return result

    def partial(self) -> list[HostResult]:
        """Results recorded so far, in input order."""
        return [self._results[i] for i in sorted(self._results)]

    def finalize(self) -> RunResult:
        """Build the run result; repeated calls return the same object."""
        if self._final is not None:
            return self._final
        missing = [self._hosts[i].label for i in self._hosts if i not in self._results]
        if missing:
            raise RuntimeError(f"cannot finalize, hosts without outcome: {', '.join(missing)}")
        self._final = RunResult(tuple(self.partial()))
        return self._final
