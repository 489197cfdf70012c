"""Output coalescer: turns per-session lines into ordered, host-tagged records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .hosts import HostDescriptor
from .session import StreamKind, TerminalState


class DeliveryPolicy(str, Enum):
    """How records reach the primary output."""

    STREAM = "stream"
    GROUP = "group"


class GroupOrder(str, Enum):
    """Host-to-host order of grouped blocks."""

    ADMISSION = "admission"
    COMPLETION = "completion"


@dataclass(frozen=True)
class OutputRecord:
    """One line (or line piece) of output from one host's stream.

    ``sequence_no`` is a run-wide arrival counter, so it strictly increases
    within each host's stdout and stderr.
    """

    host_index: int
    stream: StreamKind
    content: bytes
    sequence_no: int

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class HostBlock:
    """A finished host's complete output, emitted atomically in grouped mode."""

    host: HostDescriptor
    records: tuple[OutputRecord, ...]
    terminal: TerminalState
    sequence_no: int
    elapsed_ms: int = 0

    def content(self) -> bytes:
        return b"".join(r.content for r in self.records)


@dataclass
class _Pending:
    admission_no: int
    records: list[OutputRecord] = field(default_factory=list)


class Coalescer:
    """Applies a delivery policy to the lines read by the multiplexer.

    The coalescer performs no I/O: callers route what it returns to the
    terminal, the file mirror or the dashboard.
    """

    def __init__(
        self,
        policy: DeliveryPolicy = DeliveryPolicy.STREAM,
        group_order: GroupOrder = GroupOrder.ADMISSION,
    ):
        self.policy = policy
        self.group_order = group_order
        self._next_sequence = 0
        self._next_admission = 0
        self._next_completion = 0
        self._pending: dict[int, _Pending] = {}
        # Admission order: finished blocks waiting for earlier hosts
        self._held: dict[int, HostBlock] = {}
        self._next_to_emit = 0

    def admit(self, host: HostDescriptor) -> int:
        """Register a host at queue admission; returns its admission number."""
        if host.index in self._pending:
            raise ValueError(f"host {host.label} admitted twice")
        admission_no = self._next_admission
        self._next_admission += 1
        self._pending[host.index] = _Pending(admission_no)
        return admission_no

    def add(
        self, host: HostDescriptor, stream: StreamKind, content: bytes
    ) -> tuple[OutputRecord, list[OutputRecord]]:
        """Turn one line into a record.

        Returns the record and the records that may be rendered right now:
        the record itself when streaming, nothing when grouping.
        """
        pending = self._pending[host.index]
        record = OutputRecord(host.index, stream, content, self._next_sequence)
        self._next_sequence += 1

        if self.policy is DeliveryPolicy.STREAM:
            return record, [record]
        pending.records.append(record)
        return record, []

    def finish(
        self, host: HostDescriptor, terminal: TerminalState, elapsed_ms: int = 0
    ) -> list[HostBlock]:
        """Close a host; returns the blocks that became emittable, in order."""
        pending = self._pending.pop(host.index)
        if self.policy is DeliveryPolicy.STREAM:
            return []

        if self.group_order is GroupOrder.COMPLETION:
            block = HostBlock(
                host, tuple(pending.records), terminal, self._next_completion, elapsed_ms
            )
            self._next_completion += 1
            return [block]

        self._held[pending.admission_no] = HostBlock(
            host, tuple(pending.records), terminal, pending.admission_no, elapsed_ms
        )
        ready: list[HostBlock] = []
        while self._next_to_emit in self._held:
            ready.append(self._held.pop(self._next_to_emit))
            self._next_to_emit += 1
        return ready

    @property
    def open_hosts(self) -> int:
        """Hosts admitted but not yet finished."""
        return len(self._pending)

    @property
    def held_blocks(self) -> int:
        """Finished blocks waiting for an earlier-admitted host."""
        return len(self._held)
