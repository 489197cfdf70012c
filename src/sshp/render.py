"""Pure rendering of records, blocks and summaries to terminal text."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .aggregator import RunResult
from .coalescer import HostBlock, OutputRecord
from .executor import StatusReport
from .hosts import HostDescriptor
from .session import SessionState, StreamKind, TerminalState

PROG_NAME = "sshp"

# ANSI colors for different hosts
HOST_COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
GREEN = "\033[32m"
RED = "\033[31m"
MAGENTA = "\033[35m"
CYAN = "\033[36m"
RESET = "\033[0m"

STREAM_COLORS = {
    StreamKind.STDOUT: GREEN,
    StreamKind.STDERR: RED,
}


@dataclass(frozen=True)
class JoinGroup:
    """Hosts whose combined output was byte-identical."""

    hosts: tuple[HostDescriptor, ...]
    output: bytes


def join_blocks(blocks: Iterable[HostBlock], max_output_length: int) -> list[JoinGroup]:
    """Group finished hosts by identical output, in host input order.

    Each host's output is cut to ``max_output_length`` bytes before
    comparing.
    """
    groups: dict[bytes, list[HostDescriptor]] = {}
    for block in sorted(blocks, key=lambda b: b.host.index):
        output = block.content()[:max_output_length]
        groups.setdefault(output, []).append(block.host)
    return [JoinGroup(tuple(hosts), output) for output, hosts in groups.items()]


@dataclass(frozen=True)
class Renderer:
    """Formats engine output; has no side effects."""

    color: bool = False
    anonymous: bool = False
    trim: bool = False

    def _paint(self, text: str, code: str) -> str:
        if not self.color or not text:
            return text
        return f"{code}{text}{RESET}"

    def host_tag(self, host: HostDescriptor) -> str:
        name = host.display_name(self.trim)
        if not self.color:
            return f"[{name}]"
        color = HOST_COLORS[host.index % len(HOST_COLORS)]
        return f"{color}[{name}]{RESET}"

    def _body(self, record: OutputRecord) -> str:
        text = record.text()
        if text.endswith("\n"):
            text = text[:-1]
        return self._paint(text, STREAM_COLORS[record.stream]) + "\n"

    def line(self, host: HostDescriptor, record: OutputRecord) -> str:
        """One streaming-mode line: ``[host] text``."""
        if self.anonymous:
            return self._body(record)
        return f"{self.host_tag(host)} {self._body(record)}"

    def block(self, block: HostBlock) -> str:
        """A grouped-mode block: header line, then the host's lines."""
        parts = [] if self.anonymous else [self.host_tag(block.host) + "\n"]
        parts.extend(self._body(record) for record in block.records)
        return "".join(parts)

    def exit_status(
        self, host: HostDescriptor, terminal: TerminalState, elapsed_ms: int
    ) -> str:
        """``[host] exited: 0 (12 ms)``"""
        ok = terminal.state is SessionState.EXITED and terminal.exit_code == 0
        status = self._paint(terminal.describe(), GREEN if ok else RED)
        elapsed = self._paint(str(elapsed_ms), MAGENTA)
        return f"{self.host_tag(host)} exited: {status} ({elapsed} ms)\n"

    def progress(self, done: int, total: int) -> str:
        counts = f"{self._paint(str(done), MAGENTA)}/{self._paint(str(total), MAGENTA)}"
        return f"[{self._paint(PROG_NAME, CYAN)}] finished {counts}\r"

    def join(self, groups: list[JoinGroup], total: int) -> str:
        """Join-mode report of unique outputs."""
        unique = len(groups)
        plural = "" if unique == 1 else "s"
        parts = [f"finished with {self._paint(str(unique), MAGENTA)} unique result{plural}\n\n"]
        for group in groups:
            count = f"{self._paint(str(len(group.hosts)), MAGENTA)}/{self._paint(str(total), MAGENTA)}"
            names = "".join(
                " " + self._paint(h.display_name(self.trim), CYAN) for h in group.hosts
            )
            header = f"hosts ({count}):{names}"
            if not group.output:
                parts.append(f"{header} {self._paint('- no output -', MAGENTA)}\n\n")
                continue
            output = group.output.decode("utf-8", errors="replace")
            if not output.endswith("\n"):
                output += "\n"
            parts.append(f"{header}\n{output}\n")
        return "".join(parts)

    def status(self, report: StatusReport) -> str:
        """Progress report printed on SIGUSR1."""
        lines = [
            f"status: {report.pending} pending, {len(report.running)} running, "
            f"{report.finished} finished ({report.total} total)"
        ]
        if report.running:
            lines.append("running processes:")
            lines.extend(f"--> pid {pid} {label}" for pid, label in report.running)
        return "\n".join(lines) + "\n"

    def failures(self, result: RunResult) -> str:
        """Trailing summary naming every host that did not succeed."""
        failed = [r.host.display_name(self.trim) for r in result.failures]
        if not failed:
            return ""
        return f"\nFailed hosts: {', '.join(failed)}\n"
