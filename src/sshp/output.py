"""Output sinks: the primary terminal stream and the per-host file mirror."""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path
from typing import TextIO

from .aggregator import RunResult
from .coalescer import HostBlock, OutputRecord
from .errors import ConfigError, OutputError
from .hosts import HostDescriptor
from .render import Renderer, join_blocks
from .session import Session, StreamKind

# Stems are cut well below NAME_MAX to leave room for the index and suffix
MAX_STEM_BYTES = 200

FILE_SUFFIXES = {
    StreamKind.STDOUT: ".out",
    StreamKind.STDERR: ".err",
}


class TerminalSink:
    """Writes rendered output to the terminal as the executor releases it."""

    def __init__(
        self,
        renderer: Renderer,
        stream: TextIO | None = None,
        *,
        silent: bool = False,
        exit_codes: bool = False,
        join: bool = False,
        max_output_length: int = 8192,
        total: int = 0,
    ):
        self.renderer = renderer
        self.stream = stream if stream is not None else sys.stdout
        self.silent = silent
        self.exit_codes = exit_codes
        self.join = join
        self.max_output_length = max_output_length
        self.total = total
        self._joined: list[HostBlock] = []
        self._done = 0
        self._show_progress = join and self.stream.isatty()

    def _write(self, text: str) -> None:
        if text:
            self.stream.write(text)
            self.stream.flush()

    def start(self) -> None:
        if self._show_progress:
            self._write(self.renderer.progress(0, self.total))

    def output(self, host: HostDescriptor, record: OutputRecord) -> None:
        """Streaming mode: one line as soon as it is complete."""
        if not self.silent:
            self._write(self.renderer.line(host, record))

    def block(self, block: HostBlock) -> None:
        """Grouped and join modes: a finished host's whole output."""
        if self.join:
            self._joined.append(block)
            return
        if not self.silent:
            self._write(self.renderer.block(block))
        if self.exit_codes:
            self._write(self.renderer.exit_status(block.host, block.terminal, block.elapsed_ms))

    def finish(self, session: Session, grouped: bool = False) -> None:
        """A host reached its terminal state."""
        assert session.terminal is not None
        if self.join:
            self._done += 1
            if self._show_progress:
                self._write(self.renderer.progress(self._done, self.total))
                if self._done == self.total:
                    self._write("\n\n")
            return
        # Grouped modes print the exit line after the block instead
        if self.exit_codes and not grouped:
            self._write(
                self.renderer.exit_status(session.host, session.terminal, session.elapsed_ms)
            )

    def close(self, result: RunResult) -> None:
        """Write whatever is reported only once the run is over."""
        if self.join:
            groups = join_blocks(self._joined, self.max_output_length)
            self._write(self.renderer.join(groups, result.total))


class FileSink:
    """Mirrors each host's raw output into ``<dir>/<label>.out`` and ``.err``.

    Files are appended to record by record, so nothing is held in memory
    and no file handle outlives a single write.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"cannot create output directory {self.directory}: {e}") from e
        if not self.directory.is_dir():
            raise ConfigError(f"{self.directory} exists and is not a directory")
        self._stems: dict[int, str] = {}
        self._used: set[str] = set()
        self._started: set[tuple[int, StreamKind]] = set()

    def path_for(self, host: HostDescriptor, stream: StreamKind) -> Path:
        """Deterministic file path for one host's stream."""
        stem = self._stems.get(host.index)
        if stem is None:
            stem = _file_stem(host.label)
            if stem in self._used:
                stem = f"{stem}.{host.index}"
            self._used.add(stem)
            self._stems[host.index] = stem
        return self.directory / (stem + FILE_SUFFIXES[stream])

    def record(self, host: HostDescriptor, record: OutputRecord) -> None:
        self._append(host, record.stream, record.content)

    def finish(self, session: Session) -> None:
        # Every host gets a .out file, even when it printed nothing
        if (session.host.index, StreamKind.STDOUT) not in self._started:
            self._append(session.host, StreamKind.STDOUT, b"")

    def _append(self, host: HostDescriptor, stream: StreamKind, content: bytes) -> None:
        key = (host.index, stream)
        mode = "ab" if key in self._started else "wb"
        path = self.path_for(host, stream)
        try:
            with open(path, mode) as f:
                f.write(content)
        except OSError as e:
            raise OutputError(f"cannot write {path}: {e.strerror or e}") from e
        self._started.add(key)


def _file_stem(label: str) -> str:
    """File-safe stem for a host label, hashed when too long for a file name."""
    stem = label.replace("/", "_")
    raw = stem.encode()
    if len(raw) <= MAX_STEM_BYTES:
        return stem
    digest = hashlib.sha1(raw).hexdigest()[:12]
    return raw[: MAX_STEM_BYTES - len(digest) - 1].decode(errors="ignore") + "-" + digest
