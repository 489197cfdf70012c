"""Tests for the terminal and file sinks."""

import io
from pathlib import Path

import pytest

from sshp.aggregator import ExitAggregator
from sshp.coalescer import HostBlock, OutputRecord
from sshp.errors import ConfigError, OutputError
from sshp.hosts import HostDescriptor
from sshp.output import MAX_STEM_BYTES, FileSink, TerminalSink
from sshp.render import Renderer
from sshp.session import Session, StreamKind, TerminalState

OK = TerminalState.from_returncode(0)


def finished_session(host: HostDescriptor, terminal: TerminalState = OK) -> Session:
    session = Session(host, ["true"])
    session.terminal = terminal
    return session


def out(host: HostDescriptor, text: bytes, stream: StreamKind = StreamKind.STDOUT) -> OutputRecord:
    return OutputRecord(host.index, stream, text, 0)


class TestTerminalSink:
    """Tests for TerminalSink."""

    def test_streaming_with_exit_codes(self) -> None:
        host = HostDescriptor(0, "a")
        stream = io.StringIO()
        sink = TerminalSink(Renderer(), stream, exit_codes=True)
        sink.output(host, out(host, b"hi\n"))
        sink.finish(finished_session(host))
        assert stream.getvalue() == "[a] hi\n[a] exited: 0 (0 ms)\n"

    def test_silent_keeps_exit_codes(self) -> None:
        host = HostDescriptor(0, "a")
        stream = io.StringIO()
        sink = TerminalSink(Renderer(), stream, silent=True, exit_codes=True)
        sink.output(host, out(host, b"hi\n"))
        sink.finish(finished_session(host))
        assert stream.getvalue() == "[a] exited: 0 (0 ms)\n"

    def test_grouped_exit_line_follows_block(self) -> None:
        host = HostDescriptor(0, "a")
        stream = io.StringIO()
        sink = TerminalSink(Renderer(), stream, exit_codes=True)
        sink.finish(finished_session(host), grouped=True)
        sink.block(HostBlock(host, (out(host, b"x\n"),), OK, 0, elapsed_ms=7))
        assert stream.getvalue() == "[a]\nx\n[a] exited: 0 (7 ms)\n"

    def test_join_reports_at_close(self) -> None:
        hosts = [HostDescriptor(0, "a"), HostDescriptor(1, "b")]
        stream = io.StringIO()
        sink = TerminalSink(Renderer(), stream, join=True, total=2)
        agg = ExitAggregator(hosts)
        for host in hosts:
            sink.block(HostBlock(host, (out(host, b"same\n"),), OK, host.index))
            sink.finish(finished_session(host), grouped=True)
            agg.record(host, OK)
        # nothing is printed until the run is over (and stdout is no tty)
        assert stream.getvalue() == ""
        sink.close(agg.finalize())
        assert stream.getvalue() == (
            "finished with 1 unique result\n\nhosts (2/2): a b\nsame\n\n"
        )


class TestFileSink:
    """Tests for FileSink."""

    def test_per_host_files(self, tmp_path: Path) -> None:
        host = HostDescriptor(0, "web", user="root")
        sink = FileSink(tmp_path / "out")
        sink.record(host, out(host, b"one\n"))
        sink.record(host, out(host, b"warn\n", StreamKind.STDERR))
        sink.record(host, out(host, b"two"))
        sink.finish(finished_session(host))
        assert (tmp_path / "out" / "root@web.out").read_bytes() == b"one\ntwo"
        assert (tmp_path / "out" / "root@web.err").read_bytes() == b"warn\n"

    def test_out_file_created_without_output(self, tmp_path: Path) -> None:
        """Every host gets a .out file; .err only when stderr was written."""
        host = HostDescriptor(0, "quiet")
        sink = FileSink(tmp_path)
        sink.finish(finished_session(host))
        assert (tmp_path / "quiet.out").read_bytes() == b""
        assert not (tmp_path / "quiet.err").exists()

    def test_duplicate_labels(self, tmp_path: Path) -> None:
        first, second = HostDescriptor(0, "a"), HostDescriptor(1, "a")
        sink = FileSink(tmp_path)
        sink.record(first, out(first, b"1\n"))
        sink.record(second, out(second, b"2\n"))
        assert (tmp_path / "a.out").read_bytes() == b"1\n"
        assert (tmp_path / "a.1.out").read_bytes() == b"2\n"

    def test_slash_in_label(self, tmp_path: Path) -> None:
        host = HostDescriptor(0, "a/b")
        assert FileSink(tmp_path).path_for(host, StreamKind.STDOUT) == tmp_path / "a_b.out"

    def test_previous_run_is_overwritten(self, tmp_path: Path) -> None:
        (tmp_path / "a.out").write_bytes(b"stale\n")
        host = HostDescriptor(0, "a")
        sink = FileSink(tmp_path)
        sink.record(host, out(host, b"fresh\n"))
        assert (tmp_path / "a.out").read_bytes() == b"fresh\n"

    def test_directory_is_a_file(self, tmp_path: Path) -> None:
        path = tmp_path / "file"
        path.write_text("")
        with pytest.raises(ConfigError):
            FileSink(path)

    def test_long_label_is_shortened(self, tmp_path: Path) -> None:
        """Labels too long for a file name get a truncated, hashed stem."""
        first, second = HostDescriptor(0, "h" * 252), HostDescriptor(1, "h" * 251 + "x")
        sink = FileSink(tmp_path)
        sink.record(first, out(first, b"1\n"))
        sink.record(second, out(second, b"2\n"))
        paths = [sink.path_for(h, StreamKind.STDOUT) for h in (first, second)]
        assert paths[0] != paths[1]
        for path, content in zip(paths, (b"1\n", b"2\n")):
            assert len(path.name) <= MAX_STEM_BYTES + len(".out")
            assert path.name.startswith("hhhh")
            assert path.read_bytes() == content

    def test_write_failure(self, tmp_path: Path) -> None:
        """Should raise OutputError, with the runtime exit code."""
        (tmp_path / "a.out").mkdir()
        host = HostDescriptor(0, "a")
        sink = FileSink(tmp_path)
        with pytest.raises(OutputError, match="cannot write") as exc_info:
            sink.record(host, out(host, b"x\n"))
        assert exc_info.value.exit_code == 3
