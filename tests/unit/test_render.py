"""Tests for output rendering."""

from sshp.aggregator import ExitAggregator
from sshp.coalescer import HostBlock, OutputRecord
from sshp.executor import StatusReport
from sshp.hosts import HostDescriptor
from sshp.render import HOST_COLORS, RESET, Renderer, join_blocks
from sshp.session import SessionState, StreamKind, TerminalState

OK = TerminalState.from_returncode(0)
WEB = HostDescriptor(0, "web1.example.com")
DB = HostDescriptor(1, "db1.example.com")


def record(text: bytes, stream: StreamKind = StreamKind.STDOUT, seq: int = 0) -> OutputRecord:
    return OutputRecord(0, stream, text, seq)


def block(host: HostDescriptor, *lines: bytes, terminal: TerminalState = OK) -> HostBlock:
    records = tuple(record(line, seq=i) for i, line in enumerate(lines))
    return HostBlock(host, records, terminal, host.index)


class TestRenderer:
    """Tests for Renderer."""

    def test_line(self) -> None:
        assert Renderer().line(WEB, record(b"up 3 days\n")) == "[web1.example.com] up 3 days\n"

    def test_line_without_newline(self) -> None:
        """Unterminated tails still end their rendered line."""
        assert Renderer().line(WEB, record(b"tail")) == "[web1.example.com] tail\n"

    def test_anonymous_and_trim(self) -> None:
        assert Renderer(anonymous=True).line(WEB, record(b"x\n")) == "x\n"
        assert Renderer(trim=True).line(WEB, record(b"x\n")) == "[web1] x\n"

    def test_colors(self) -> None:
        line = Renderer(color=True).line(DB, record(b"oops\n", StreamKind.STDERR))
        assert line.startswith(f"{HOST_COLORS[1]}[db1.example.com]{RESET} ")
        assert "\033[31moops" in line

    def test_block(self) -> None:
        text = Renderer().block(block(WEB, b"a\n", b"b\n"))
        assert text == "[web1.example.com]\na\nb\n"

    def test_anonymous_block(self) -> None:
        assert Renderer(anonymous=True).block(block(WEB, b"a\n")) == "a\n"

    def test_exit_status(self) -> None:
        renderer = Renderer()
        assert renderer.exit_status(WEB, OK, 15) == "[web1.example.com] exited: 0 (15 ms)\n"
        timed_out = TerminalState(SessionState.TIMED_OUT)
        assert "exited: timed out (1000 ms)" in renderer.exit_status(WEB, timed_out, 1000)

    def test_progress(self) -> None:
        assert Renderer().progress(2, 5) == "[sshp] finished 2/5\r"

    def test_status(self) -> None:
        report = StatusReport(pending=3, finished=1, total=5, running=[(123, "web1")])
        text = Renderer().status(report)
        assert "3 pending, 1 running, 1 finished (5 total)" in text
        assert "--> pid 123 web1" in text

    def test_failures(self) -> None:
        agg = ExitAggregator([WEB, DB])
        agg.record(WEB, OK)
        agg.record(DB, TerminalState.from_returncode(2))
        assert Renderer(trim=True).failures(agg.finalize()) == "\nFailed hosts: db1\n"

    def test_no_failures(self) -> None:
        agg = ExitAggregator([WEB])
        agg.record(WEB, OK)
        assert Renderer().failures(agg.finalize()) == ""


class TestJoin:
    """Tests for join-mode grouping."""

    def test_identical_outputs_are_grouped(self) -> None:
        third = HostDescriptor(2, "c")
        groups = join_blocks(
            [block(third, b"same\n"), block(DB, b"other\n"), block(WEB, b"same\n")],
            max_output_length=8192,
        )
        assert [[h.index for h in g.hosts] for g in groups] == [[0, 2], [1]]
        assert groups[0].output == b"same\n"

    def test_output_is_capped_before_comparing(self) -> None:
        groups = join_blocks([block(WEB, b"abcX\n"), block(DB, b"abcY\n")], max_output_length=3)
        assert len(groups) == 1
        assert groups[0].output == b"abc"

    def test_render(self) -> None:
        groups = join_blocks([block(WEB, b"same\n"), block(DB)], 8192)
        text = Renderer(trim=True).join(groups, total=2)
        assert text == (
            "finished with 2 unique results\n\n"
            "hosts (1/2): web1\n"
            "same\n\n"
            "hosts (1/2): db1 - no output -\n\n"
        )

    def test_render_single_result(self) -> None:
        groups = join_blocks([block(WEB, b"x\n"), block(DB, b"x\n")], 8192)
        assert Renderer().join(groups, total=2).startswith("finished with 1 unique result\n")
