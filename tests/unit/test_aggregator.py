"""Tests for exit aggregation."""

import pytest

from sshp.aggregator import ExitAggregator, Outcome, classify
from sshp.errors import DuplicateOutcomeError
from sshp.hosts import HostDescriptor
from sshp.session import SessionState, TerminalState

HOSTS = [HostDescriptor(i, name) for i, name in enumerate(["a", "b", "c"])]


class TestClassify:
    @pytest.mark.parametrize(
        ("terminal", "outcome"),
        [
            (TerminalState.from_returncode(0), Outcome.SUCCEEDED),
            (TerminalState.from_returncode(255), Outcome.FAILED),
            (TerminalState.from_returncode(-15), Outcome.SIGNALED),
            (TerminalState(SessionState.TIMED_OUT), Outcome.TIMED_OUT),
            (TerminalState(SessionState.SPAWN_FAILED, error="x"), Outcome.SPAWN_FAILED),
        ],
    )
    def test_outcomes(self, terminal: TerminalState, outcome: Outcome) -> None:
        assert classify(terminal) is outcome

    def test_non_terminal_state(self) -> None:
        with pytest.raises(ValueError):
            classify(TerminalState(SessionState.RUNNING))


class TestExitAggregator:
    """Tests for ExitAggregator."""

    def test_all_succeeded(self) -> None:
        agg = ExitAggregator(HOSTS)
        for host in reversed(HOSTS):
            agg.record(host, TerminalState.from_returncode(0))
        result = agg.finalize()
        assert result.exit_code == 0
        assert result.succeeded == 3
        # input order, not completion order
        assert [r.host.name for r in result.per_host] == ["a", "b", "c"]

    def test_partial_failure(self) -> None:
        """Any non-success makes the run exit 1; counts sum to the total."""
        agg = ExitAggregator(HOSTS)
        agg.record(HOSTS[0], TerminalState.from_returncode(0))
        agg.record(HOSTS[1], TerminalState.from_returncode(1))
        agg.record(HOSTS[2], TerminalState(SessionState.TIMED_OUT))
        result = agg.finalize()
        assert result.exit_code == 1
        assert (result.succeeded, result.failed, result.timed_out) == (1, 1, 1)
        assert (
            result.succeeded
            + result.failed
            + result.signaled
            + result.timed_out
            + result.spawn_failed
        ) == result.total
        assert [r.host.name for r in result.failures] == ["b", "c"]
        assert result.per_host[1].terminal.exit_code == 1

    def test_empty_run(self) -> None:
        result = ExitAggregator([]).finalize()
        assert result.total == 0
        assert result.exit_code == 0

    def test_record_twice(self) -> None:
        agg = ExitAggregator(HOSTS)
        agg.record(HOSTS[0], TerminalState.from_returncode(0))
        with pytest.raises(DuplicateOutcomeError):
            agg.record(HOSTS[0], TerminalState.from_returncode(0))

    def test_unknown_host(self) -> None:
        with pytest.raises(KeyError):
            ExitAggregator(HOSTS).record(HostDescriptor(9, "z"), TerminalState.from_returncode(0))

    def test_finalize_requires_every_host(self) -> None:
        agg = ExitAggregator(HOSTS)
        agg.record(HOSTS[0], TerminalState.from_returncode(0))
        assert not agg.complete
        assert [r.host.name for r in agg.partial()] == ["a"]
        with pytest.raises(RuntimeError, match="b, c"):
            agg.finalize()

    def test_finalize_is_idempotent(self) -> None:
        agg = ExitAggregator(HOSTS[:1])
        agg.record(HOSTS[0], TerminalState.from_returncode(0))
        assert agg.finalize() is agg.finalize()
