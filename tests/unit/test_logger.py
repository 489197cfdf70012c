"""Tests for logging setup."""

import logging

import pytest
import structlog

from sshp.logger import bind_context, clear_context, get_logger, setup_logging


class TestLogging:
    """Test logging functionality."""

    def test_setup_logging_levels(self) -> None:
        """Should set the root level from the name."""
        setup_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        setup_logging(level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back(self) -> None:
        setup_logging(level="chatty")
        assert logging.getLogger().level == logging.WARNING

    def test_logs_go_to_stderr(self, capsys: pytest.CaptureFixture) -> None:
        setup_logging(level="INFO")
        get_logger("sshp.test").info("hello_event", hosts=3)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "hello_event" in captured.err
        setup_logging(level="WARNING")

    def test_context(self) -> None:
        bind_context(run_id="abc")
        assert structlog.contextvars.get_contextvars() == {"run_id": "abc"}
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
