"""TUI Dashboard for sshp."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker, WorkerState

from .aggregator import RunResult
from .coalescer import OutputRecord
from .config import RunConfig
from .executor import Executor
from .hosts import HostDescriptor
from .logger import get_logger
from .output import FileSink
from .session import Session, SessionState, StreamKind
from .ssh import CommandBuilder

logger = get_logger(__name__)

PENDING = "pending"

STATUS_ICONS = {
    PENDING: ("○", "dim"),
    SessionState.STARTING: ("◐", "yellow"),
    SessionState.RUNNING: ("◐", "yellow"),
    SessionState.EXITED: ("✔", "green"),
    SessionState.SIGNALED: ("✘", "red"),
    SessionState.TIMED_OUT: ("⏱", "red"),
    SessionState.SPAWN_FAILED: ("!", "red"),
}


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[SessionState | str] = reactive(PENDING)

    def __init__(self, host: HostDescriptor, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host
        self.exit_code: int | None = None

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.host.index}")
        yield RichLog(
            id=f"log-{self.host.index}",
            highlight=False,
            markup=True,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        if self.status is SessionState.EXITED and self.exit_code:
            color = "red"
        port = f":{self.host.port}" if self.host.port else ""
        return f"[{color}]{icon}[/] [bold]{escape(self.host.label)}[/bold]{port}"

    def watch_status(self, status: SessionState | str) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.host.index}", Label)
        header.update(self._get_header())

    def append_output(self, stream: StreamKind, line: str) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.host.index}", RichLog)
        if stream is StreamKind.STDERR:
            log.write(f"[red]{escape(line)}[/red]")
        else:
            log.write(escape(line))


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    failed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return (
            f"Progress: {self.completed}/{self.total} hosts finished, "
            f"{self.failed} failed | {status} | Press 'q' to quit"
        )


@dataclass
class HostOutput(Message):
    """Message for host output."""
    host_index: int
    stream: StreamKind
    line: str


@dataclass
class HostStatusChange(Message):
    """Message for host status change."""
    host_index: int
    status: SessionState
    exit_code: int | None = None


class Dashboard(App):
    """Live view of a run: one panel per host."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: RunConfig,
        build_command: CommandBuilder,
        file_sink: FileSink | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.build_command = build_command
        self.file_sink = file_sink
        self.panels: dict[int, HostPanel] = {}
        self.executor: Executor | None = None
        self.result: RunResult | None = None
        self.error: Exception | None = None
        self._worker: Worker | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._quitting = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        for host in self.config.hosts:
            panel = HostPanel(host, id=f"panel-{host.index}")
            self.panels[host.index] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.config.hosts)

        self.executor = Executor(
            self.build_command,
            self.config.max_jobs,
            timeout=self.config.timeout,
            max_line_length=self.config.max_line_length,
            kill_grace=self.config.kill_grace,
            on_record=self._on_record,
            on_status=self._on_status,
            on_finish=self._on_finish,
        )

        # The executor gets its own event loop in a worker thread
        self._worker = self.run_worker(
            self._run_execution(), exclusive=True, thread=True, exit_on_error=False
        )

    async def _run_execution(self) -> None:
        """Run the executor and keep its result or error."""
        assert self.executor is not None
        self._loop = asyncio.get_running_loop()
        try:
            self.result = await self.executor.run(self.config.hosts)
        except Exception as e:
            # Reported by the runner once the app has exited
            logger.debug("execution_failed", error=repr(e))
            self.error = e

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker is not self._worker:
            return
        if event.state in (WorkerState.SUCCESS, WorkerState.ERROR, WorkerState.CANCELLED):
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False
            if self._quitting:
                self.exit()

    def _on_record(self, host: HostDescriptor, record: OutputRecord) -> None:
        """Handle output from a host - posts message to main thread."""
        if self.file_sink:
            self.file_sink.record(host, record)
        self.post_message(HostOutput(host.index, record.stream, record.text().rstrip("\n")))

    def _on_status(self, host: HostDescriptor, status: SessionState) -> None:
        """Handle status change for a host - posts message to main thread."""
        # Terminal states arrive through _on_finish with their exit code
        if not status.is_terminal:
            self.post_message(HostStatusChange(host.index, status))

    def _on_finish(self, session: Session) -> None:
        if self.file_sink:
            self.file_sink.finish(session)
        terminal = session.terminal
        assert terminal is not None
        self.post_message(
            HostStatusChange(session.host.index, terminal.state, terminal.exit_code)
        )

    def on_host_output(self, message: HostOutput) -> None:
        """Handle HostOutput message in main thread."""
        if message.host_index in self.panels:
            self.panels[message.host_index].append_output(message.stream, message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        panel = self.panels.get(message.host_index)
        if panel is not None:
            panel.exit_code = message.exit_code
            panel.status = message.status

        if message.status.is_terminal:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1
            if message.status is not SessionState.EXITED or message.exit_code:
                status_bar.failed += 1

    async def action_quit(self) -> None:
        """Cancel the run, then quit once the worker has cleaned up."""
        if self._worker and self._worker.is_running and self.executor and self._loop:
            self._quitting = True
            self._loop.call_soon_threadsafe(self.executor.cancel)
            return
        self.exit()
