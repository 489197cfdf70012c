"""Signal handling while a run is in progress."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Callable, TextIO

from .executor import Executor
from .logger import get_logger
from .render import Renderer

logger = get_logger(__name__)

CANCEL_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    executor: Executor,
    renderer: Renderer,
    stream: TextIO | None = None,
) -> Callable[[], None]:
    """Route signals into the executor; returns a function removing the handlers.

    SIGINT and SIGTERM cancel the run. SIGUSR1 prints a status report.
    """
    out = stream if stream is not None else sys.stderr
    installed: list[int] = []

    def on_cancel(signum: int) -> None:
        logger.info("signal_received", signal=signal.Signals(signum).name)
        executor.cancel()

    def on_status() -> None:
        out.write(renderer.status(executor.status_report()))
        out.flush()

    for sig in CANCEL_SIGNALS:
        loop.add_signal_handler(sig, on_cancel, sig)
        installed.append(sig)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, on_status)
        installed.append(signal.SIGUSR1)

    def remove() -> None:
        for sig in installed:
            loop.remove_signal_handler(sig)

    return remove
