"""Tests for signal handling during a run."""

import asyncio
import io
import os
import signal

import pytest

from sshp.errors import RunCancelled
from sshp.executor import Executor
from sshp.render import Renderer
from sshp.signals import install_signal_handlers


async def wait_until_running(executor: Executor, count: int) -> None:
    for _ in range(100):
        if executor.active_count == count:
            return
        await asyncio.sleep(0.05)
    raise AssertionError("sessions did not start")


class TestSignalHandlers:
    """Tests for install_signal_handlers."""

    @pytest.mark.asyncio
    async def test_sigusr1_prints_status(self, make_hosts, sh_builder) -> None:
        executor = Executor(sh_builder("sleep 30"), 1, kill_grace=0.5)
        stream = io.StringIO()
        remove = install_signal_handlers(
            asyncio.get_running_loop(), executor, Renderer(), stream
        )
        try:
            task = asyncio.create_task(executor.run(make_hosts("a", "b")))
            await wait_until_running(executor, 1)
            os.kill(os.getpid(), signal.SIGUSR1)
            await asyncio.sleep(0.2)
            assert "1 pending, 1 running, 0 finished (2 total)" in stream.getvalue()
            assert "--> pid" in stream.getvalue()

            executor.cancel()
            with pytest.raises(RunCancelled):
                await asyncio.wait_for(task, timeout=10)
        finally:
            remove()

    @pytest.mark.asyncio
    async def test_sigterm_cancels_run(self, make_hosts, sh_builder) -> None:
        executor = Executor(sh_builder("sleep 30"), 2, kill_grace=0.5)
        remove = install_signal_handlers(
            asyncio.get_running_loop(), executor, Renderer(), io.StringIO()
        )
        try:
            task = asyncio.create_task(executor.run(make_hosts("a", "b", "c")))
            await wait_until_running(executor, 2)
            os.kill(os.getpid(), signal.SIGTERM)
            with pytest.raises(RunCancelled) as exc_info:
                await asyncio.wait_for(task, timeout=10)
            assert len(exc_info.value.partial) == 2
        finally:
            remove()
