"""Pytest configuration and fixtures."""

from pathlib import Path
from typing import Callable

import pytest

from sshp.hosts import HostDescriptor, parse_hosts
from sshp.logger import setup_logging
from sshp.ssh import CommandBuilder


@pytest.fixture(autouse=True, scope="session")
def quiet_logging() -> None:
    """Keep structlog output out of captured stdout."""
    setup_logging(level="WARNING")


@pytest.fixture
def make_hosts() -> Callable[..., list[HostDescriptor]]:
    """Build host descriptors from host-file style entries."""

    def make(*entries: str) -> list[HostDescriptor]:
        return parse_hosts(entries)

    return make


@pytest.fixture
def sh_builder() -> Callable[..., CommandBuilder]:
    """Command builder running a local ``sh -c`` script instead of ssh.

    ``per_host`` maps a host name to a script replacing the default one.
    """

    def make(script: str, per_host: dict[str, str] | None = None) -> CommandBuilder:
        scripts = per_host or {}
        return lambda host: ["sh", "-c", scripts.get(host.name, script)]

    return make


@pytest.fixture
def hosts_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a temporary hosts file."""

    def write(*entries: str) -> Path:
        path = tmp_path / "hosts"
        path.write_text("".join(f"{entry}\n" for entry in entries))
        return path

    return write
