"""Construction of the per-host ssh argument vector."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .hosts import HostDescriptor

# Type alias for the command builder handed to the executor
CommandBuilder = Callable[[HostDescriptor], list[str]]  # host -> argv


@dataclass
class SshOptions:
    """Options passed to the ssh client for every host."""

    binary: str = "ssh"
    identity: Path | None = None
    login: str | None = None
    port: int | None = None
    quiet: bool = False
    options: list[str] = field(default_factory=list)

    def build_command(self, host: HostDescriptor, remote_command: list[str]) -> list[str]:
        """Return the argv that runs ``remote_command`` on ``host``.

        Per-host user and port from the host file win over the defaults.
        """
        argv = [self.binary]
        if self.identity is not None:
            argv.extend(["-i", str(self.identity)])

        login = host.user or self.login
        if login:
            argv.extend(["-l", login])

        port = host.port or self.port
        if port:
            argv.extend(["-p", str(port)])

        if self.quiet:
            argv.append("-q")
        for opt in self.options:
            argv.extend(["-o", opt])

        argv.append(host.name)
        argv.extend(remote_command)
        return argv

    def builder(self, remote_command: list[str]) -> CommandBuilder:
        """Bind the remote command, giving a builder for the executor."""
        return lambda host: self.build_command(host, remote_command)


def exec_builder(program: list[str], remote_command: list[str]) -> CommandBuilder:
    """Builder that runs ``program host command...`` instead of ssh."""
    return lambda host: [*program, host.label, *remote_command]
