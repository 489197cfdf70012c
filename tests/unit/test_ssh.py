"""Tests for ssh command construction."""

from pathlib import Path

from sshp.hosts import HostDescriptor
from sshp.ssh import SshOptions, exec_builder


class TestSshOptions:
    """Tests for the per-host ssh argv."""

    def test_minimal(self) -> None:
        argv = SshOptions().build_command(HostDescriptor(0, "web1"), ["uptime"])
        assert argv == ["ssh", "web1", "uptime"]

    def test_all_options(self) -> None:
        """Should pass every option before the host."""
        options = SshOptions(
            binary="/usr/bin/ssh",
            identity=Path("/keys/id"),
            login="admin",
            port=2200,
            quiet=True,
            options=["BatchMode=yes", "ConnectTimeout=3"],
        )
        argv = options.build_command(HostDescriptor(0, "db"), ["ls", "-l"])
        assert argv == [
            "/usr/bin/ssh",
            "-i", "/keys/id",
            "-l", "admin",
            "-p", "2200",
            "-q",
            "-o", "BatchMode=yes",
            "-o", "ConnectTimeout=3",
            "db",
            "ls", "-l",
        ]

    def test_host_entry_overrides_defaults(self) -> None:
        """User and port from the host file win."""
        options = SshOptions(login="admin", port=2200)
        host = HostDescriptor(0, "db", user="root", port=22)
        argv = options.build_command(host, ["id"])
        assert argv == ["ssh", "-l", "root", "-p", "22", "db", "id"]

    def test_builder(self) -> None:
        build = SshOptions().builder(["hostname"])
        assert build(HostDescriptor(1, "b")) == ["ssh", "b", "hostname"]


class TestExecBuilder:
    def test_program_gets_host_then_command(self) -> None:
        build = exec_builder(["rsh", "-n"], ["uname", "-a"])
        host = HostDescriptor(0, "a", user="me", port=22)
        assert build(host) == ["rsh", "-n", "me@a", "uname", "-a"]
