"""Host list parsing for sshp."""

from __future__ import annotations

import ipaddress
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, TextIO

from .errors import ConfigError

# _POSIX_HOST_NAME_MAX
MAX_LINE_LENGTH = 255


@dataclass(frozen=True)
class HostDescriptor:
    """One target host, identified by its position in the input."""

    index: int
    name: str
    user: str | None = None
    port: int | None = None
    raw_line: str = ""

    @property
    def label(self) -> str:
        """The host as written by the user, without the port."""
        if self.user:
            return f"{self.user}@{self.name}"
        return self.name

    def display_name(self, trim: bool = False) -> str:
        """Name shown in rendered output; ``trim`` drops the domain part."""
        if not trim or _is_ip_address(self.name):
            return self.name
        return self.name.split(".", 1)[0]


def _is_ip_address(name: str) -> bool:
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return False
    return True


def parse_host_line(line: str, index: int, line_no: int) -> HostDescriptor | None:
    """Parse one host-file line; returns None for blank and comment lines."""
    entry = line.strip()
    if not entry or entry.startswith("#"):
        return None

    if len(line.rstrip("\r\n")) >= MAX_LINE_LENGTH:
        raise ConfigError(
            f"hosts file line {line_no} too long (>= {MAX_LINE_LENGTH} chars)"
        )
    if any(ch.isspace() for ch in entry):
        raise ConfigError(
            f"host file format error on line {line_no}: {entry!r}\n"
            "Ensure each host is newline separated"
        )

    user = None
    if "@" in entry:
        user, entry = entry.rsplit("@", 1)
        if not user:
            raise ConfigError(f"empty user on line {line_no}: {line.strip()!r}")

    name, port = _split_port(entry, line_no)
    if not name:
        raise ConfigError(f"empty hostname on line {line_no}: {line.strip()!r}")

    return HostDescriptor(
        index=index,
        name=name,
        user=user,
        port=port,
        raw_line=line.rstrip("\r\n"),
    )


def _split_port(entry: str, line_no: int) -> tuple[str, int | None]:
    """Split ``host[:port]`` or ``[v6addr][:port]``."""
    port_str = None
    if entry.startswith("["):
        close = entry.find("]")
        if close == -1:
            raise ConfigError(f"unterminated '[' on line {line_no}: {entry!r}")
        name, rest = entry[1:close], entry[close + 1 :]
        if rest:
            if not rest.startswith(":"):
                raise ConfigError(f"unexpected {rest!r} on line {line_no}")
            port_str = rest[1:]
    elif entry.count(":") == 1:
        name, port_str = entry.split(":")
    else:
        # Bare IPv6 addresses carry several colons and no port
        name = entry

    if port_str is None:
        return name, None
    return name, parse_port(port_str, f"line {line_no}")


def parse_port(value: str, where: str) -> int:
    """Validate a TCP port number given as text."""
    try:
        port = int(value)
    except ValueError:
        raise ConfigError(f"invalid port {value!r} on {where}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"invalid port {value!r} on {where}: must be 1-65535")
    return port


def parse_hosts(lines: Iterable[str]) -> list[HostDescriptor]:
    """Parse host-file lines into descriptors, preserving input order."""
    hosts: list[HostDescriptor] = []
    for line_no, line in enumerate(lines, start=1):
        host = parse_host_line(line, len(hosts), line_no)
        if host is not None:
            hosts.append(host)
    return hosts


def load_hosts(source: str | Path | None, stdin: TextIO | None = None) -> list[HostDescriptor]:
    """Load hosts from a file, or from stdin when ``source`` is None or ``-``."""
    if source is None or str(source) == "-":
        stream = stdin if stdin is not None else sys.stdin
        if stream.isatty():
            raise ConfigError("no hosts provided from stdin")
        return parse_hosts(stream)

    path = Path(source)
    try:
        with open(path, encoding="utf-8") as f:
            return parse_hosts(f)
    except UnicodeDecodeError as e:
        raise ConfigError(f"{path}: not valid UTF-8 ({e.reason})") from e
    except OSError as e:
        raise ConfigError(f"{path}: {e.strerror or e}") from e
