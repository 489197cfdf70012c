"""Configuration loader for sshp."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .coalescer import DeliveryPolicy, GroupOrder
from .errors import ConfigError
from .hosts import HostDescriptor, parse_port
from .ssh import SshOptions

CONFIG_ENV_VAR = "SSHP_CONFIG"

COLOR_CHOICES = ("auto", "on", "off")


@dataclass
class Defaults:
    """Default values read from the YAML file; command-line flags override them."""

    user: str | None = None
    port: int | None = None
    max_jobs: int = 50
    timeout: float | None = None
    identity: Path | None = None
    ssh_options: list[str] = field(default_factory=list)
    quiet: bool = False
    color: str = "auto"
    max_line_length: int = 1024
    max_output_length: int = 8192
    kill_grace: float = 2.0
    ssh_binary: str = "ssh"


@dataclass
class RunConfig:
    """Everything one run needs, after merging defaults and flags."""

    hosts: list[HostDescriptor]
    command: list[str]
    ssh: SshOptions = field(default_factory=SshOptions)
    exec_program: list[str] | None = None
    max_jobs: int = 50
    timeout: float | None = None
    policy: DeliveryPolicy = DeliveryPolicy.STREAM
    group_order: GroupOrder = GroupOrder.ADMISSION
    join: bool = False
    output_dir: Path | None = None
    silent: bool = False
    anonymous: bool = False
    exit_codes: bool = False
    color: bool = False
    trim: bool = False
    debug: bool = False
    dry_run: bool = False
    dashboard: bool = False
    max_line_length: int = 1024
    max_output_length: int = 8192
    kill_grace: float = 2.0

    def validate(self) -> None:
        """Reject invalid combinations before any host is contacted."""
        if not self.command:
            raise ConfigError("no command specified")
        if self.max_jobs < 1:
            raise ConfigError("invalid value for `-m`: must be an integer > 0")
        timeout = self.timeout
        if timeout is not None and not (math.isfinite(timeout) and timeout > 0):
            raise ConfigError("invalid value for `-t`: must be a number > 0")
        if self.max_line_length < 1:
            raise ConfigError(
                "invalid value for `--max-line-length`: must be an integer > 0"
            )
        if self.max_output_length < 1:
            raise ConfigError(
                "invalid value for `--max-output-length`: must be an integer > 0"
            )
        if not (math.isfinite(self.kill_grace) and self.kill_grace >= 0):
            raise ConfigError("kill_grace must be a finite number >= 0")
        if self.join and self.policy is DeliveryPolicy.GROUP:
            raise ConfigError("`-g` and `-j` are mutually exclusive")
        if self.join and self.anonymous:
            raise ConfigError("`-a` and `-j` are mutually exclusive")
        if self.join and self.silent:
            raise ConfigError("`-j` and `-s` are mutually exclusive")
        if self.join and self.dashboard:
            raise ConfigError("`--dashboard` and `-j` are mutually exclusive")


def default_config_path() -> Path | None:
    """Path named by $SSHP_CONFIG, if set."""
    value = os.environ.get(CONFIG_ENV_VAR)
    return Path(value).expanduser() if value else None


def load_defaults(config_path: str | Path | None) -> Defaults:
    """Load defaults from a YAML file; no path means built-in defaults."""
    if config_path is None:
        return Defaults()

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"{config_path}: invalid YAML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{config_path}: {e.strerror or e}") from e

    if raw is None:
        return Defaults()
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: expected a mapping at top level")
    return _parse_defaults(raw)


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the raw YAML mapping into a Defaults object."""
    known = {f.name for f in fields(Defaults)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

    defaults = Defaults()
    defaults.user = _optional(raw, "user", str)
    defaults.port = _optional(raw, "port", int)
    if defaults.port is not None:
        parse_port(str(defaults.port), "'port' in the defaults file")
    defaults.max_jobs = _get(raw, "max_jobs", int, defaults.max_jobs)
    defaults.timeout = _optional(raw, "timeout", (int, float))
    defaults.quiet = _get(raw, "quiet", bool, defaults.quiet)
    defaults.color = _get(raw, "color", str, defaults.color)
    defaults.max_line_length = _get(
        raw, "max_line_length", int, defaults.max_line_length
    )
    defaults.max_output_length = _get(
        raw, "max_output_length", int, defaults.max_output_length
    )
    defaults.kill_grace = float(_get(raw, "kill_grace", (int, float), defaults.kill_grace))
    defaults.ssh_binary = _get(raw, "ssh_binary", str, defaults.ssh_binary)

    identity = _optional(raw, "identity", str)
    if identity:
        defaults.identity = Path(identity).expanduser()

    ssh_options = raw.get("ssh_options", [])
    if not isinstance(ssh_options, list) or not all(
        isinstance(opt, str) for opt in ssh_options
    ):
        raise ConfigError("'ssh_options' must be a list of strings")
    defaults.ssh_options = list(ssh_options)

    if defaults.color not in COLOR_CHOICES:
        raise ConfigError(
            f"invalid color {defaults.color!r}: expected one of {', '.join(COLOR_CHOICES)}"
        )
    return defaults


def _get(raw: dict[str, Any], key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    value = raw.get(key, default)
    # bool is an int subclass; "max_jobs: true" is still a mistake
    if isinstance(value, bool) and kind is not bool:
        raise ConfigError(f"'{key}' has the wrong type: {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' has the wrong type: {value!r}")
    return value


def _optional(raw: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if raw.get(key) is None:
        return None
    return _get(raw, key, kind, None)
