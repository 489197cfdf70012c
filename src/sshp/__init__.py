"""sshp: Run a command on many hosts over ssh, in parallel."""

__version__ = "0.3.0"

from .aggregator import HostResult, Outcome, RunResult
from .coalescer import DeliveryPolicy, GroupOrder, OutputRecord
from .config import Defaults, RunConfig, load_defaults
from .errors import ConfigError, MultiplexerError, OutputError, RunCancelled, SshpError
from .executor import Executor, execute
from .hosts import HostDescriptor, load_hosts, parse_hosts
from .session import SessionState, TerminalState
from .ssh import SshOptions

__all__ = [
    "__version__",
    "HostResult",
    "Outcome",
    "RunResult",
    "DeliveryPolicy",
    "GroupOrder",
    "OutputRecord",
    "Defaults",
    "RunConfig",
    "load_defaults",
    "ConfigError",
    "MultiplexerError",
    "OutputError",
    "RunCancelled",
    "SshpError",
    "Executor",
    "execute",
    "HostDescriptor",
    "load_hosts",
    "parse_hosts",
    "SessionState",
    "TerminalState",
    "SshOptions",
]
