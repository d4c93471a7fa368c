"""SSH transport for fleet-deployer."""

from .credentials import SSHCredentials
from .session import CommandResult, SSHConnectionError, SSHSession, env_prefix

__all__ = [
    "SSHCredentials",
    "CommandResult",
    "SSHConnectionError",
    "SSHSession",
    "env_prefix",
]
