"""Error types raised by the deployment coordination layer."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DeployerError(RuntimeError):
    """Base class for every error raised by fleet-deployer."""

    pass


class ConfigurationError(DeployerError):
    """A required setting is missing or invalid."""

    pass


class EmptyStackError(DeployerError):
    """Raised when the context stack is read or popped while empty."""

    pass


class CycleError(DeployerError):
    """A pipeline references itself, directly or through other pipelines."""

    def __init__(self, chain: List[str]) -> None:
        self.chain = list(chain)
        super().__init__("Cycle detected in task expansion: " + " -> ".join(self.chain))


class LifecycleError(DeployerError):
    """An invalid release lifecycle transition was requested."""

    pass


class LockHeld(DeployerError):
    """The deploy target is locked by another deployment."""

    def __init__(
        self,
        path: str,
        owner: Optional[str] = None,
        acquired_at: Optional[str] = None,
        stale: Optional[bool] = None,
    ) -> None:
        self.path = path
        self.owner = owner
        self.acquired_at = acquired_at
        self.stale = stale
        message = f"Deploy locked by {owner or 'unknown'}"
        if acquired_at:
            message += f" since {acquired_at}"
        if stale:
            message += " (owner process is no longer running)"
        message += f". Execute `deploy:force_unlock` to remove {path}."
        super().__init__(message)


class RemoteExecutionError(DeployerError):
    """A command exited with a non-zero status or timed out."""

    def __init__(
        self,
        host: str,
        command: str,
        exit_code: int,
        output: str = "",
        error_output: str = "",
        timed_out: bool = False,
    ) -> None:
        self.host = host
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.error_output = error_output
        self.timed_out = timed_out
        if timed_out:
            message = f"[{host}] Command timed out: {command}"
        else:
            message = f"[{host}] Command failed with exit code {exit_code}: {command}"
        if error_output:
            message += f"\n{error_output}"
        super().__init__(message)


class RPCError(DeployerError):
    """A coordinator request failed or the proxied call raised."""

    def __init__(self, message: str, kind: str = "RPCError", status: Optional[int] = None) -> None:
        self.kind = kind
        self.status = status
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": {"type": self.kind, "message": str(self)}}
