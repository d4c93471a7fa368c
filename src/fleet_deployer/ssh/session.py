"""SSH session management built on Paramiko."""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import paramiko

from .credentials import SSHCredentials


class SSHConnectionError(RuntimeError):
    """Raised when an SSH connection cannot be established."""

    pass


@dataclass
class CommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_status == 0 and not self.timed_out


def env_prefix(env: Optional[Dict[str, str]]) -> str:
    """Render ``export K=V;`` assignments for a shell command."""
    if not env:
        return ""
    exports = " ".join(f"{key}={shlex.quote(str(value))}" for key, value in env.items())
    return f"export {exports}; "


class SSHSession:
    """High-level wrapper around paramiko.SSHClient."""

    poll_interval = 0.1

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.credentials = credentials
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(**self.credentials.connect_kwargs())
        except Exception as exc:  # pragma: no cover - network errors hard to simulate
            client.close()
            raise SSHConnectionError(str(exc)) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(
        self,
        command: str,
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """
        Execute a command on the remote server.

        Args:
            command: The command to execute
            env: Environment variables exported before the command
            timeout: Total timeout in seconds, ``None`` waits forever

        Returns:
            CommandResult with command output and exit status. A timeout is
            reported with ``timed_out=True`` rather than raised.
        """
        if not self._client:
            self.connect()
        assert self._client is not None

        actual_command = env_prefix(env) + command
        _, stdout, _ = self._client.exec_command(actual_command, timeout=timeout)
        channel = stdout.channel

        # recv_exit_status() waits without a timeout, so poll against a deadline
        started = time.time()
        out_chunks: List[bytes] = []
        err_chunks: List[bytes] = []
        while not channel.exit_status_ready():
            _drain(channel, out_chunks, err_chunks)
            if timeout is not None and time.time() - started > timeout:
                channel.close()
                return CommandResult(
                    command=command,
                    stdout=_decode(out_chunks),
                    stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                    exit_status=-1,
                    timed_out=True,
                )
            time.sleep(self.poll_interval)

        _drain(channel, out_chunks, err_chunks)
        exit_status = channel.recv_exit_status()
        return CommandResult(
            command=command,
            stdout=_decode(out_chunks),
            stderr=_decode(err_chunks),
            exit_status=exit_status,
        )


def _drain(channel: paramiko.Channel, out_chunks: List[bytes], err_chunks: List[bytes]) -> None:
    while channel.recv_ready():
        out_chunks.append(channel.recv(4096))
    while channel.recv_stderr_ready():
        err_chunks.append(channel.recv_stderr(4096))


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace").strip()
