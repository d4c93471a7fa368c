"""Local command execution session."""

from __future__ import annotations

import os
import subprocess
from typing import Dict, Optional

from ..ssh.session import CommandResult


class LocalSession:
    """
    Local command execution session.

    Provides the same interface as SSHSession but executes commands on the
    controlling machine through bash. Used for ``local`` hosts and for
    ``run_locally``.
    """

    def __init__(self, working_dir: Optional[str] = None) -> None:
        """
        Initialize local session.

        Args:
            working_dir: Working directory for commands. Defaults to home directory.
        """
        self.working_dir = working_dir or os.path.expanduser("~")
        self._connected = False

    def connect(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = True

    def close(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = False

    def __enter__(self) -> "LocalSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def run(
        self,
        command: str,
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Run command and wait for completion."""
        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
                env=self._get_env(env),
                executable="/bin/bash",
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                command=command,
                stdout=_decode(exc.stdout),
                stderr=f"Command timed out after {timeout} seconds",
                exit_status=-1,
                timed_out=True,
            )

        return CommandResult(
            command=command,
            stdout=result.stdout.strip(),
            stderr=result.stderr.strip(),
            exit_status=result.returncode,
        )

    def _get_env(self, extra: Optional[Dict[str, str]]) -> dict:
        env = os.environ.copy()
        env["LC_ALL"] = env.get("LC_ALL", "C")
        if extra:
            env.update({key: str(value) for key, value in extra.items()})
        return env


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace").strip()
    return str(data).strip()
