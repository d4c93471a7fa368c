"""Connection parameters of one inventory host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

AUTH_METHODS = ("key", "password", "agent")


@dataclass
class SSHCredentials:
    """How to reach the host registered under ``alias``.

    ``auth_method`` is ``key`` (explicit ``key_path`` or paramiko's default
    key lookup), ``password``, or ``agent``.
    """

    alias: str
    host: str
    username: Optional[str] = None
    port: int = 22
    auth_method: str = "key"
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 20

    def validate(self) -> None:
        if self.auth_method not in AUTH_METHODS:
            raise ValueError(f"[{self.alias}] Unknown auth method: {self.auth_method}")
        if self.auth_method == "password" and not self.password:
            raise ValueError(f"[{self.alias}] Password authentication selected but no password provided")

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``paramiko.SSHClient.connect``."""
        kwargs: Dict[str, Any] = {
            "hostname": self.host,
            "port": self.port,
            "username": self.username,
            "timeout": self.timeout,
            # 没有指定密钥时允许 paramiko 自己查找 ~/.ssh 下的密钥
            "look_for_keys": self.auth_method == "agent" or (self.auth_method == "key" and not self.key_path),
            "allow_agent": self.auth_method == "agent",
        }
        if self.auth_method == "password":
            kwargs["password"] = self.password
        elif self.key_path:
            kwargs["key_filename"] = self.key_path
            if self.passphrase:
                kwargs["passphrase"] = self.passphrase
        return kwargs
