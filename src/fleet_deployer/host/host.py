"""Deployment targets."""

from __future__ import annotations

import os
from typing import Any, Optional, Union

from ..local import LocalSession
from ..ssh import SSHCredentials, SSHSession
from .configuration import Configuration

Session = Union[SSHSession, LocalSession]


class Host:
    """One deployment target with its own configuration."""

    def __init__(
        self,
        alias: str,
        *,
        hostname: Optional[str] = None,
        port: int = 22,
        user: Optional[str] = None,
        auth_method: str = "key",
        password: Optional[str] = None,
        key_path: Optional[str] = None,
        local: bool = False,
        parent: Optional[Configuration] = None,
    ) -> None:
        self.alias = alias
        self.hostname = hostname or alias
        self.port = port
        self.user = user
        self.auth_method = auth_method
        self.password = password
        self.key_path = key_path
        self.local = local
        self.config = Configuration(parent)
        self.config.set("alias", alias)
        self.config.set("hostname", self.hostname)
        self._session: Optional[Session] = None
        self._session_pid: Optional[int] = None

    def __str__(self) -> str:
        return self.alias

    def __repr__(self) -> str:
        return f"Host({self.alias!r})"

    def set(self, name: str, value: Any) -> "Host":
        self.config.set(name, value)
        return self

    def add(self, name: str, values: Any) -> "Host":
        self.config.add(name, values)
        return self

    def get(self, name: str, default: Any = None) -> Any:
        return self.config.get(name, default)

    def has(self, name: str) -> bool:
        return self.config.has(name)

    def has_own(self, name: str) -> bool:
        return self.config.has_own(name)

    def credentials(self) -> SSHCredentials:
        return SSHCredentials(
            alias=self.alias,
            host=self.hostname,
            username=self.user,
            port=self.port,
            auth_method=self.auth_method,
            password=self.password,
            key_path=self.key_path,
        )

    def session(self) -> Session:
        """Return this process's session to the host, opening it lazily.

        A forked worker never reuses a connection opened by its parent.
        """
        if self._session is None or self._session_pid != os.getpid():
            if self.local:
                self._session = LocalSession(working_dir=os.getcwd())
            else:
                credentials = self.credentials()
                credentials.validate()
                self._session = SSHSession(credentials)
            self._session.connect()
            self._session_pid = os.getpid()
        return self._session

    def close(self) -> None:
        if self._session is not None and self._session_pid == os.getpid():
            self._session.close()
        self._session = None
        self._session_pid = None

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state["_session"] = None
        state["_session_pid"] = None
        return state


class Localhost(Host):
    """A host whose commands run on the controlling machine."""

    def __init__(self, alias: str = "localhost", **kwargs: Any) -> None:
        kwargs["local"] = True
        super().__init__(alias, **kwargs)
