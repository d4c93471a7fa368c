"""Per-host deploy lock.

The lock is a file under the deploy target created with ``noclobber``, so two
concurrent acquisitions cannot both succeed. Its content identifies the owner;
release only deletes the file while the content still matches the handle that
created it.
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
import shlex
import socket
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import psutil

from .exceptions import LockHeld

logger = logging.getLogger(__name__)

Execute = Callable[[str], str]


def quote_path(path: str) -> str:
    """Shell-quote a path, leaving a leading ``~/`` expandable."""
    if path.startswith("~/"):
        return "~/" + shlex.quote(path[2:])
    return shlex.quote(path)


@dataclass(frozen=True)
class LockHandle:
    path: str
    owner: str
    hostname: str
    pid: int
    token: str
    acquired_at: str

    def content(self) -> str:
        return json.dumps(
            {
                "owner": self.owner,
                "hostname": self.hostname,
                "pid": self.pid,
                "token": self.token,
                "acquired_at": self.acquired_at,
            },
            sort_keys=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockHandle":
        return cls(
            path=data["path"],
            owner=data["owner"],
            hostname=data["hostname"],
            pid=int(data["pid"]),
            token=data["token"],
            acquired_at=data["acquired_at"],
        )


@dataclass
class LockRecord:
    """What is currently written in a lock file."""

    raw: str
    owner: Optional[str] = None
    hostname: Optional[str] = None
    pid: Optional[int] = None
    acquired_at: Optional[str] = None

    @classmethod
    def parse(cls, content: str) -> "LockRecord":
        content = content.strip()
        try:
            data = json.loads(content)
        except ValueError:
            # Foreign or legacy lock file: the whole content is the owner.
            return cls(raw=content, owner=content or None)
        if not isinstance(data, dict):
            return cls(raw=content, owner=content or None)
        pid = data.get("pid")
        return cls(
            raw=content,
            owner=data.get("owner"),
            hostname=data.get("hostname"),
            pid=int(pid) if isinstance(pid, int) or (isinstance(pid, str) and pid.isdigit()) else None,
            acquired_at=data.get("acquired_at"),
        )

    def is_stale(self) -> Optional[bool]:
        """True when the owner ran on this machine and its process is gone.

        ``None`` means staleness cannot be decided from here.
        """
        if self.pid is None or self.hostname != socket.gethostname():
            return None
        return not psutil.pid_exists(self.pid)


class LockManager:
    """Acquire and release the deploy lock at ``path`` through ``execute``."""

    def __init__(self, execute: Execute, path: str) -> None:
        self.execute = execute
        self.path = path

    def acquire(self, owner: str) -> LockHandle:
        handle = LockHandle(
            path=self.path,
            owner=owner,
            hostname=socket.gethostname(),
            pid=os.getpid(),
            token=uuid.uuid4().hex,
            acquired_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        path = quote_path(self.path)
        directory = quote_path(posixpath.dirname(self.path) or ".")
        output = self.execute(
            f"mkdir -p {directory} && "
            f"if ( set -o noclobber; printf '%s' {shlex.quote(handle.content())} > {path} ) 2>/dev/null; "
            f"then echo +acquired; else echo +held; cat {path} 2>/dev/null; fi"
        )
        lines = output.splitlines()
        if lines and lines[0].strip() == "+acquired":
            logger.info("🔒 Lock acquired at %s by %s", self.path, owner)
            return handle

        record = LockRecord.parse("\n".join(lines[1:]))
        raise LockHeld(self.path, record.owner, record.acquired_at, record.is_stale())

    def release(self, handle: LockHandle) -> bool:
        """Delete the lock if it still belongs to ``handle``."""
        path = quote_path(handle.path)
        output = self.execute(
            f'if [ "$(cat {path} 2>/dev/null)" = {shlex.quote(handle.content())} ]; '
            f"then rm -f {path} && echo +released; else echo +mismatch; fi"
        )
        if output.strip() == "+released":
            logger.info("🔓 Lock released at %s", handle.path)
            return True
        logger.warning("⚠️ Lock at %s no longer belongs to this deployment, left in place", handle.path)
        return False

    def force_release(self) -> Optional[LockRecord]:
        """Remove the lock whoever owns it; reported as an override."""
        path = quote_path(self.path)
        output = self.execute(f"if [ -f {path} ]; then cat {path}; rm -f {path}; fi")
        if not output.strip():
            logger.info("No lock at %s", self.path)
            return None
        record = LockRecord.parse(output)
        logger.warning(
            "🔓 Forced unlock of %s, overriding lock held by %s since %s",
            self.path,
            record.owner or "unknown",
            record.acquired_at or "unknown time",
        )
        return record

    def inspect(self) -> Optional[LockRecord]:
        path = quote_path(self.path)
        output = self.execute(f"if [ -f {path} ]; then cat {path}; fi")
        if not output.strip():
            return None
        return LockRecord.parse(output)

    def is_locked(self) -> bool:
        return self.inspect() is not None
