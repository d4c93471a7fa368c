"""Host context stack.

Every execution unit (a worker process, the coordinator's serving thread, the
master's main thread) owns its own ``ContextStack``. Configuration reads,
command execution and logging resolve the host from the top of the stack of
the unit they run in.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Iterator, List, Optional

from ..exceptions import EmptyStackError
from ..utils.logging import host_logger

if TYPE_CHECKING:
    from ..host import Host


@dataclass(frozen=True)
class Context:
    """The host and I/O streams an operation runs against."""

    host: "Host"
    input: Optional[IO[str]] = None
    output: logging.LoggerAdapter = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.output is None:
            object.__setattr__(self, "output", host_logger(self.host.alias))


class ContextStack:
    """LIFO stack of contexts."""

    def __init__(self) -> None:
        self._frames: List[Context] = []

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def depth(self) -> int:
        return len(self._frames)

    def push(self, context: Context) -> None:
        self._frames.append(context)

    def pop(self) -> Context:
        if not self._frames:
            raise EmptyStackError("Context stack is empty, pop() without matching push()")
        return self._frames.pop()

    def current(self) -> Context:
        if not self._frames:
            raise EmptyStackError("No current context: the operation is not running on a host")
        return self._frames[-1]

    @contextmanager
    def scoped(self, context: Context) -> Iterator[Context]:
        """Push ``context`` for the duration of the block, popping on every exit path."""
        depth = len(self._frames)
        self.push(context)
        try:
            yield context
        finally:
            del self._frames[depth:]


_local = threading.local()


def context_stack() -> ContextStack:
    """Return the stack owned by the calling thread."""
    stack = getattr(_local, "stack", None)
    if stack is None:
        stack = ContextStack()
        _local.stack = stack
    return stack


def current_context() -> Context:
    return context_stack().current()


def has_context() -> bool:
    return len(context_stack()) > 0
