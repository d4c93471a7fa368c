"""Task definitions."""

from __future__ import annotations

from typing import Any, Callable, List, Optional


class Task:
    """A named unit of work run against the current host context."""

    def __init__(self, name: str, callback: Optional[Callable[[], Any]] = None, description: str = "") -> None:
        self.name = name
        self.callback = callback
        self.description = description
        self.is_hidden = False
        self.is_shallow = False
        self.is_once = False
        self.max_hosts: Optional[int] = None
        self.required: List[str] = []
        self.before: List[str] = []
        self.after: List[str] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    def desc(self, description: str) -> "Task":
        self.description = description
        return self

    def hidden(self, hidden: bool = True) -> "Task":
        self.is_hidden = hidden
        return self

    def shallow(self, shallow: bool = True) -> "Task":
        """Run once per run, without a host context."""
        self.is_shallow = shallow
        return self

    def once(self, once: bool = True) -> "Task":
        """Run only the first time the task is reached in an expansion."""
        self.is_once = once
        return self

    def limit(self, max_hosts: Optional[int]) -> "Task":
        """Cap how many hosts run this task at the same time."""
        if max_hosts is not None and max_hosts < 1:
            raise ValueError("Task limit must be a positive integer")
        self.max_hosts = max_hosts
        return self

    def requires(self, *names: str) -> "Task":
        """Settings that must resolve on every host before the run starts."""
        self.required.extend(name for name in names if name not in self.required)
        return self

    def add_before(self, hook: str) -> None:
        self.before.append(hook)

    def add_after(self, hook: str) -> None:
        self.after.append(hook)

    def run(self) -> Any:
        if self.callback is None:
            return None
        return self.callback()


class GroupTask(Task):
    """A task defined as an ordered list of other task names."""

    def __init__(self, name: str, members: List[str], description: str = "") -> None:
        super().__init__(name, None, description)
        self.members = list(members)

    def run(self) -> Any:
        raise RuntimeError(f"Group task `{self.name}` is expanded, never run directly")
