"""Task registration and hook bookkeeping."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..exceptions import ConfigurationError
from .task import GroupTask, Task

TaskBody = Union[Callable[[], Any], Sequence[str], None]


class TaskRegistry:
    """Name -> task mapping plus failure hooks."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._failure_hooks: Dict[str, str] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def define(self, name: str, body: TaskBody = None) -> Task:
        if body is None or callable(body):
            task: Task = Task(name, body)
        elif isinstance(body, (list, tuple)):
            task = GroupTask(name, list(body))
        else:
            raise ConfigurationError(f"Task `{name}` must be a callable or a list of task names")
        previous = self._tasks.get(name)
        if previous is not None:
            # Redefining a task keeps the hooks attached to it.
            task.before = previous.before
            task.after = previous.after
            task.description = task.description or previous.description
        self._tasks[name] = task
        return task

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise ConfigurationError(f"Task `{name}` not found") from None

    def has(self, name: str) -> bool:
        return name in self._tasks

    def visible(self) -> List[Task]:
        return sorted((task for task in self._tasks.values() if not task.is_hidden), key=lambda t: t.name)

    def before(self, target: str, hook: Union[str, Callable[[], Any]]) -> None:
        self.get(target).add_before(self._hook_name(target, "before", hook))

    def after(self, target: str, hook: Union[str, Callable[[], Any]]) -> None:
        self.get(target).add_after(self._hook_name(target, "after", hook))

    def fail(self, target: str, hook: str) -> None:
        """Run ``hook`` on the failed hosts once ``target`` finishes with failures."""
        self._failure_hooks[target] = hook

    def failure_hook(self, target: str) -> Optional[str]:
        return self._failure_hooks.get(target)

    def _hook_name(self, target: str, kind: str, hook: Union[str, Callable[[], Any]]) -> str:
        if isinstance(hook, str):
            return hook
        name = f"{kind}:{target}:{len(self.get(target).before) + len(self.get(target).after)}"
        self.define(name, hook).hidden()
        return name
