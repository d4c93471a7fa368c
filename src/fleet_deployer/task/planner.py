"""Expand a pipeline name into a flat, hook-ordered operation list."""

from __future__ import annotations

from typing import List, Set

from ..exceptions import CycleError
from .registry import TaskRegistry
from .task import GroupTask, Task


class TaskPlanner:
    """Depth-first expansion of groups and before/after hooks.

    For every task name the expansion is: its ``before`` hooks, then the task
    itself (or its group members, in order), then its ``after`` hooks. A name
    that appears again inside its own expansion raises ``CycleError``. Tasks
    flagged ``once`` are kept at their first position only.
    """

    def __init__(self, registry: TaskRegistry) -> None:
        self.registry = registry

    def expand(self, name: str) -> List[Task]:
        operations: List[Task] = []
        self._walk(name, [], operations, set())
        return operations

    def _walk(self, name: str, chain: List[str], operations: List[Task], seen_once: Set[str]) -> None:
        if name in chain:
            raise CycleError(chain + [name])
        task = self.registry.get(name)
        chain = chain + [name]

        for hook in task.before:
            self._walk(hook, chain, operations, seen_once)

        if isinstance(task, GroupTask):
            for member in task.members:
                self._walk(member, chain, operations, seen_once)
        elif task.is_once:
            if task.name not in seen_once:
                seen_once.add(task.name)
                operations.append(task)
        else:
            operations.append(task)

        for hook in task.after:
            self._walk(hook, chain, operations, seen_once)
