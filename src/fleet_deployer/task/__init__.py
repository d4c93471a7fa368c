"""Tasks, pipelines and the host context stack."""

from .context import Context, ContextStack, context_stack, current_context, has_context
from .planner import TaskPlanner
from .registry import TaskRegistry
from .task import GroupTask, Task

__all__ = [
    "Context",
    "ContextStack",
    "context_stack",
    "current_context",
    "has_context",
    "TaskPlanner",
    "TaskRegistry",
    "GroupTask",
    "Task",
]
