"""Executor module: scheduling tasks across hosts and worker processes.

- Scheduler: expands a pipeline and runs it, sequentially or in worker processes
- Coordinator: master-side RPC endpoint (load / save / proxy)
- CoordinatorClient: worker-side client for the coordinator
- FunctionRegistry: named functions callable through the proxy

The scheduler, coordinator and worker entry point live in ``master``,
``server`` and ``worker``; import them from there.
"""

from .client import CoordinatorClient
from .models import OUTCOME_KEY, HostOutcome, HostStatus, RunReport, WorkerJob, WorkerResult
from .registry import FunctionRegistry

__all__ = [
    "CoordinatorClient",
    "OUTCOME_KEY",
    "HostOutcome",
    "HostStatus",
    "RunReport",
    "WorkerJob",
    "WorkerResult",
    "FunctionRegistry",
]
