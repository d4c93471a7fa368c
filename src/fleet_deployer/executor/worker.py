"""Per-host task execution, in the master or in a worker process."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..exceptions import RPCError
from ..task import Context, Task, context_stack
from .client import CoordinatorClient
from .models import WorkerJob, WorkerResult

if TYPE_CHECKING:
    from ..deployer import Bootstrap
    from ..host import Host

logger = logging.getLogger(__name__)


def execute_task(task: Task, host: "Host") -> WorkerResult:
    """Run ``task`` with ``host`` as the current context and report the outcome."""
    try:
        with context_stack().scoped(Context(host)):
            task.run()
    except Exception as exc:
        logger.error("[%s] ❌ %s failed: %s", host.alias, task.name, exc)
        return WorkerResult(host=host.alias, ok=False, reason=str(exc), error_type=type(exc).__name__)
    return WorkerResult(host=host.alias, ok=True)


def init_worker(bootstrap: Optional["Bootstrap"]) -> None:
    """Process pool initializer: rebuild the deployer when it was not inherited."""
    from ..deployer import Deployer

    if not Deployer.has_instance() and bootstrap is not None:
        bootstrap.build()


def run_worker(job: WorkerJob) -> WorkerResult:
    """Entry point of a worker process for one task on one host.

    The host's authoritative config is loaded from the coordinator first and
    the resolved values are always saved back, failure or not.
    """
    from ..deployer import Deployer

    deployer = Deployer.current()
    host = deployer.get_host(job.host)
    task = deployer.tasks.get(job.task)
    client = CoordinatorClient(job.port, timeout=job.rpc_timeout)
    deployer.client = client
    try:
        try:
            host.config.load(client.load(job.host))
        except RPCError as exc:
            return WorkerResult(host=job.host, ok=False, reason=f"Cannot load config: {exc}", error_type="RPCError")

        result = execute_task(task, host)

        try:
            client.save(job.host, host.config.changed_values())
        except RPCError as exc:
            if result.ok:
                result = WorkerResult(host=job.host, ok=False, reason=f"Cannot save config: {exc}", error_type="RPCError")
            else:
                logger.warning("[%s] Config not saved after failure: %s", job.host, exc)
        return result
    finally:
        deployer.client = None
        client.close()
