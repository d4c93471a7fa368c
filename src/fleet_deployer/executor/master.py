"""Task scheduler: runs an expanded pipeline across hosts."""

from __future__ import annotations

import logging
import multiprocessing
import threading
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from typing import TYPE_CHECKING, Dict, List, Optional

from ..exceptions import ConfigurationError
from ..task import Context, Task, context_stack
from .models import OUTCOME_KEY, HostOutcome, HostStatus, RunReport, WorkerJob, WorkerResult
from .server import Coordinator
from .worker import execute_task, init_worker, run_worker

if TYPE_CHECKING:
    from ..deployer import Deployer
    from ..host import Host

logger = logging.getLogger(__name__)


def _mp_context():
    if "fork" in multiprocessing.get_all_start_methods():
        return multiprocessing.get_context("fork")
    return multiprocessing.get_context("spawn")


class Scheduler:
    """
    Executes a pipeline against hosts.

    Each operation runs once per host, in the master (sequential mode) or in
    worker processes talking to a coordinator (parallel mode). A host that
    fails is dropped from the rest of the pipeline; the pipeline's failure
    hook then runs on the failed hosts only.
    """

    def __init__(
        self,
        deployer: "Deployer",
        *,
        parallel: bool = True,
        max_workers: int = 10,
        rpc_timeout: float = 30.0,
    ) -> None:
        self.deployer = deployer
        self.parallel = parallel
        self.max_workers = max(1, max_workers)
        self.rpc_timeout = rpc_timeout
        self._abort = threading.Event()
        self._coordinator: Optional[Coordinator] = None
        self._pool: Optional[ProcessPoolExecutor] = None
        self._pool_size = 1

    def abort(self) -> None:
        """Stop starting new work; remaining hosts go down the failure path."""
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def run(self, pipeline: str, hosts: List["Host"]) -> RunReport:
        if not hosts:
            raise ConfigurationError("No hosts selected")
        operations = self.deployer.planner.expand(pipeline)
        fail_hook = self.deployer.tasks.failure_hook(pipeline)
        fail_operations = self.deployer.planner.expand(fail_hook) if fail_hook else []
        self._preflight(operations, hosts)

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 RUN %s", pipeline)
        logger.info("=" * 60)
        logger.info("Hosts: %s", ", ".join(host.alias for host in hosts))
        logger.info("Mode: %s", "parallel" if self.parallel else "sequential")
        logger.info("Operations:")
        for i, task in enumerate(operations, 1):
            logger.info("  %d. %s%s", i, task.name, " (shallow)" if task.is_shallow else "")
        logger.info("=" * 60)

        for host in hosts:
            host.config.set(OUTCOME_KEY, None)

        failed: Dict[str, str] = {}
        self._pool_size = min(self.max_workers, len(hosts))
        if self.parallel:
            self._coordinator = Coordinator(self.deployer)
            self._coordinator.start()
        try:
            try:
                self._run_operations(operations, hosts, failed)
            except KeyboardInterrupt:
                logger.warning("🛑 Interrupted, aborting run")
                self._abort.set()
                self._reset_pool()
                for host in hosts:
                    failed.setdefault(host.alias, "aborted")

            if failed and fail_hook:
                self._run_failure_hook(fail_hook, fail_operations, [h for h in hosts if h.alias in failed])
        finally:
            self._shutdown()

        report = self._build_report(pipeline, hosts, failed)
        for outcome in report.outcomes.values():
            if outcome.status is HostStatus.FAILED:
                logger.error("   %s", outcome.describe())
            else:
                logger.info("   %s", outcome.describe())
        if report.ok:
            logger.info("🎉 %s completed on %d host(s)", pipeline, len(hosts))
        else:
            logger.error("💥 %s failed on: %s", pipeline, ", ".join(report.failed_hosts))
        return report

    def _preflight(self, operations: List[Task], hosts: List["Host"]) -> None:
        """Resolve every setting the operations require, before any host work."""
        required: List[str] = []
        for task in operations:
            for name in task.required:
                if name not in required:
                    required.append(name)
        for host in hosts:
            with context_stack().scoped(Context(host)):
                for name in required:
                    try:
                        host.config.get(name)
                    except ConfigurationError:
                        raise
                    except Exception as exc:
                        raise ConfigurationError(f"[{host.alias}] Cannot resolve `{name}`: {exc}") from exc

    def _run_operations(self, operations: List[Task], hosts: List["Host"], failed: Dict[str, str]) -> None:
        for i, task in enumerate(operations, 1):
            active = [host for host in hosts if host.alias not in failed]
            if self._abort.is_set():
                for host in active:
                    failed[host.alias] = "aborted"
                return
            if not active:
                logger.error("All hosts failed, stopping before %s", task.name)
                return

            logger.info("📍 Task %d/%d: %s", i, len(operations), task.name)
            if task.is_shallow:
                try:
                    task.run()
                except Exception as exc:
                    logger.error("❌ %s failed: %s", task.name, exc)
                    for host in active:
                        failed[host.alias] = f"{task.name}: {exc}"
                continue

            for result in self._run_on_hosts(task, active):
                if not result.ok:
                    failed[result.host] = f"{task.name}: {result.reason}"

    def _run_on_hosts(self, task: Task, hosts: List["Host"]) -> List[WorkerResult]:
        batch_size = task.max_hosts or len(hosts)
        results: List[WorkerResult] = []
        for start in range(0, len(hosts), batch_size):
            batch = hosts[start:start + batch_size]
            if self._abort.is_set():
                results.extend(WorkerResult(host.alias, False, "aborted", "Aborted") for host in hosts[start:])
                break
            if self.parallel:
                results.extend(self._dispatch(task, batch))
            else:
                for host in batch:
                    if self._abort.is_set():
                        results.append(WorkerResult(host.alias, False, "aborted", "Aborted"))
                    else:
                        results.append(execute_task(task, host))
        return results

    def _dispatch(self, task: Task, batch: List["Host"]) -> List[WorkerResult]:
        assert self._coordinator is not None
        pool = self._ensure_pool()
        futures: Dict[Future, str] = {}
        for host in batch:
            job = WorkerJob(task=task.name, host=host.alias, port=self._coordinator.port, rpc_timeout=self.rpc_timeout)
            futures[pool.submit(run_worker, job)] = host.alias

        by_host: Dict[str, WorkerResult] = {}
        broken = False
        for future in as_completed(futures):
            alias = futures[future]
            try:
                by_host[alias] = future.result()
            except BrokenProcessPool as exc:
                broken = True
                by_host[alias] = WorkerResult(alias, False, f"worker process died: {exc}", "BrokenProcessPool")
            except Exception as exc:
                by_host[alias] = WorkerResult(alias, False, str(exc), type(exc).__name__)
        if broken:
            self._reset_pool()

        for alias, result in by_host.items():
            if not result.ok:
                logger.error("[%s] ❌ %s failed: %s", alias, task.name, result.reason)
        return [by_host[host.alias] for host in batch]

    def _run_failure_hook(self, name: str, operations: List[Task], hosts: List["Host"]) -> None:
        logger.warning("⚠️ Running %s on failed host(s): %s", name, ", ".join(h.alias for h in hosts))
        self._abort.clear()
        for task in operations:
            if task.is_shallow:
                try:
                    task.run()
                except Exception as exc:
                    logger.error("❌ %s failed: %s", task.name, exc)
                continue
            for result in self._run_on_hosts(task, hosts):
                if not result.ok:
                    logger.error("[%s] ❌ failure hook %s failed: %s", result.host, task.name, result.reason)

    def _build_report(self, pipeline: str, hosts: List["Host"], failed: Dict[str, str]) -> RunReport:
        report = RunReport(pipeline=pipeline)
        for host in hosts:
            if host.alias in failed:
                outcome = HostOutcome(host.alias, HostStatus.FAILED, failed[host.alias])
            elif host.config.get(OUTCOME_KEY, None) == HostStatus.ROLLED_BACK.value:
                outcome = HostOutcome(host.alias, HostStatus.ROLLED_BACK)
            else:
                outcome = HostOutcome(host.alias, HostStatus.SUCCEEDED)
            report.outcomes[host.alias] = outcome
        return report

    def _ensure_pool(self) -> ProcessPoolExecutor:
        if self._pool is None:
            self._pool = ProcessPoolExecutor(
                max_workers=self._pool_size,
                mp_context=_mp_context(),
                initializer=init_worker,
                initargs=(self.deployer.bootstrap,),
            )
        return self._pool

    def _reset_pool(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    def _shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
        if self._coordinator is not None:
            self._coordinator.stop()
            self._coordinator = None
