"""Data models for the executor module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

# Tasks may set this key on a host to report a non-default outcome.
OUTCOME_KEY = "run_outcome"


class HostStatus(Enum):
    """Per-host outcome of a run"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


@dataclass
class WorkerJob:
    """One task on one host, sent to a worker process."""
    task: str
    host: str
    port: int
    rpc_timeout: float = 30.0


@dataclass
class WorkerResult:
    """What a worker reports back; must stay picklable."""
    host: str
    ok: bool
    reason: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class HostOutcome:
    host: str
    status: HostStatus
    reason: Optional[str] = None

    def describe(self) -> str:
        if self.status is HostStatus.FAILED:
            return f"{self.host}: failed ({self.reason or 'unknown reason'})"
        return f"{self.host}: {self.status.value}"


@dataclass
class RunReport:
    """Result of running a pipeline against a set of hosts."""
    pipeline: str
    outcomes: Dict[str, HostOutcome] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(outcome.status is not HostStatus.FAILED for outcome in self.outcomes.values())

    @property
    def failed_hosts(self) -> List[str]:
        return [alias for alias, outcome in self.outcomes.items() if outcome.status is HostStatus.FAILED]

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def status_of(self, alias: str) -> HostStatus:
        return self.outcomes[alias].status

    def summary_lines(self) -> List[str]:
        return [outcome.describe() for outcome in self.outcomes.values()]
