"""Shared job types.

This module intentionally contains only lightweight enums/dataclasses so it
can be imported by the graph, staleness and scheduling modules without
pulling in each other.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# (rule name, sorted wildcard binding)
JobKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def make_key(rule_name: str, binding: Dict[str, str]) -> JobKey:
    return rule_name, tuple(sorted(binding.items()))


class JobStatus(str, Enum):
    """Runtime status of a job."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class Staleness(str, Enum):
    SATISFIED = "satisfied"
    NEEDS_RUN = "needs_run"


class Reason(str, Enum):
    """Why a job has to run; the values are the operator-facing texts."""

    MISSING_OUTPUT = "missing output files"
    UPSTREAM_RERUN = "input files updated by another job"
    UPDATED_INPUT = "updated input files"
    INCOMPLETE = "incomplete output files"
    FORCED = "forced execution"


@dataclass
class Classification:
    """Outcome of the staleness check for one job."""

    state: Staleness
    reasons: List[Reason] = field(default_factory=list)
    # Paths backing each reason, e.g. the missing outputs
    details: Dict[Reason, List[str]] = field(default_factory=dict)

    @property
    def needs_run(self) -> bool:
        return self.state is Staleness.NEEDS_RUN

    def describe(self) -> str:
        if not self.reasons:
            return "up to date"
        parts = []
        for reason in self.reasons:
            paths = self.details.get(reason)
            parts.append(f"{reason.value}: {', '.join(paths)}" if paths else reason.value)
        return "; ".join(parts)


@dataclass
class JobRecord:
    """Timing and outcome of one dispatched job."""

    jobid: int
    rule: str
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    duration: Optional[float] = None
    status: JobStatus = JobStatus.RUNNING
    error_message: Optional[str] = None

    def finish(self, status: JobStatus, error_message: Optional[str] = None) -> None:
        self.end_time = time.time()
        self.duration = self.end_time - self.start_time
        self.status = status
        self.error_message = error_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobid": self.jobid,
            "rule": self.rule,
            "status": self.status.value,
            "duration": self.duration,
            "start_time": datetime.fromtimestamp(self.start_time).isoformat(),
            "error": self.error_message,
        }
