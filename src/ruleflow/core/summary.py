"""Run summaries: what was planned, why, and how it ended."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ruleflow.core.graph import JobGraph
from ruleflow.core.job_types import Classification, JobKey, JobStatus
from ruleflow.core.scheduler import RunResult


@dataclass
class JobSummary:
    jobid: int
    rule: str
    wildcards: Dict[str, str]
    inputs: List[str]
    outputs: List[str]
    needs_run: bool
    reasons: List[str]
    reason: str
    command: str = ""
    status: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobid": self.jobid,
            "rule": self.rule,
            "wildcards": dict(self.wildcards),
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "needs_run": self.needs_run,
            "reasons": list(self.reasons),
            "reason": self.reason,
            "command": self.command,
            "status": self.status,
            "duration": self.duration,
            "error": self.error,
        }


@dataclass
class RunSummary:
    """Per-job and per-rule view of a planned or finished run."""

    targets: List[str]
    jobs: List[JobSummary] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False

    @classmethod
    def build(
        cls,
        graph: JobGraph,
        classification: Mapping[JobKey, Classification],
        result: Optional[RunResult] = None,
        dry_run: bool = False,
    ) -> "RunSummary":
        summary = cls(targets=list(graph.targets), dry_run=dry_run)
        for job in graph:
            c = classification[job.key]
            entry = JobSummary(
                jobid=job.jobid,
                rule=job.rule.name,
                wildcards=dict(job.wildcards),
                inputs=job.input_paths,
                outputs=job.output_paths,
                needs_run=c.needs_run,
                reasons=[r.value for r in c.reasons],
                reason=c.describe(),
                command=job.command,
            )
            if result is not None:
                status = result.statuses.get(job.key)
                entry.status = status.value if status is not None else None
                record = result.records.get(job.key)
                entry.duration = record.duration if record is not None else None
                entry.error = result.errors.get(job.key)
            summary.jobs.append(entry)
        if result is not None:
            summary.cancelled = result.cancelled
        return summary

    @property
    def planned(self) -> List[JobSummary]:
        return [j for j in self.jobs if j.needs_run]

    @property
    def failed(self) -> List[JobSummary]:
        return [j for j in self.jobs if j.status == JobStatus.FAILED.value]

    @property
    def ok(self) -> bool:
        return not self.cancelled and not self.failed

    def rule_counts(self) -> Dict[str, int]:
        """Number of jobs to run per rule, in first-seen order."""
        return dict(Counter(j.rule for j in self.planned))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": list(self.targets),
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "total_jobs": len(self.jobs),
            "jobs_to_run": len(self.planned),
            "rule_counts": self.rule_counts(),
            "jobs": [j.to_dict() for j in self.jobs],
        }
