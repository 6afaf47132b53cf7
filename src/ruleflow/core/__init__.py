"""Core engine functionality (ruleflow)."""

from ruleflow.core.graph import GraphBuilder, Job, JobGraph
from ruleflow.core.job_types import JobStatus, Reason, Staleness
from ruleflow.core.rules import Rule, RuleRegistry
from ruleflow.core.workflow import Workflow

__all__ = [
    "GraphBuilder",
    "Job",
    "JobGraph",
    "JobStatus",
    "Reason",
    "Staleness",
    "Rule",
    "RuleRegistry",
    "Workflow",
]
