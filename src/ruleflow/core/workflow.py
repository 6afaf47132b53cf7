"""Workflow facade: one invocation from rules to finished jobs."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ruleflow.config import Config
from ruleflow.core.executors import ClusterExecutor, Executor, LocalExecutor, SubmissionInterface
from ruleflow.core.graph import GraphBuilder, JobGraph
from ruleflow.core.job_types import Classification, JobKey
from ruleflow.core.loader import load_rules
from ruleflow.core.locking import LockManager
from ruleflow.core.markers import IncompleteMarkers
from ruleflow.core.rules import RuleRegistry
from ruleflow.core.scheduler import Scheduler
from ruleflow.core.staleness import StalenessEvaluator
from ruleflow.core.summary import RunSummary
from ruleflow.utils.logging import get_logger

Plan = Tuple[JobGraph, Dict[JobKey, Classification]]


@contextmanager
def working_directory(path: Path) -> Iterator[None]:
    previous = Path.cwd()
    os.chdir(path)
    try:
        yield
    finally:
        os.chdir(previous)


class Workflow:
    """Build, classify and run the jobs for a set of targets.

    Args:
        registry: Declared rules
        config: Engine configuration; ``config.config`` is the workflow configuration
        resolver: Capability answering ``lookup()`` inputs
        submitter: Cluster submission interface used when a submit template is set
    """

    def __init__(
        self,
        registry: RuleRegistry,
        config: Optional[Config] = None,
        resolver: Optional[Callable[[str], Any]] = None,
        submitter: Optional[SubmissionInterface] = None,
    ):
        self.registry = registry
        self.config = config or Config()
        self.resolver = resolver
        self.submitter = submitter
        self.workdir = Path(self.config.workdir).resolve()
        state_dir = Path(self.config.runtime.state_dir)
        self.state_dir = state_dir if state_dir.is_absolute() else self.workdir / state_dir
        self.lock = LockManager(self.state_dir)
        self.logger = get_logger("workflow")
        self._scheduler: Optional[Scheduler] = None

    @classmethod
    def from_config(cls, config: Config, submitter: Optional[SubmissionInterface] = None) -> "Workflow":
        """Load the rule file named by ``config`` and wrap it."""
        rulefile = Path(config.rulefile)
        if not rulefile.is_absolute():
            rulefile = Path(config.workdir) / rulefile
        loaded = load_rules(rulefile, config.config)
        return cls(loaded.registry, config, resolver=loaded.resolver, submitter=submitter)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _targets(self, targets: Optional[Sequence[str]]) -> List[str]:
        return list(targets) if targets else list(self.config.targets)

    def build(self, targets: Optional[Sequence[str]] = None) -> JobGraph:
        builder = GraphBuilder(
            self.registry,
            config=self.config.config,
            resolver=self.resolver,
            default_resources=self.config.cluster.default_resources,
        )
        with working_directory(self.workdir):
            return builder.build(self._targets(targets))

    def plan(self, targets: Optional[Sequence[str]] = None) -> Plan:
        """Build the job graph and classify every job."""
        graph = self.build(targets)
        evaluator = StalenessEvaluator(
            incomplete=IncompleteMarkers(self.state_dir).paths,
            force_all=self.config.execution.force_all,
            force_rules=self.config.execution.force_rules,
        )
        unknown = set(self.config.execution.force_rules) - set(self.registry.names)
        if unknown:
            self.logger.warning(f"Forced rules not declared: {', '.join(sorted(unknown))}")
        with working_directory(self.workdir):
            classification = evaluator.classify(graph)
        return graph, classification

    def dry_run(self, targets: Optional[Sequence[str]] = None) -> RunSummary:
        """Report what would run and why, without touching anything."""
        graph, classification = self.plan(targets)
        return RunSummary.build(graph, classification, dry_run=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _make_executor(self) -> Executor:
        runtime = self.config.runtime
        if self.config.cluster.enabled:
            return ClusterExecutor(
                self.config.cluster.submit,
                self.state_dir,
                workdir=self.workdir,
                printshellcmds=runtime.printshellcmds,
                submitter=self.submitter,
            )
        return LocalExecutor(self.state_dir, workdir=self.workdir, printshellcmds=runtime.printshellcmds)

    def run(self, targets: Optional[Sequence[str]] = None) -> RunSummary:
        """Run every stale job for ``targets``.

        Declaration errors surface before the lock is taken. The lock is
        released only when every job succeeded.

        Raises:
            ConfigurationError: on invalid rules or targets
            UnresolvableTargetError: if a target can neither be found nor produced
            AlreadyLockedError: if another run holds the lock
        """
        graph, classification = self.plan(targets)
        self.lock.acquire(graph.targets)

        markers = IncompleteMarkers(self.state_dir)
        self._scheduler = Scheduler(
            graph,
            classification,
            self._make_executor(),
            max_jobs=self.config.execution.jobs,
            latency_wait=self.config.runtime.latency_wait,
            poll_interval=self.config.runtime.poll_interval,
            markers=markers,
            progress=self.config.runtime.enable_progress,
        )
        with working_directory(self.workdir):
            result = self._scheduler.run()

        summary = RunSummary.build(graph, classification, result)
        if result.ok:
            self.lock.release()
            self.logger.info("Workflow completed successfully")
        else:
            self.logger.error(
                f"{len(result.failed)} job(s) failed; lock kept at {self.lock.lock_file}"
            )
        return summary

    def cancel(self) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel()

    def unlock(self) -> bool:
        return self.lock.unlock()

    def list_rules(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": rule.name,
                "wildcards": list(rule.wildcards),
                "outputs": list(rule.output.values()),
                "threads": rule.threads,
                "transient": bool(rule.transient or rule.transient_slots),
            }
            for rule in self.registry
        ]
