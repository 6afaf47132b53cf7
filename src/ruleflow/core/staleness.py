"""Staleness evaluation.

A job is satisfied when all of its outputs exist, every output is strictly
newer than every input, and every job feeding it is satisfied as well. The
evaluator reads file metadata only; it never modifies the filesystem.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set

from ruleflow.core import filesystem as fs
from ruleflow.core.graph import Job, JobGraph
from ruleflow.core.job_types import Classification, JobKey, Reason, Staleness
from ruleflow.utils.logging import get_logger

logger = get_logger("staleness")


class StalenessEvaluator:
    """Classify every job of a graph as satisfied or needing to run.

    Args:
        incomplete: Output paths left behind by an interrupted run
        force_all: Treat every job as needing to run
        force_rules: Names of rules whose jobs are forced to run
    """

    def __init__(
        self,
        incomplete: Iterable[str] = (),
        force_all: bool = False,
        force_rules: Iterable[str] = (),
    ):
        self.incomplete: Set[str] = set(incomplete)
        self.force_all = force_all
        self.force_rules: Set[str] = set(force_rules)
        self._effective: Dict[str, Optional[int]] = {}

    def classify(self, graph: JobGraph) -> Dict[JobKey, Classification]:
        """Return the classification of every job, keyed by job key."""
        self._effective = {}
        result: Dict[JobKey, Classification] = {}
        deferred: Set[JobKey] = set()

        # Producers first: a rerun upstream forces everything downstream
        for job in graph:
            classification = self._classify_job(job, graph, result, deferred)
            result[job.key] = classification

        # Consumers first: jobs missing only transient outputs run when needed.
        # Regenerating one reruns everything downstream, which may in turn need
        # other transient outputs, so repeat until nothing changes.
        changed = True
        while changed:
            changed = False
            for job in reversed(graph.jobs()):
                if job.key not in deferred:
                    continue
                needed_by = [dep for dep in graph.dependents(job) if result[dep.key].needs_run]
                if needed_by or graph.is_target(job):
                    self._regenerate(job, result, deferred)
                    logger.debug(f"{job} regenerates transient outputs for downstream jobs")
                    self._propagate(job, graph, result, deferred)
                    changed = True

        stale = sum(1 for c in result.values() if c.needs_run)
        logger.info(f"{stale} of {len(result)} jobs need to run")
        return result

    @staticmethod
    def _regenerate(
        job: Job, result: Dict[JobKey, Classification], deferred: Set[JobKey]
    ) -> None:
        deferred.discard(job.key)
        classification = result[job.key]
        classification.state = Staleness.NEEDS_RUN
        classification.reasons.insert(0, Reason.MISSING_OUTPUT)
        classification.details[Reason.MISSING_OUTPUT] = fs.missing(job.output_paths)

    def _propagate(
        self,
        job: Job,
        graph: JobGraph,
        result: Dict[JobKey, Classification],
        deferred: Set[JobKey],
    ) -> None:
        """Mark every job downstream of a newly stale job as needing to run."""
        for downstream in graph.downstream(job):
            if downstream.key in deferred:
                self._regenerate(downstream, result, deferred)
            classification = result[downstream.key]
            upstream = [
                p
                for dep in graph.dependencies(downstream)
                if result[dep.key].needs_run
                for p in dep.output_paths
                if p in downstream.input_paths
            ]
            if upstream and Reason.UPSTREAM_RERUN not in classification.reasons:
                classification.reasons.append(Reason.UPSTREAM_RERUN)
                classification.details[Reason.UPSTREAM_RERUN] = upstream
            classification.state = Staleness.NEEDS_RUN

    def _classify_job(
        self,
        job: Job,
        graph: JobGraph,
        known: Dict[JobKey, Classification],
        deferred: Set[JobKey],
    ) -> Classification:
        reasons: List[Reason] = []
        details: Dict[Reason, List[str]] = {}

        def add(reason: Reason, paths: Optional[List[str]] = None) -> None:
            reasons.append(reason)
            if paths:
                details[reason] = paths

        if self.force_all or job.rule.name in self.force_rules:
            add(Reason.FORCED)

        missing = fs.missing(job.output_paths)
        transient = set(job.transient_outputs)
        missing_kept = [p for p in missing if p not in transient]
        if missing_kept:
            add(Reason.MISSING_OUTPUT, missing)

        incomplete = [p for p in job.output_paths if p in self.incomplete]
        if incomplete:
            add(Reason.INCOMPLETE, incomplete)

        upstream = []
        for dep in graph.dependencies(job):
            if known[dep.key].needs_run and dep.key not in deferred:
                upstream.extend(p for p in dep.output_paths if p in job.input_paths)
        if upstream:
            add(Reason.UPSTREAM_RERUN, upstream)

        if not missing:
            updated = self._updated_inputs(job, graph)
            if updated:
                add(Reason.UPDATED_INPUT, updated)
        elif not reasons:
            # Only transient outputs are missing; decided once consumers are known
            updated = self._updated_inputs(job, graph, ignore=missing)
            if updated:
                add(Reason.UPDATED_INPUT, updated)
            else:
                deferred.add(job.key)

        state = Staleness.NEEDS_RUN if reasons else Staleness.SATISFIED
        return Classification(state=state, reasons=reasons, details=details)

    def _updated_inputs(
        self, job: Job, graph: JobGraph, ignore: Iterable[str] = ()
    ) -> List[str]:
        """Inputs at least as new as the oldest existing output."""
        skip = set(ignore)
        output_times = [fs.mtime(p) for p in job.output_paths if p not in skip]
        if not output_times:
            return []
        oldest = min(output_times)
        updated = []
        for path in job.input_paths:
            stamp = self.effective_mtime(path, graph)
            if stamp is not None and stamp >= oldest:
                updated.append(path)
        return updated

    def effective_mtime(self, path: str, graph: JobGraph) -> Optional[int]:
        """Modification time of ``path``.

        A removed transient file stands in with the newest time among its
        producer's inputs, so deleting it does not make consumers stale.
        """
        if path in self._effective:
            return self._effective[path]
        stamp: Optional[int] = None
        if fs.exists(path):
            stamp = fs.mtime(path)
        else:
            producer = graph.producer_of(path)
            if producer is not None:
                stamps = [self.effective_mtime(p, graph) for p in producer.input_paths]
                stamps = [s for s in stamps if s is not None]
                stamp = max(stamps) if stamps else None
        self._effective[path] = stamp
        return stamp
