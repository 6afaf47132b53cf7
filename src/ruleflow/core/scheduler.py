"""Dependency-ordered job dispatch.

The scheduler owns the run loop: it promotes jobs whose dependencies have
succeeded, starts them through an executor without exceeding the concurrency
limit, verifies their outputs without blocking other dispatch and propagates
failures to everything downstream while unrelated branches keep running.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ruleflow.constants import DEFAULT_LATENCY_WAIT, DEFAULT_POLL_INTERVAL
from ruleflow.core import filesystem as fs
from ruleflow.core.executors import Executor
from ruleflow.core.graph import Job, JobGraph
from ruleflow.core.job_types import Classification, JobKey, JobRecord, JobStatus
from ruleflow.core.markers import IncompleteMarkers
from ruleflow.exceptions import FilesystemLatencyError, JobExecutionError
from ruleflow.utils.logging import LogTemplates, get_logger
from ruleflow.utils.progress import progress_bar

logger = get_logger("scheduler")

UPSTREAM_FAILED = "upstream job failed"


@dataclass
class RunResult:
    """Outcome of one scheduler run."""

    statuses: Dict[JobKey, JobStatus] = field(default_factory=dict)
    # Jobs actually dispatched (or completed without a command)
    executed: List[JobKey] = field(default_factory=list)
    errors: Dict[JobKey, str] = field(default_factory=dict)
    records: Dict[JobKey, JobRecord] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(
            status is JobStatus.SUCCEEDED for status in self.statuses.values()
        )

    @property
    def failed(self) -> List[JobKey]:
        return [key for key, status in self.statuses.items() if status is JobStatus.FAILED]


class Scheduler:
    """Run the stale part of a job graph.

    Args:
        graph: Job graph to run
        classification: Staleness of every job
        executor: Dispatch backend
        max_jobs: Maximum number of simultaneously running jobs
        latency_wait: Grace period for outputs to appear after a job finished
        poll_interval: Seconds between executor polls when nothing changed
        markers: Incomplete-output markers to maintain, if any
        progress: Show a tqdm progress bar
        sleep: Sleep function, injectable for tests
        clock: Monotonic clock for output grace periods, injectable for tests
    """

    def __init__(
        self,
        graph: JobGraph,
        classification: Mapping[JobKey, Classification],
        executor: Executor,
        max_jobs: int = 1,
        latency_wait: float = DEFAULT_LATENCY_WAIT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        markers: Optional[IncompleteMarkers] = None,
        progress: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_jobs < 1:
            raise ValueError("max_jobs must be >= 1")
        self.graph = graph
        self.classification = classification
        self.executor = executor
        self.max_jobs = max_jobs
        self.latency_wait = latency_wait
        self.poll_interval = poll_interval
        self.markers = markers
        self.progress = progress
        self.sleep = sleep
        self.clock = clock
        self.result = RunResult()
        self._cancelled = False
        self._running: Dict[JobKey, Job] = {}
        # Finished jobs whose outputs have not shown up yet
        self._awaiting: Dict[JobKey, Tuple[Job, fs.OutputWatch]] = {}
        self._bar = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        """Dispatch every job that needs to run, in dependency order."""
        to_run = [job for job in self.graph if self.classification[job.key].needs_run]
        for job in self.graph:
            if job.key in self.classification and not self.classification[job.key].needs_run:
                self._set_status(job, JobStatus.SUCCEEDED)
            else:
                self._set_status(job, JobStatus.PENDING)

        if not to_run:
            logger.info(LogTemplates.NOTHING_TO_DO)
            return self.result

        self._bar = progress_bar(len(to_run), desc="Jobs", enabled=self.progress)
        try:
            self._loop(len(to_run))
        except KeyboardInterrupt:
            logger.warning("Interrupted; stopping dispatch")
            self.cancel()
            raise
        finally:
            if self._cancelled:
                self._drain()
            self._bar.close()
            self.executor.shutdown()
        return self.result

    def cancel(self) -> None:
        """Stop dispatching and terminate locally running jobs."""
        self._cancelled = True
        self.result.cancelled = True
        for job in self.executor.cancel():
            self._running.pop(job.key, None)
            self._discard_outputs(job)
            if self.markers is not None:
                self.markers.clear(job.output_paths)
            self._finish_record(job, JobStatus.FAILED, "cancelled")
            self._set_status(job, JobStatus.FAILED)
            self.result.errors[job.key] = "cancelled"

    def _drain(self) -> None:
        """Settle jobs that finished on their own before the run was cancelled."""
        for job, error in self.executor.poll():
            self._running.pop(job.key, None)
            self._complete(job, error)
        self._check_awaiting()
        # Unverified outputs keep their markers so the next run redoes them
        for job, _ in self._awaiting.values():
            self._finish_record(job, JobStatus.FAILED, "cancelled")
            self._set_status(job, JobStatus.FAILED)
            self.result.errors[job.key] = "cancelled"
        self._awaiting.clear()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _loop(self, total: int) -> None:
        done = 0
        while not self._cancelled:
            progressed = False
            for job in self._ready_jobs():
                if not job.command:
                    # Aggregation jobs complete once their outputs are in place
                    self._start(job, dispatch=False)
                    self._complete(job, None)
                    progressed = True
                    continue
                if len(self._running) >= self.max_jobs:
                    break
                if self._start(job, dispatch=True):
                    progressed = True

            for job, error in self.executor.poll():
                self._running.pop(job.key, None)
                self._complete(job, error)
                progressed = True

            if self._check_awaiting():
                progressed = True

            finished = sum(
                1
                for key in self._to_run_keys()
                if self.result.statuses[key].terminal
            )
            if finished != done:
                self._bar.update(finished - done)
                done = finished
                logger.info(
                    LogTemplates.RUN_PROGRESS.format(
                        done=done, total=total, percent=100.0 * done / total
                    )
                )

            if not self._running and not self._awaiting and not self._ready_jobs():
                break
            if not progressed:
                self.sleep(self.poll_interval)

    def _to_run_keys(self) -> List[JobKey]:
        return [key for key, c in self.classification.items() if c.needs_run]

    def _ready_jobs(self) -> List[Job]:
        ready = []
        for job in self.graph:
            if self.result.statuses[job.key] not in (JobStatus.PENDING, JobStatus.READY):
                continue
            deps = self.graph.dependencies(job)
            if all(self.result.statuses[d.key] is JobStatus.SUCCEEDED for d in deps):
                self._set_status(job, JobStatus.READY)
                ready.append(job)
        return ready

    def _set_status(self, job: Job, status: JobStatus) -> None:
        job.status = status
        self.result.statuses[job.key] = status

    def _start(self, job: Job, dispatch: bool) -> bool:
        reason = self.classification[job.key].describe()
        logger.info(LogTemplates.JOB_START.format(jobid=job.jobid, rule=job.rule.name, reason=reason))
        self.result.records[job.key] = JobRecord(jobid=job.jobid, rule=job.rule.name)
        self.result.executed.append(job.key)
        self._set_status(job, JobStatus.RUNNING)
        if not dispatch:
            return True

        fs.touch_parent_dirs(job.output_paths + job.log_paths)
        if self.markers is not None:
            self.markers.mark(job.output_paths)
        try:
            self.executor.submit(job)
        except JobExecutionError as e:
            self._complete(job, e)
            return False
        self._running[job.key] = job
        return True

    def _complete(self, job: Job, error: Optional[JobExecutionError]) -> None:
        if error is not None:
            self._fail(job, error)
            return
        watch = fs.OutputWatch(job.output_paths, self.latency_wait, clock=self.clock)
        if not self._verify(job, watch):
            self._awaiting[job.key] = (job, watch)

    def _check_awaiting(self) -> bool:
        """Re-check jobs in their output grace period; True if any settled."""
        settled = [key for key, (job, watch) in self._awaiting.items() if self._verify(job, watch)]
        for key in settled:
            del self._awaiting[key]
        return bool(settled)

    def _verify(self, job: Job, watch: fs.OutputWatch) -> bool:
        """Settle ``job`` once its outputs exist or the grace period is over."""
        try:
            if not watch.check():
                return False
        except FilesystemLatencyError as e:
            self._fail(job, JobExecutionError(str(e), jobid=job.jobid, rule=job.rule.name))
            return True
        self._succeed(job)
        return True

    def _succeed(self, job: Job) -> None:
        if self.markers is not None:
            self.markers.clear(job.output_paths)
        record = self._finish_record(job, JobStatus.SUCCEEDED)
        self._set_status(job, JobStatus.SUCCEEDED)
        logger.info(
            LogTemplates.JOB_SUCCESS.format(
                jobid=job.jobid, rule=job.rule.name, duration=record.duration or 0.0
            )
        )
        self._cleanup_transients(job)

    def _fail(self, job: Job, error: JobExecutionError) -> None:
        logger.error(LogTemplates.JOB_FAILURE.format(jobid=job.jobid, rule=job.rule.name, error=error))
        self._discard_outputs(job)
        if self.markers is not None:
            self.markers.clear(job.output_paths)
        self._finish_record(job, JobStatus.FAILED, str(error))
        self._set_status(job, JobStatus.FAILED)
        self.result.errors[job.key] = str(error)

        for downstream in self.graph.downstream(job):
            if self.result.statuses[downstream.key].terminal:
                continue
            logger.warning(LogTemplates.JOB_BLOCKED.format(jobid=downstream.jobid, rule=downstream.rule.name))
            self._set_status(downstream, JobStatus.FAILED)
            self.result.errors[downstream.key] = UPSTREAM_FAILED

    def _finish_record(
        self, job: Job, status: JobStatus, error: Optional[str] = None
    ) -> JobRecord:
        record = self.result.records.setdefault(
            job.key, JobRecord(jobid=job.jobid, rule=job.rule.name)
        )
        record.finish(status, error)
        return record

    # ------------------------------------------------------------------
    # File housekeeping
    # ------------------------------------------------------------------

    def _discard_outputs(self, job: Job) -> None:
        """Remove outputs of a failed job so they never look up to date."""
        for path in fs.remove_files(job.output_paths):
            logger.warning(LogTemplates.PARTIAL_REMOVED.format(jobid=job.jobid, path=path))

    def _cleanup_transients(self, finished: Job) -> None:
        candidates = list(finished.transient_outputs)
        for path in finished.input_paths:
            producer = self.graph.producer_of(path)
            if producer is not None and path in producer.transient_outputs:
                candidates.append(path)

        for path in candidates:
            producer = self.graph.producer_of(path)
            if producer is None or self.graph.is_target(producer):
                continue
            consumers = self.graph.consumers_of(path)
            if all(self.result.statuses[c.key] is JobStatus.SUCCEEDED for c in consumers):
                for removed in fs.remove_files([path]):
                    logger.info(LogTemplates.TRANSIENT_REMOVED.format(path=removed))
