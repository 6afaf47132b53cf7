"""Job dispatch backends.

An executor starts jobs and reports the ones that have finished; it never
decides what to run. The scheduler drives it from a single thread through
``submit``/``poll`` and stops it with ``cancel``.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Dict, List, Mapping, Optional, Tuple

import click

from ruleflow.constants import LOG_TAIL_BYTES
from ruleflow.core.graph import Job
from ruleflow.core.patterns import render
from ruleflow.exceptions import JobExecutionError, SubmissionError
from ruleflow.utils.logging import LogTemplates, get_logger

logger = get_logger("executors")

# Finished jobs and the error that ended them, if any
Finished = List[Tuple[Job, Optional[JobExecutionError]]]


def read_tail(path: Path, max_bytes: int = LOG_TAIL_BYTES) -> str:
    """Return the last ``max_bytes`` of a log file ('' if unreadable)."""
    try:
        with open(path, "rb") as handle:
            try:
                handle.seek(0, 2)
                size = handle.tell()
                handle.seek(max(0, size - max_bytes))
            except OSError:
                pass
            data = handle.read()
        return data.decode(errors="replace")
    except OSError:
        return ""


def _log_name(job: Job) -> str:
    return f"{job.rule.name}.{job.jobid}.log"


def _failure(job: Job, reason: str, returncode: Optional[int], log_file: Path) -> JobExecutionError:
    tail = read_tail(log_file)
    message = f"Job {job.jobid} ({job.rule.name}) {reason}"
    if tail:
        message = f"{message}. Last output:\n{tail[-2000:]}"
    return JobExecutionError(
        message, jobid=job.jobid, rule=job.rule.name, returncode=returncode, log_tail=tail
    )


class Executor:
    """Base class for dispatch backends."""

    name = "base"

    def __init__(self, state_dir: Path, workdir: Optional[Path] = None, printshellcmds: bool = False):
        self.state_dir = Path(state_dir)
        self.workdir = Path(workdir) if workdir else Path.cwd()
        self.printshellcmds = printshellcmds
        self.log_dir = self.state_dir / "logs"

    def log_file(self, job: Job) -> Path:
        return self.log_dir / _log_name(job)

    def _announce(self, job: Job) -> None:
        if job.message:
            click.echo(job.message)
        if self.printshellcmds:
            click.echo(job.command)

    def submit(self, job: Job) -> None:
        """Start ``job``.

        Raises:
            JobExecutionError: if the job could not be started
        """
        raise NotImplementedError

    def poll(self) -> Finished:
        """Return the jobs that finished since the last call."""
        raise NotImplementedError

    @property
    def running(self) -> int:
        raise NotImplementedError

    def cancel(self) -> List[Job]:
        """Stop running jobs; return those whose processes were terminated."""
        return []

    def shutdown(self) -> None:
        pass


@dataclass
class _LocalProcess:
    job: Job
    process: subprocess.Popen
    log_file: Path
    log_handle: IO[Any]


class LocalExecutor(Executor):
    """Run job commands as child processes of the engine."""

    name = "local"

    def __init__(
        self,
        state_dir: Path,
        workdir: Optional[Path] = None,
        printshellcmds: bool = False,
        env: Optional[Mapping[str, str]] = None,
        terminate_timeout: float = 10.0,
    ):
        super().__init__(state_dir, workdir, printshellcmds)
        self.env = dict(env) if env is not None else None
        self.terminate_timeout = terminate_timeout
        self._processes: Dict[int, _LocalProcess] = {}

    @property
    def running(self) -> int:
        return len(self._processes)

    def submit(self, job: Job) -> None:
        self._announce(job)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_file(job)
        env = dict(self.env if self.env is not None else os.environ)
        # Advisory: commands decide themselves whether to honour it
        env["RULEFLOW_THREADS"] = str(job.threads)

        log_handle = open(log_file, "w")
        try:
            process = subprocess.Popen(
                job.command,
                shell=True,
                cwd=self.workdir,
                env=env,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            log_handle.close()
            raise JobExecutionError(
                f"Could not start job {job.jobid} ({job.rule.name}): {e}",
                jobid=job.jobid,
                rule=job.rule.name,
            ) from e
        self._processes[job.jobid] = _LocalProcess(job, process, log_file, log_handle)
        logger.debug(f"Job {job.jobid} running as pid {process.pid}: {job.command}")

    def poll(self) -> Finished:
        finished: Finished = []
        for jobid, entry in list(self._processes.items()):
            returncode = entry.process.poll()
            if returncode is None:
                continue
            entry.log_handle.close()
            del self._processes[jobid]
            error = None
            if returncode != 0:
                error = _failure(entry.job, f"exited with code {returncode}", returncode, entry.log_file)
            finished.append((entry.job, error))
        return finished

    def cancel(self) -> List[Job]:
        """Terminate processes still running.

        Processes that already exited are left for ``poll`` to report, so
        their outputs are judged like any other finished job.
        """
        running = {
            jobid: entry for jobid, entry in self._processes.items() if entry.process.poll() is None
        }
        for entry in running.values():
            logger.warning(f"Terminating job {entry.job.jobid} ({entry.job.rule.name})")
            entry.process.terminate()
        for jobid, entry in running.items():
            try:
                entry.process.wait(timeout=self.terminate_timeout)
            except subprocess.TimeoutExpired:
                entry.process.kill()
                entry.process.wait()
            entry.log_handle.close()
            del self._processes[jobid]
        return [entry.job for entry in running.values()]

    def shutdown(self) -> None:
        self.cancel()
        for entry in self._processes.values():
            entry.log_handle.close()
        self._processes.clear()


class SubmissionInterface:
    """Hands a job to an external cluster scheduler."""

    def submit(self, command: str, resources: Mapping[str, Any]) -> bool:
        """Submit ``command``; return False if the scheduler rejected it."""
        raise NotImplementedError


class ShellSubmitter(SubmissionInterface):
    """Run the rendered submission command (e.g. ``sbatch ... script.sh``)."""

    def __init__(self, workdir: Optional[Path] = None):
        self.workdir = workdir

    def submit(self, command: str, resources: Mapping[str, Any]) -> bool:
        result = subprocess.run(
            command,
            shell=True,
            cwd=self.workdir,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            logger.error(
                f"Submission command failed ({result.returncode}): {command}\n{result.stderr.strip()}"
            )
            return False
        if result.stdout.strip():
            logger.debug(f"Submission output: {result.stdout.strip()}")
        return True


SCRIPT_TEMPLATE = """#!/bin/sh
# ruleflow job {jobid} ({rule})
cd {workdir} || exit 1
(
{command}
) > {log} 2>&1
status=$?
if [ "$status" -eq 0 ]; then
    touch {finished}
else
    echo "$status" > {failed}
fi
exit "$status"
"""


@dataclass
class _ClusterJob:
    job: Job
    script: Path
    log_file: Path
    finished: Path
    failed: Path


class ClusterExecutor(Executor):
    """Submit jobs as shell scripts through a submission interface.

    Args:
        submit_template: Submission command template, rendered per job with
            ``{threads}``, ``{resources.*}``, ``{rule}``, ``{jobid}``, ``{wildcards.*}``
            and ``{params.*}``; the job script path is appended to it
        state_dir: Directory receiving job scripts, logs and sentinels
        submitter: Submission interface (defaults to running the command in a shell)
    """

    name = "cluster"

    def __init__(
        self,
        submit_template: str,
        state_dir: Path,
        workdir: Optional[Path] = None,
        printshellcmds: bool = False,
        submitter: Optional[SubmissionInterface] = None,
    ):
        super().__init__(state_dir, workdir, printshellcmds)
        self.submit_template = submit_template
        self.submitter = submitter or ShellSubmitter(self.workdir)
        self.script_dir = self.state_dir / "cluster"
        self._jobs: Dict[int, _ClusterJob] = {}

    @property
    def running(self) -> int:
        return len(self._jobs)

    def _write_script(self, job: Job) -> _ClusterJob:
        self.script_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        stem = f"{job.rule.name}.{job.jobid}"
        entry = _ClusterJob(
            job=job,
            script=self.script_dir / f"{stem}.sh",
            log_file=self.log_file(job),
            finished=self.script_dir / f"{stem}.finished",
            failed=self.script_dir / f"{stem}.failed",
        )
        for sentinel in (entry.finished, entry.failed):
            if sentinel.exists():
                sentinel.unlink()
        text = SCRIPT_TEMPLATE.format(
            jobid=job.jobid,
            rule=job.rule.name,
            workdir=shlex.quote(str(self.workdir.resolve())),
            command=job.command,
            log=shlex.quote(str(entry.log_file.resolve())),
            finished=shlex.quote(str(entry.finished.resolve())),
            failed=shlex.quote(str(entry.failed.resolve())),
        )
        entry.script.write_text(text)
        entry.script.chmod(0o755)
        return entry

    def submit(self, job: Job) -> None:
        self._announce(job)
        entry = self._write_script(job)
        submit_cmd = render(self.submit_template, job.wildcards, job.namespace(), rule=job.rule.name)
        command = f"{submit_cmd} {shlex.quote(str(entry.script.resolve()))}"
        if not self.submitter.submit(command, dict(job.resources)):
            raise SubmissionError(
                f"Cluster submission rejected job {job.jobid} ({job.rule.name}): {command}",
                jobid=job.jobid,
                rule=job.rule.name,
            )
        self._jobs[job.jobid] = entry
        logger.info(LogTemplates.JOB_SUBMITTED.format(jobid=job.jobid, rule=job.rule.name))

    def poll(self) -> Finished:
        finished: Finished = []
        for jobid, entry in list(self._jobs.items()):
            if entry.finished.exists():
                finished.append((entry.job, None))
            elif entry.failed.exists():
                try:
                    returncode: Optional[int] = int(entry.failed.read_text().strip())
                except (OSError, ValueError):
                    returncode = None
                finished.append(
                    (entry.job, _failure(entry.job, f"failed with code {returncode}", returncode, entry.log_file))
                )
            else:
                continue
            del self._jobs[jobid]
        return finished

    def cancel(self) -> List[Job]:
        if self._jobs:
            logger.warning(
                f"Leaving {len(self._jobs)} submitted job(s) to the cluster scheduler; "
                "their outputs stay marked incomplete"
            )
        self._jobs.clear()
        return []
