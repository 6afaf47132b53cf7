"""Tests for the local and cluster executors."""

from pathlib import Path
import subprocess
import sys
import time

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow import rule
from ruleflow.core.executors import (
    ClusterExecutor,
    LocalExecutor,
    ShellSubmitter,
    SubmissionInterface,
    read_tail,
)
from ruleflow.core.graph import GraphBuilder
from ruleflow.core.rules import RuleRegistry
from ruleflow.exceptions import SubmissionError


def job_for(shell, target="a.out", **kwargs):
    registry = RuleRegistry([rule("step", output="{s}.out", shell=shell, **kwargs)])
    return GraphBuilder(registry).build([target]).jobs()[0]


def wait_for(executor, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        finished = executor.poll()
        if finished:
            return finished
        time.sleep(0.05)
    raise AssertionError("job did not finish in time")


class RecordingSubmitter(SubmissionInterface):
    """Records submissions and runs them synchronously."""

    def __init__(self, accept=True):
        self.accept = accept
        self.calls = []

    def submit(self, command, resources):
        self.calls.append((command, dict(resources)))
        if not self.accept:
            return False
        subprocess.run(command, shell=True, check=False)
        return True


class TestReadTail:
    """Test log tail extraction."""

    def test_tail(self, tmp_path):
        path = tmp_path / "x.log"
        path.write_text("a" * 100 + "END")
        assert read_tail(path, max_bytes=3) == "END"

    def test_missing_log(self, tmp_path):
        assert read_tail(tmp_path / "missing.log") == ""


class TestLocalExecutor:
    """Test running commands as child processes."""

    def test_success(self, workdir):
        """A zero exit finishes without error; output goes to the job log."""
        job = job_for("echo hello > {output}; echo logged")
        executor = LocalExecutor(workdir / ".ruleflow", workdir=workdir)
        executor.submit(job)
        assert executor.running == 1

        [(finished, error)] = wait_for(executor)
        assert finished is job
        assert error is None
        assert executor.running == 0
        assert (workdir / "a.out").read_text().strip() == "hello"
        assert "logged" in executor.log_file(job).read_text()

    def test_failure_carries_log_tail(self, workdir):
        """A non-zero exit reports the code and the end of the log."""
        job = job_for("echo something broke >&2; exit 3")
        executor = LocalExecutor(workdir / ".ruleflow", workdir=workdir)
        executor.submit(job)

        [(_, error)] = wait_for(executor)
        assert error.returncode == 3
        assert error.jobid == job.jobid
        assert error.rule == "step"
        assert "something broke" in error.log_tail
        assert "exited with code 3" in str(error)

    def test_threads_exported(self, workdir):
        """Commands see the job's thread count."""
        job = job_for("echo $RULEFLOW_THREADS > {output}", threads=3)
        executor = LocalExecutor(workdir / ".ruleflow", workdir=workdir)
        executor.submit(job)
        wait_for(executor)
        assert (workdir / "a.out").read_text().strip() == "3"

    def test_cancel_terminates(self, workdir):
        """cancel() stops running processes and returns their jobs."""
        job = job_for("sleep 30")
        executor = LocalExecutor(workdir / ".ruleflow", workdir=workdir, terminate_timeout=5)
        executor.submit(job)
        assert executor.cancel() == [job]
        assert executor.running == 0

    def test_cancel_keeps_exited_jobs_for_poll(self, workdir):
        """A process that exited before cancel() is reported by poll, not terminated."""
        registry = RuleRegistry(
            [
                rule(
                    "step",
                    output="{s}.out",
                    params={"cmd": lambda wc: "echo done" if wc["s"] == "a" else "sleep 30"},
                    shell="{params.cmd} > {output}",
                )
            ]
        )
        done, slow = GraphBuilder(registry).build(["a.out", "b.out"]).jobs()
        executor = LocalExecutor(workdir / ".ruleflow", workdir=workdir, terminate_timeout=5)
        executor.submit(done)
        executor.submit(slow)

        deadline = time.monotonic() + 10
        while executor._processes[done.jobid].process.poll() is None:
            assert time.monotonic() < deadline, "job did not finish in time"
            time.sleep(0.05)

        assert executor.cancel() == [slow]
        assert executor.poll() == [(done, None)]
        assert (workdir / "a.out").read_text().strip() == "done"
        assert executor.running == 0
