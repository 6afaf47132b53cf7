"""Console formatting for plans, run summaries and rule listings."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from ruleflow.__version__ import __version__
from ruleflow.core.summary import JobSummary, RunSummary

BULLET = "·"


class ConsoleFormatter:
    """Plain-text console output for ruleflow."""

    def __init__(self, width: int = 60):
        self.width = width
        self.start_time: Optional[float] = None

    def header(self, title: str = "ruleflow") -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{title}  {BULLET}  {timestamp}  {BULLET}  v{__version__}"
        if len(line) < self.width:
            line = " " * ((self.width - len(line)) // 2) + line
        return "\n".join(["=" * self.width, line, "-" * self.width])

    def separator(self, char: str = "-") -> str:
        return char * self.width

    def format_line(self, label: str, value: str, label_width: int = 12) -> str:
        return f"{BULLET} {label:<{label_width}} : {value}"

    def _format_job(self, job: JobSummary, show_command: bool) -> List[str]:
        lines = [f"{job.rule} (job {job.jobid})"]
        if job.wildcards:
            bound = ", ".join(f"{k}={v}" for k, v in job.wildcards.items())
            lines.append(f"    wildcards: {bound}")
        if job.inputs:
            lines.append(f"    input: {', '.join(job.inputs)}")
        if job.outputs:
            lines.append(f"    output: {', '.join(job.outputs)}")
        lines.append(f"    reason: {job.reason}")
        if show_command and job.command:
            lines.append(f"    command: {job.command}")
        return lines

    def format_plan(self, summary: RunSummary, show_commands: bool = False) -> str:
        """Describe the jobs a run would execute and why."""
        planned = summary.planned
        if not planned:
            return f"{BULLET} Nothing to be done: all requested files are up to date."
        lines = []
        for job in planned:
            lines.extend(self._format_job(job, show_commands))
        lines.append(self.separator())
        lines.extend(self.format_counts(summary.rule_counts()))
        if summary.dry_run:
            lines.append(f"{BULLET} This was a dry-run: no jobs were executed.")
        return "\n".join(lines)

    def format_counts(self, counts: Dict[str, int]) -> List[str]:
        width = max([len("rule")] + [len(name) for name in counts])
        lines = ["Job counts:", f"    {'rule':<{width}}  count"]
        for name, count in counts.items():
            lines.append(f"    {name:<{width}}  {count:>5}")
        lines.append(f"    {'total':<{width}}  {sum(counts.values()):>5}")
        return lines

    def format_summary(self, summary: RunSummary) -> str:
        """Describe how a finished run ended."""
        executed = [j for j in summary.planned if j.status is not None]
        succeeded = [j for j in executed if j.status == "succeeded"]
        lines = [self.format_line("Jobs run", f"{len(succeeded)} of {len(summary.planned)}")]
        for job in summary.failed:
            lines.append(self.format_line("Failed", f"{job.rule} (job {job.jobid}): {job.error}"))
        return "\n".join(lines)

    def format_rules(self, rules: List[Dict[str, Any]]) -> str:
        lines = []
        for info in rules:
            extra = f" [{', '.join(info['wildcards'])}]" if info["wildcards"] else ""
            lines.append(f"{info['name']}{extra}")
            for output in info["outputs"]:
                lines.append(f"    -> {output}")
        return "\n".join(lines)

    def start_message(self) -> str:
        self.start_time = time.time()
        return self.format_line("Status", "Starting workflow...")

    def success_message(self) -> str:
        lines = [f"{BULLET} Workflow completed successfully!"]
        if self.start_time:
            elapsed = time.time() - self.start_time
            minutes, seconds = int(elapsed // 60), int(elapsed % 60)
            time_str = f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"
            lines.append(f"{BULLET} Time elapsed: {time_str}")
        return "\n".join(lines)

    def error_message(self, error: str) -> str:
        return f"{BULLET} Workflow failed: {error}"
