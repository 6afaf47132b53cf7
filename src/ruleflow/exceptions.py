"""Custom exceptions for ruleflow."""

from __future__ import annotations

from typing import Optional, Sequence


class RuleflowError(Exception):
    """Base exception for all ruleflow errors."""

    pass


class ConfigurationError(RuleflowError):
    """Raised when rule declarations or engine configuration are invalid.

    Configuration-class errors are fatal before any job is dispatched.
    """

    pass


class AmbiguousRuleError(ConfigurationError):
    """Raised when more than one rule claims the same requested path."""

    def __init__(self, path: str, rules: Sequence[str]):
        self.path = path
        self.rules = list(rules)
        super().__init__(
            f"Ambiguous rule for target {path!r}: output patterns of rules "
            f"{', '.join(self.rules)} all match it"
        )


class CyclicDependencyError(ConfigurationError):
    """Raised when a job depends, transitively, on its own output."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__("Cyclic dependency: " + " -> ".join(self.chain))


class UnboundReferenceError(ConfigurationError):
    """Raised when a template references a name that has no binding."""

    def __init__(self, name: str, template: str, rule: Optional[str] = None):
        self.name = name
        self.template = template
        self.rule = rule
        where = f" in rule {rule!r}" if rule else ""
        super().__init__(f"Unbound reference {{{name}}}{where}: {template!r}")


class DuplicateOutputError(ConfigurationError):
    """Raised when two jobs (or two slots of one job) declare the same output path."""

    def __init__(self, path: str, owners: Sequence[str]):
        self.path = path
        self.owners = list(owners)
        super().__init__(f"Output {path!r} is declared more than once: {', '.join(self.owners)}")


class WorkflowLoadError(ConfigurationError):
    """Raised when a rule file cannot be loaded."""

    pass


class VersionError(ConfigurationError):
    """Raised when a rule file requires a newer ruleflow."""

    pass


class UnresolvableTargetError(RuleflowError):
    """Raised when a requested path matches no rule and does not exist."""

    def __init__(self, path: str, requested_by: Optional[str] = None):
        self.path = path
        self.requested_by = requested_by
        message = f"Missing input file or no rule to produce {path!r}"
        if requested_by:
            message += f" (required by {requested_by})"
        super().__init__(message)


class AlreadyLockedError(RuleflowError):
    """Raised when a run is started while another run holds the lock."""

    def __init__(self, lock_file, owner: Optional[dict] = None):
        self.lock_file = lock_file
        self.owner = owner or {}
        details = ""
        if self.owner:
            details = (
                f" (pid {self.owner.get('pid')} on {self.owner.get('host')}, "
                f"started {self.owner.get('started_at')})"
            )
        super().__init__(
            f"Directory is locked by another run{details}. If that run crashed, "
            f"inspect its outputs and clear the lock with --unlock: {lock_file}"
        )


class JobExecutionError(RuleflowError):
    """Raised when a job exits non-zero or fails to produce its outputs."""

    def __init__(
        self,
        message: str = "",
        jobid: Optional[int] = None,
        rule: Optional[str] = None,
        returncode: Optional[int] = None,
        log_tail: Optional[str] = None,
    ):
        """Initialize JobExecutionError with optional job details.

        Args:
            message: Error message
            jobid: Id of the failing job
            rule: Rule the failing job was derived from
            returncode: Exit code of the job command, if it ran
            log_tail: Last lines of the job's log file
        """
        super().__init__(message)
        self.jobid = jobid
        self.rule = rule
        self.returncode = returncode
        self.log_tail = log_tail


class SubmissionError(JobExecutionError):
    """Raised when the cluster submission interface rejects a job."""

    pass


class FilesystemLatencyError(RuleflowError):
    """Raised when outputs are still missing after the latency grace period."""

    def __init__(self, missing: Sequence[str], waited: float):
        self.missing = list(missing)
        self.waited = waited
        super().__init__(
            f"Missing output files after {waited:.1f} seconds: {', '.join(self.missing)}. "
            "This might be due to filesystem latency; consider increasing --latency-wait."
        )
