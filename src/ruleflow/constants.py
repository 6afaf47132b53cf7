"""Unified constants for ruleflow.

This module centralizes values shared between the engine, the CLI and the
default configuration template.
"""

# ================== Targets ==================
# Rule used as the target when none is requested
DEFAULT_TARGET_RULE: str = "all"

# Rule file looked up in the working directory
DEFAULT_RULEFILE: str = "Rulefile.py"


# ================== Pattern Matching ==================
# Sub-pattern a wildcard matches when no constraint is declared
DEFAULT_WILDCARD_REGEX: str = r"[^/]+"

# Guards runaway recursive rule patterns during graph construction
MAX_RESOLUTION_DEPTH: int = 200


# ================== Filesystem ==================
# Grace period (seconds) for outputs to appear after a job reports success
DEFAULT_LATENCY_WAIT: float = 30.0

# Directory holding locks, markers, job logs and cluster scripts
DEFAULT_STATE_DIR: str = ".ruleflow"


# ================== Scheduling ==================
# Interval (seconds) between polls of running jobs
DEFAULT_POLL_INTERVAL: float = 0.2

# Bytes of a failed job's log attached to its error
LOG_TAIL_BYTES: int = 4000
