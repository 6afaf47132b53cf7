"""Configuration management for ruleflow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, List
import yaml

from ruleflow.constants import (
    DEFAULT_LATENCY_WAIT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RULEFILE,
    DEFAULT_STATE_DIR,
)
from ruleflow.exceptions import ConfigurationError
from ruleflow.utils.logging import LEVELS


@dataclass
class RuntimeConfig:
    """Runtime configuration."""

    log_level: str = "WARNING"
    log_file: Optional[Path] = None
    # Locks, incomplete markers, job logs and cluster scripts live here
    state_dir: Path = Path(DEFAULT_STATE_DIR)
    # Seconds to wait for outputs to appear on slow/distributed filesystems
    latency_wait: float = DEFAULT_LATENCY_WAIT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    # Enable tqdm progress where available
    enable_progress: bool = True
    printshellcmds: bool = False


@dataclass
class ExecutionConfig:
    """Job dispatch configuration."""

    # Maximum number of simultaneously running jobs
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    force_all: bool = False
    force_rules: List[str] = field(default_factory=list)


@dataclass
class ClusterConfig:
    """Cluster submission configuration."""

    # Submission template, e.g. "sbatch -c {threads} --mem={resources.mem_mb}"
    submit: Optional[str] = None
    # Resource values used when a rule does not declare them
    default_resources: Dict[str, Any] = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        return bool(self.submit)


@dataclass
class Config:
    """Main configuration class."""

    rulefile: Path = Path(DEFAULT_RULEFILE)
    workdir: Path = Path(".")
    targets: List[str] = field(default_factory=list)

    # Sub-configurations
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)

    # Workflow configuration mapping handed to the rule file
    config: Dict[str, Any] = field(default_factory=dict)

    # Convenience properties
    @property
    def jobs(self) -> int:
        return self.execution.jobs

    @jobs.setter
    def jobs(self, value: int):
        self.execution.jobs = value

    @property
    def latency_wait(self) -> float:
        return self.runtime.latency_wait

    @latency_wait.setter
    def latency_wait(self, value: float):
        self.runtime.latency_wait = value

    @property
    def state_dir(self) -> Path:
        """State directory resolved against the working directory."""
        state_dir = Path(self.runtime.state_dir)
        if state_dir.is_absolute():
            return state_dir
        return Path(self.workdir) / state_dir

    def validate(self) -> None:
        """Validate configuration."""
        if self.execution.jobs < 1:
            raise ConfigurationError("Jobs must be >= 1")
        if self.runtime.latency_wait < 0:
            raise ConfigurationError("latency_wait must be >= 0 seconds")
        if self.runtime.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be > 0 seconds")
        if str(self.runtime.log_level).upper() not in LEVELS:
            raise ConfigurationError(
                f"Unknown log_level {self.runtime.log_level!r}; "
                f"expected one of {', '.join(LEVELS)}"
            )
        if not Path(self.workdir).is_dir():
            raise ConfigurationError(f"Working directory not found: {self.workdir}")
        if not isinstance(self.config, dict):
            raise ConfigurationError("The 'config' section must be a mapping")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""

        def path_to_str(obj):
            if isinstance(obj, Path):
                return str(obj)
            elif isinstance(obj, dict):
                return {k: path_to_str(v) for k, v in obj.items()}
            elif isinstance(obj, (list, tuple)):
                return [path_to_str(item) for item in obj]
            return obj

        return path_to_str(asdict(self))


def parse_overrides(items: List[str]) -> Dict[str, Any]:
    """Parse KEY=VALUE workflow config overrides; values are read as YAML scalars."""
    overrides: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise ConfigurationError(f"Invalid config override {item!r}; expected KEY=VALUE")
        key, raw = item.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigurationError(f"Invalid config override {item!r}; empty key")
        overrides[key] = yaml.safe_load(raw) if raw else ""
    return overrides


def load_config(path: Path) -> Config:
    """Load configuration from YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")

    def build_config(data: Dict[str, Any]) -> Config:
        cfg = Config()

        # Direct attributes
        if data.get("rulefile") is not None:
            cfg.rulefile = Path(data["rulefile"])
        if data.get("workdir") is not None:
            cfg.workdir = Path(data["workdir"])
        if data.get("targets") is not None:
            targets = data["targets"]
            cfg.targets = [targets] if isinstance(targets, str) else list(targets)
        if data.get("jobs") is not None:
            cfg.execution.jobs = data["jobs"]

        # Runtime config
        for key, value in (data.get("runtime") or {}).items():
            if hasattr(cfg.runtime, key):
                if key in ["log_file", "state_dir"] and value:
                    value = Path(value)
                setattr(cfg.runtime, key, value)
            else:
                raise ConfigurationError(f"Unsupported runtime option: {key}")

        # Execution config
        for key, value in (data.get("execution") or {}).items():
            if hasattr(cfg.execution, key):
                setattr(cfg.execution, key, value)
            else:
                raise ConfigurationError(f"Unsupported execution option: {key}")

        # Cluster config
        for key, value in (data.get("cluster") or {}).items():
            if key in ("submit", "default_resources"):
                setattr(cfg.cluster, key, value if value is not None else getattr(cfg.cluster, key))
            else:
                raise ConfigurationError(f"Unsupported cluster option: {key}")

        if data.get("config") is not None:
            cfg.config = data["config"]

        return cfg

    return build_config(data)


def save_config(cfg: Config, path: Path) -> None:
    """Save configuration to YAML file."""
    data = cfg.to_dict()
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
