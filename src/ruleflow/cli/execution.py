"""Shared workflow execution helpers for the CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import click

from ruleflow.cli.exit_codes import EXIT_ERROR, EXIT_SUCCESS
from ruleflow.config import Config, load_config, parse_overrides
from ruleflow.core.workflow import Workflow
from ruleflow.utils.display import ConsoleFormatter
from ruleflow.utils.logging import level_from_name, level_from_verbosity, setup_logging


@dataclass
class WorkflowOptions:
    """Container for workflow execution options.

    ``None`` means "use the config file value or the default".
    """

    targets: Tuple[str, ...] = ()
    rulefile: Optional[Path] = None
    workdir: Optional[Path] = None
    config_path: Optional[Path] = None
    overrides: Tuple[str, ...] = ()
    jobs: Optional[int] = None
    dry_run: bool = False
    latency_wait: Optional[float] = None
    cluster: Optional[str] = None
    force_all: bool = False
    force_rules: Tuple[str, ...] = ()
    printshellcmds: bool = False
    log_file: Optional[Path] = None
    verbose: int = 0


def resolve_config(opts: WorkflowOptions) -> Config:
    """Merge defaults, the YAML config file and CLI options (in that order).

    Raises:
        ConfigurationError: if the merged configuration is invalid
    """
    cfg = load_config(opts.config_path) if opts.config_path else Config()

    if opts.workdir is not None:
        cfg.workdir = opts.workdir
    if opts.rulefile is not None:
        cfg.rulefile = opts.rulefile
    if opts.targets:
        cfg.targets = list(opts.targets)
    if opts.jobs is not None:
        cfg.execution.jobs = opts.jobs
    if opts.latency_wait is not None:
        cfg.runtime.latency_wait = opts.latency_wait
    if opts.cluster:
        cfg.cluster.submit = opts.cluster
    # Flags only ever switch behaviour on
    if opts.force_all:
        cfg.execution.force_all = True
    if opts.force_rules:
        cfg.execution.force_rules = list(cfg.execution.force_rules) + list(opts.force_rules)
    if opts.printshellcmds:
        cfg.runtime.printshellcmds = True
    if opts.log_file is not None:
        cfg.runtime.log_file = opts.log_file
    if opts.overrides:
        cfg.config.update(parse_overrides(list(opts.overrides)))

    cfg.validate()
    return cfg


def configure_logging(opts: WorkflowOptions, cfg: Config) -> None:
    """CLI verbosity wins over the config file's log level."""
    if opts.verbose:
        level = level_from_verbosity(opts.verbose)
    else:
        level = level_from_name(cfg.runtime.log_level)
    setup_logging(level=level, log_file=cfg.runtime.log_file)


def execute_workflow(opts: WorkflowOptions, logger: logging.Logger) -> int:
    """Load the rule file, then plan or run the requested targets.

    This is the single execution path behind ``ruleflow run``.

    Returns:
        Process exit code

    Raises:
        RuleflowError: on declaration, target or lock errors
    """
    cfg = resolve_config(opts)
    configure_logging(opts, cfg)

    workflow = Workflow.from_config(cfg)
    formatter = ConsoleFormatter()

    if opts.dry_run:
        logger.info("Dry run: planning without executing")
        summary = workflow.dry_run()
        click.echo(formatter.format_plan(summary, show_commands=cfg.runtime.printshellcmds))
        return EXIT_SUCCESS

    click.echo(formatter.start_message())
    summary = workflow.run()
    if summary.planned:
        click.echo(formatter.format_summary(summary))
    else:
        click.echo(formatter.format_plan(summary))

    if summary.ok:
        click.echo(formatter.success_message())
        return EXIT_SUCCESS
    click.echo(formatter.error_message(f"{len(summary.failed)} job(s) failed"), err=True)
    click.echo(
        f"Completed outputs were kept. The run lock is left in place at {workflow.lock.lock_file}; "
        "after fixing the cause, clear it with `ruleflow unlock` and run again.",
        err=True,
    )
    return EXIT_ERROR
