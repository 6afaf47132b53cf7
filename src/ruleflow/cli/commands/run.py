"""`run` subcommand implementation."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from ruleflow.exceptions import RuleflowError
from ruleflow.utils.logging import get_logger, level_from_verbosity, setup_logging

from ..common_options import common_workflow_options, jobs_option
from ..execution import WorkflowOptions, execute_workflow, resolve_config
from ..exit_codes import EXIT_ERROR, EXIT_SUCCESS


@click.command()
@click.argument("targets", nargs=-1)
@common_workflow_options
@jobs_option
@click.option("-n", "--dry-run", is_flag=True, help="Show what would run and why, without running")
@click.option("--unlock", is_flag=True, help="Remove a stale run lock and exit")
@click.option(
    "--latency-wait",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait for outputs on slow filesystems [default: 30]",
)
@click.option(
    "--cluster",
    metavar="TEMPLATE",
    default=None,
    help="Submit jobs with this command template, e.g. 'sbatch -c {threads}'",
)
@click.option("-F", "--forceall", "force_all", is_flag=True, help="Run every job of the graph")
@click.option(
    "-R",
    "--forcerun",
    "force_rules",
    multiple=True,
    metavar="RULE",
    help="Run the jobs of RULE and everything downstream (repeatable)",
)
@click.option(
    "-p", "--printshellcmds", is_flag=True, help="Print the command of every job before it runs"
)
def run(
    targets: Tuple[str, ...],
    rulefile: Optional[Path],
    workdir: Optional[Path],
    config: Optional[Path],
    overrides: Tuple[str, ...],
    verbose: int,
    log_file: Optional[Path],
    jobs: Optional[int],
    dry_run: bool,
    unlock: bool,
    latency_wait: Optional[float],
    cluster: Optional[str],
    force_all: bool,
    force_rules: Tuple[str, ...],
    printshellcmds: bool,
) -> None:
    """Build TARGETS (paths or rule names; default: rule 'all')."""
    setup_logging(level=level_from_verbosity(verbose), log_file=log_file)
    logger = get_logger("cli")

    opts = WorkflowOptions(
        targets=targets,
        rulefile=rulefile,
        workdir=workdir,
        config_path=config,
        overrides=overrides,
        jobs=jobs,
        dry_run=dry_run,
        latency_wait=latency_wait,
        cluster=cluster,
        force_all=force_all,
        force_rules=force_rules,
        printshellcmds=printshellcmds,
        log_file=log_file,
        verbose=verbose,
    )

    try:
        if unlock:
            from ruleflow.core.locking import LockManager

            cfg = resolve_config(opts)
            removed = LockManager(cfg.state_dir).unlock()
            click.echo("Removed run lock." if removed else "No run lock present.")
            sys.exit(EXIT_SUCCESS)
        sys.exit(execute_workflow(opts, logger))
    except RuleflowError as exc:
        logger.error(f"Workflow error: {exc}")
        sys.exit(EXIT_ERROR)
