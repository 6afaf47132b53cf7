"""`unlock` subcommand: clear a run lock left by a crashed or failed run."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from ruleflow.config import Config, load_config
from ruleflow.core.locking import LockManager
from ruleflow.exceptions import RuleflowError
from ruleflow.utils.logging import get_logger

from ..exit_codes import EXIT_ERROR


@click.command(name="unlock")
@click.option(
    "-d",
    "--directory",
    "workdir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory holding the lock [default: .]",
)
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Engine configuration file (YAML), for a custom state_dir",
)
def unlock(workdir: Optional[Path], config: Optional[Path]) -> None:
    """Remove the run lock unconditionally.

    Inspect the outputs of the interrupted run first: the lock is cleared
    without any integrity check.
    """
    logger = get_logger("cli")
    try:
        cfg = load_config(config) if config else Config()
    except RuleflowError as exc:
        logger.error(f"Configuration error: {exc}")
        sys.exit(EXIT_ERROR)
    if workdir is not None:
        cfg.workdir = workdir

    manager = LockManager(cfg.state_dir)
    record = manager.read()
    if manager.unlock():
        owner = f" (held by pid {record.get('pid')} on {record.get('host')})" if record else ""
        click.echo(f"Removed run lock{owner}: {manager.lock_file}")
    else:
        click.echo("No run lock present.")
