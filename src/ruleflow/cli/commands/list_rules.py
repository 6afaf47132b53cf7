"""`list-rules` subcommand."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from ruleflow.core.workflow import Workflow
from ruleflow.exceptions import RuleflowError
from ruleflow.utils.display import ConsoleFormatter
from ruleflow.utils.logging import get_logger

from ..common_options import common_workflow_options
from ..execution import WorkflowOptions, configure_logging, resolve_config
from ..exit_codes import EXIT_ERROR


@click.command(name="list-rules")
@common_workflow_options
def list_rules(
    rulefile: Optional[Path],
    workdir: Optional[Path],
    config: Optional[Path],
    overrides: Tuple[str, ...],
    verbose: int,
    log_file: Optional[Path],
) -> None:
    """List the rules declared in the rule file."""
    logger = get_logger("cli")
    opts = WorkflowOptions(
        rulefile=rulefile,
        workdir=workdir,
        config_path=config,
        overrides=overrides,
        verbose=verbose,
        log_file=log_file,
    )
    try:
        cfg = resolve_config(opts)
        configure_logging(opts, cfg)
        workflow = Workflow.from_config(cfg)
    except RuleflowError as exc:
        logger.error(f"Workflow error: {exc}")
        sys.exit(EXIT_ERROR)
    click.echo(ConsoleFormatter().format_rules(workflow.list_rules()))
