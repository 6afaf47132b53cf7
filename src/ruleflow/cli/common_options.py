"""Shared Click options for ruleflow CLI commands.

Reusable option decorators keep `run`, `unlock` and `list-rules` consistent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, TypeVar

import click

F = TypeVar("F", bound=Callable[..., None])


def rulefile_option(func: F) -> F:
    """Rule file option."""
    return click.option(
        "-s",
        "--rulefile",
        type=click.Path(path_type=Path),
        default=None,
        help="Python rule file [default: Rulefile.py]",
    )(func)


def directory_option(func: F) -> F:
    """Working directory option."""
    return click.option(
        "-d",
        "--directory",
        "workdir",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        default=None,
        help="Working directory; paths in rules are relative to it [default: .]",
    )(func)


def config_option(func: F) -> F:
    """Engine configuration file option."""
    return click.option(
        "-c",
        "--config",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="Engine configuration file (YAML)",
    )(func)


def set_option(func: F) -> F:
    """Workflow configuration overrides."""
    return click.option(
        "-C",
        "--set",
        "overrides",
        multiple=True,
        metavar="KEY=VALUE",
        help="Set a workflow configuration value (repeatable)",
    )(func)


def jobs_option(func: F) -> F:
    """Concurrency limit option."""
    return click.option(
        "-j",
        "--jobs",
        type=click.IntRange(min=1),
        default=None,
        help="Maximum number of jobs running at once [default: CPU count]",
    )(func)


def verbose_option(func: F) -> F:
    """Verbosity option (-v for INFO, -vv for DEBUG)."""
    return click.option(
        "-v",
        "--verbose",
        count=True,
        help="Increase log verbosity (-v for INFO, -vv for DEBUG)",
    )(func)


def log_file_option(func: F) -> F:
    """Log file option."""
    return click.option(
        "--log-file",
        type=click.Path(path_type=Path),
        default=None,
        help="Also write a detailed DEBUG log to this file",
    )(func)


def common_workflow_options(func: F) -> F:
    """Apply the options every command that loads a rule file accepts.

    Usage:
        @click.command()
        @common_workflow_options
        def my_command(rulefile, workdir, config, overrides, verbose, log_file):
            pass
    """
    # Apply options in reverse order (Click applies them bottom-up)
    decorators = [
        rulefile_option,
        directory_option,
        config_option,
        set_option,
        verbose_option,
        log_file_option,
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func
