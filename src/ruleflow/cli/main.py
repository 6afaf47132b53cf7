"""Click application entrypoint for ruleflow."""

from __future__ import annotations

import signal
import sys
from types import FrameType
from typing import Optional

import click

from ruleflow import __version__
from ruleflow.cli.exit_codes import EXIT_ERROR, EXIT_SIGINT, EXIT_SIGTERM, EXIT_SUCCESS

from .commands.config import init_config
from .commands.list_rules import list_rules
from .commands.run import run
from .commands.unlock import unlock

# Signal that interrupted the run, if any
_received_signal: Optional[int] = None


def _handle_signal(signum: int, frame: Optional[FrameType]) -> None:
    """Turn SIGINT/SIGTERM into KeyboardInterrupt so the scheduler can cancel."""
    global _received_signal
    _received_signal = signum
    sig_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    click.echo(f"\n{sig_name} received, stopping running jobs...", err=True)
    raise KeyboardInterrupt(f"{sig_name} received")


def _print_version(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    if value and not ctx.resilient_parsing:
        click.echo(f"ruleflow {__version__}")
        ctx.exit()


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
# Version option (use -V to avoid conflict with -v/--verbose)
@click.option(
    "-V",
    "--version",
    is_flag=True,
    is_eager=True,
    expose_value=False,
    callback=_print_version,
    help="Show the version and exit.",
)
def cli() -> None:
    """ruleflow: run only what is out of date in a rule-based workflow.

    Typical use: `ruleflow run -j 8` in a directory holding a Rulefile.py.
    """


cli.add_command(run)
cli.add_command(unlock)
cli.add_command(list_rules)
cli.add_command(init_config)


def main(argv: list[str] | None = None) -> int:
    """Main entry point with signal handling."""
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        result = cli.main(args=argv, prog_name="ruleflow", standalone_mode=False)
        return result if isinstance(result, int) else EXIT_SUCCESS
    except (KeyboardInterrupt, click.exceptions.Abort):
        return EXIT_SIGTERM if _received_signal == signal.SIGTERM else EXIT_SIGINT
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    except SystemExit as exc:
        # Preserve explicit exit codes from commands
        if exc.code is None:
            return EXIT_SUCCESS
        return exc.code if isinstance(exc.code, int) else EXIT_ERROR
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
