"""Tests for exit_codes module."""

from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow.cli.exit_codes import (
    EXIT_SUCCESS,
    EXIT_ERROR,
    EXIT_USAGE,
    EXIT_SIGINT,
    EXIT_SIGTERM,
)


class TestExitCodes:
    """Test exit code constants."""

    def test_exit_success_is_zero(self):
        """EXIT_SUCCESS should be 0."""
        assert EXIT_SUCCESS == 0

    def test_exit_error_is_one(self):
        """EXIT_ERROR should be 1."""
        assert EXIT_ERROR == 1

    def test_exit_usage_is_two(self):
        """EXIT_USAGE should be 2 (shell convention for usage errors)."""
        assert EXIT_USAGE == 2

    def test_signal_codes(self):
        """Signal exit codes are 128 + signal number."""
        assert EXIT_SIGINT == 128 + 2
        assert EXIT_SIGTERM == 128 + 15
