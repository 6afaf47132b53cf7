"""Tests for utils progress module."""

from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow.utils.progress import progress_bar


class TestProgressBar:
    """Test cases for progress_bar."""

    def test_disabled_bar_counts_silently(self, capsys):
        """A disabled bar accepts updates without printing."""
        bar = progress_bar(3, desc="Jobs", enabled=False)
        bar.update(2)
        bar.close()
        captured = capsys.readouterr()
        assert captured.err == ""
        assert captured.out == ""

    def test_empty_total_is_disabled(self):
        """A bar for zero jobs is disabled."""
        bar = progress_bar(0)
        assert bar.disable
        bar.close()

    def test_description_is_formatted(self):
        """The description carries the bullet prefix."""
        bar = progress_bar(2, desc="Jobs", enabled=False)
        assert bar.desc.startswith("· Jobs")
        bar.close()
