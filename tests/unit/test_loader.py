"""Tests for rule-file loading."""

from pathlib import Path
import sys
import textwrap

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow.core.loader import load_rules
from ruleflow.exceptions import ConfigurationError, WorkflowLoadError


def write_rulefile(path, body):
    path.write_text(textwrap.dedent(body))
    return path


class TestLoadRules:
    """Test executing rule files."""

    def test_rules_function_receives_config(self, tmp_path):
        """rules(config) sees the workflow configuration."""
        path = write_rulefile(
            tmp_path / "Rulefile.py",
            """
            from ruleflow import expand, rule

            def rules(config):
                return [
                    rule("all", input=expand("{s}.txt", s=config["samples"])),
                    rule("make", output="{s}.txt", shell="touch {output}"),
                ]
            """,
        )
        loaded = load_rules(path, {"samples": ["a", "b"]})
        assert loaded.registry.names == ["all", "make"]
        assert dict(loaded.registry.get("all").input) == {"0": "a.txt", "1": "b.txt"}
        assert loaded.resolver is None
        assert loaded.path == path.resolve()

    def test_rules_list_and_resolver(self, tmp_path):
        """RULES and resolve() are picked up."""
        path = write_rulefile(
            tmp_path / "Rulefile.py",
            """
            from ruleflow import lookup, rule

            SHEET = {"ecoli": "raw/run1.fq"}

            def resolve(key):
                return SHEET[key]

            RULES = [rule("map", input=lookup("{s}"), output="{s}.bam", shell="cp {input} {output}")]
            """,
        )
        loaded = load_rules(path)
        assert loaded.registry.names == ["map"]
        assert loaded.resolver("ecoli") == "raw/run1.fq"

    def test_missing_file(self, tmp_path):
        """A missing rule file is a load error."""
        with pytest.raises(WorkflowLoadError):
            load_rules(tmp_path / "Rulefile.py")

    def test_wrong_suffix(self, tmp_path):
        """Only Python rule files are accepted."""
        path = tmp_path / "Rulefile"
        path.write_text("RULES = []\n")
        with pytest.raises(WorkflowLoadError):
            load_rules(path)

    def test_no_rules_defined(self, tmp_path):
        """A file without rules(config) or RULES is rejected."""
        path = write_rulefile(tmp_path / "Rulefile.py", "x = 1\n")
        with pytest.raises(WorkflowLoadError) as exc_info:
            load_rules(path)
        assert "defines no rules" in str(exc_info.value)

    def test_execution_error(self, tmp_path):
        """Exceptions raised by the file are wrapped."""
        path = write_rulefile(tmp_path / "Rulefile.py", "raise RuntimeError('broken')\n")
        with pytest.raises(WorkflowLoadError) as exc_info:
            load_rules(path)
        assert "broken" in str(exc_info.value)

    def test_declaration_errors_pass_through(self, tmp_path):
        """Invalid rule declarations keep their own error type."""
        path = write_rulefile(
            tmp_path / "Rulefile.py",
            """
            from ruleflow import rule

            RULES = [rule("bad", input="{x}.in", output="{y}.out")]
            """,
        )
        with pytest.raises(ConfigurationError) as exc_info:
            load_rules(path)
        assert not isinstance(exc_info.value, WorkflowLoadError)

    def test_rules_must_be_rule_objects(self, tmp_path):
        """RULES has to contain Rule objects."""
        path = write_rulefile(tmp_path / "Rulefile.py", "RULES = ['a']\n")
        with pytest.raises(WorkflowLoadError):
            load_rules(path)

    def test_min_version(self, tmp_path):
        """min_version() in a rule file stops loading on old engines."""
        path = write_rulefile(
            tmp_path / "Rulefile.py",
            """
            from ruleflow import min_version
            min_version("999")
            RULES = []
            """,
        )
        with pytest.raises(ConfigurationError):
            load_rules(path)
