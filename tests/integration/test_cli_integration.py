"""CLI runs of a real rule file."""

from pathlib import Path
import sys
import textwrap

import pytest
from click.testing import CliRunner

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow.cli.main import cli

pytestmark = pytest.mark.integration

RULEFILE = """
from ruleflow import expand, rule, temp

def rules(config):
    samples = config.get("samples", ["ecoli", "pputida"])
    return [
        rule("all", input=expand("{s}.upper.txt", s=samples)),
        rule("copy", input="{s}.txt", output=temp("{s}.copy.txt"), shell="cp {input} {output}"),
        rule(
            "upper",
            input="{s}.copy.txt",
            output="{s}.upper.txt",
            message="Uppercasing {wildcards.s}",
            shell="tr a-z A-Z < {input} > {output}",
        ),
    ]
"""


@pytest.fixture
def project(tmp_path, make_file):
    (tmp_path / "Rulefile.py").write_text(textwrap.dedent(RULEFILE))
    for s in ("ecoli", "pputida"):
        make_file(tmp_path / f"{s}.txt", f"{s}\n")
    return tmp_path


class TestRunCommand:
    """Run the CLI end to end."""

    def test_run_succeeds(self, project):
        """Exit code 0, outputs built, job messages and commands shown."""
        runner = CliRunner()
        result = runner.invoke(cli, ["run", "-j", "2", "-p", "--latency-wait", "1", "-d", str(project)])
        assert result.exit_code == 0, result.output
        assert (project / "ecoli.upper.txt").read_text().strip() == "ECOLI"
        assert not (project / "ecoli.copy.txt").exists()
        assert "Uppercasing ecoli" in result.output
        assert "cp ecoli.txt ecoli.copy.txt" in result.output
        assert "completed successfully" in result.output

    def test_forceall_dry_run(self, project):
        """-F plans every job again after a successful run."""
        runner = CliRunner()
        runner.invoke(cli, ["run", "-d", str(project)])
        result = runner.invoke(cli, ["run", "-n", "-F", "-d", str(project)])
        assert result.exit_code == 0
        assert "forced execution" in result.output

    def test_failing_job_exits_one(self, project):
        """A failing job exits 1 and points at the lock."""
        (project / "pputida.txt").unlink()
        (project / "Rulefile.py").write_text(
            textwrap.dedent(RULEFILE).replace("cp {input} {output}", "cp {input} {output}; exit 5")
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["run", "-d", str(project), "ecoli.upper.txt"])
        assert result.exit_code == 1
        assert "run lock" in result.output

        locked = runner.invoke(cli, ["run", "-d", str(project), "ecoli.upper.txt"])
        assert locked.exit_code == 1

        unlocked = runner.invoke(cli, ["unlock", "-d", str(project)])
        assert unlocked.exit_code == 0
        assert "Removed run lock" in unlocked.output

    def test_missing_source_exits_one(self, project):
        """A target whose sources are missing fails before anything runs."""
        (project / "pputida.txt").unlink()
        runner = CliRunner()
        result = runner.invoke(cli, ["run", "-d", str(project)])
        assert result.exit_code == 1
        assert not (project / ".ruleflow" / "locks" / "run.lock").exists()
