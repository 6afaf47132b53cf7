"""Tests for staleness classification."""

from pathlib import Path
import os
import sys
import time

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow import rule, temp
from ruleflow.core.graph import GraphBuilder
from ruleflow.core.job_types import Reason, Staleness
from ruleflow.core.rules import RuleRegistry
from ruleflow.core.staleness import StalenessEvaluator


def chain_rules(transient=False):
    middle = temp("{s}.mid") if transient else "{s}.mid"
    return RuleRegistry(
        [
            rule("first", input="{s}.in", output=middle, shell="cp {input} {output}"),
            rule("second", input="{s}.mid", output="{s}.out", shell="cp {input} {output}"),
        ]
    )


def classify(registry, targets, **kwargs):
    graph = GraphBuilder(registry).build(targets)
    result = StalenessEvaluator(**kwargs).classify(graph)
    by_rule = {}
    for job in graph:
        by_rule[(job.rule.name, job.wildcards.get("s"))] = result[job.key]
    return by_rule


def set_age(path, age):
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))


class TestStalenessEvaluator:
    """Test classification of jobs against file metadata."""

    def test_missing_outputs(self, workdir, make_file):
        """Nothing built yet: every job needs to run."""
        make_file(workdir / "a.in")
        result = classify(chain_rules(), ["a.out"])

        first = result[("first", "a")]
        second = result[("second", "a")]
        assert first.state is Staleness.NEEDS_RUN
        assert first.reasons == [Reason.MISSING_OUTPUT]
        assert first.details[Reason.MISSING_OUTPUT] == ["a.mid"]
        assert Reason.UPSTREAM_RERUN in second.reasons
        assert "missing output files" in second.describe()

    def test_up_to_date(self, workdir, make_file):
        """Outputs newer than inputs are satisfied."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.mid", age=200)
        make_file(workdir / "a.out", age=100)
        result = classify(chain_rules(), ["a.out"])
        assert all(c.state is Staleness.SATISFIED for c in result.values())
        assert result[("first", "a")].describe() == "up to date"

    def test_updated_input(self, workdir, make_file):
        """Touching a leaf makes its consumer stale and everything downstream."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.mid", age=200)
        make_file(workdir / "a.out", age=100)
        set_age(workdir / "a.in", 10)

        result = classify(chain_rules(), ["a.out"])
        assert result[("first", "a")].reasons == [Reason.UPDATED_INPUT]
        assert result[("second", "a")].reasons == [Reason.UPSTREAM_RERUN]
        assert result[("second", "a")].details[Reason.UPSTREAM_RERUN] == ["a.mid"]

    def test_equal_times_are_stale(self, workdir, make_file):
        """An output must be strictly newer than its inputs."""
        stamp = time.time() - 200
        for name in ("a.mid", "a.out"):
            make_file(workdir / name)
            os.utime(workdir / name, (stamp, stamp))
        registry = RuleRegistry([rule("second", input="{s}.mid", output="{s}.out", shell="true")])
        result = classify(registry, ["a.out"])
        assert result[("second", "a")].reasons == [Reason.UPDATED_INPUT]

    def test_touched_leaf_only_affects_its_branch(self, workdir, make_file):
        """Independent branches keep their classification."""
        for s in ("a", "b"):
            make_file(workdir / f"{s}.in", age=300)
            make_file(workdir / f"{s}.mid", age=200)
            make_file(workdir / f"{s}.out", age=100)
        set_age(workdir / "b.in", 10)

        result = classify(chain_rules(), ["a.out", "b.out"])
        assert not result[("first", "a")].needs_run
        assert not result[("second", "a")].needs_run
        assert result[("first", "b")].needs_run
        assert result[("second", "b")].needs_run

    def test_force_all(self, workdir, make_file):
        """Forcing everything marks up-to-date jobs as forced."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.mid", age=200)
        make_file(workdir / "a.out", age=100)
        result = classify(chain_rules(), ["a.out"], force_all=True)
        assert all(Reason.FORCED in c.reasons for c in result.values())

    def test_force_rule_propagates_downstream(self, workdir, make_file):
        """Forcing one rule reruns it and its consumers only."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.mid", age=200)
        make_file(workdir / "a.out", age=100)
        result = classify(chain_rules(), ["a.out"], force_rules=["first"])
        assert result[("first", "a")].reasons == [Reason.FORCED]
        assert result[("second", "a")].reasons == [Reason.UPSTREAM_RERUN]

    def test_incomplete_outputs(self, workdir, make_file):
        """Outputs recorded as incomplete are rerun even if they look fresh."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.mid", age=200)
        make_file(workdir / "a.out", age=100)
        result = classify(chain_rules(), ["a.out"], incomplete=["a.out"])
        assert not result[("first", "a")].needs_run
        assert result[("second", "a")].reasons == [Reason.INCOMPLETE]

    def test_removed_transient_is_not_rebuilt(self, workdir, make_file):
        """A deleted transient output does not force a rerun while consumers are fresh."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.out", age=100)
        result = classify(chain_rules(transient=True), ["a.out"])
        assert not result[("first", "a")].needs_run
        assert not result[("second", "a")].needs_run

    def test_removed_transient_rebuilt_for_stale_consumer(self, workdir, make_file):
        """A deleted transient output is regenerated when a consumer must run."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.out", age=100)
        set_age(workdir / "a.in", 10)
        result = classify(chain_rules(transient=True), ["a.out"])
        assert result[("second", "a")].reasons == [Reason.UPDATED_INPUT, Reason.UPSTREAM_RERUN]
        assert result[("first", "a")].reasons == [Reason.MISSING_OUTPUT]

    def test_missing_transient_target_is_built(self, workdir, make_file):
        """A transient output requested directly is produced."""
        make_file(workdir / "a.in", age=300)
        result = classify(chain_rules(transient=True), ["a.mid"])
        assert result[("first", "a")].reasons == [Reason.MISSING_OUTPUT]

    def test_classification_is_idempotent(self, workdir, make_file):
        """Classifying twice without changes gives the same answer."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.mid", age=200)
        registry = chain_rules()
        first = classify(registry, ["a.out"])
        second = classify(registry, ["a.out"])
        assert {k: v.reasons for k, v in first.items()} == {k: v.reasons for k, v in second.items()}

    def test_evaluation_does_not_touch_files(self, workdir, make_file):
        """Classification only reads metadata."""
        make_file(workdir / "a.in", age=300)
        before = sorted(p.name for p in workdir.iterdir())
        classify(chain_rules(), ["a.out"])
        assert sorted(p.name for p in workdir.iterdir()) == before

    def test_regenerated_transient_reruns_every_consumer(self, workdir, make_file):
        """When one consumer forces a transient output back, its other consumers rerun too."""
        make_file(workdir / "src.txt", age=300)
        make_file(workdir / "o1.txt", age=100)
        make_file(workdir / "o2.txt", age=100)
        make_file(workdir / "side.txt", age=10)
        registry = RuleRegistry(
            [
                rule("make_tmp", input="src.txt", output=temp("t.tmp"), shell="cp {input} {output}"),
                rule("first", input=["t.tmp", "side.txt"], output="o1.txt", shell="cat {input} > {output}"),
                rule("second", input="t.tmp", output="o2.txt", shell="cp {input} {output}"),
            ]
        )
        graph = GraphBuilder(registry).build(["o1.txt", "o2.txt"])
        result = StalenessEvaluator().classify(graph)
        by_rule = {job.rule.name: result[job.key] for job in graph}

        assert by_rule["first"].reasons[0] is Reason.UPDATED_INPUT
        assert by_rule["make_tmp"].reasons == [Reason.MISSING_OUTPUT]
        assert by_rule["second"].needs_run
        assert by_rule["second"].reasons == [Reason.UPSTREAM_RERUN]
        assert by_rule["second"].details[Reason.UPSTREAM_RERUN] == ["t.tmp"]

    def test_regeneration_reaches_further_transients(self, workdir, make_file):
        """A chain of removed transient files is regenerated back to the first stale link."""
        make_file(workdir / "a.in", age=300)
        make_file(workdir / "a.out", age=100)
        make_file(workdir / "a.extra", age=10)
        registry = RuleRegistry(
            [
                rule("first", input="{s}.in", output=temp("{s}.mid"), shell="cp {input} {output}"),
                rule("second", input="{s}.mid", output=temp("{s}.mid2"), shell="cp {input} {output}"),
                rule("third", input=["{s}.mid2", "{s}.extra"], output="{s}.out", shell="cat {input} > {output}"),
            ]
        )
        result = classify(registry, ["a.out"])
        assert result[("third", "a")].needs_run
        assert result[("second", "a")].needs_run
        assert result[("first", "a")].needs_run
