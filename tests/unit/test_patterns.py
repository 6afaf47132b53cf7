"""Tests for wildcard matching and template rendering."""

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ruleflow.core.patterns import (
    SlotMap,
    compile_pattern,
    match,
    parse_template,
    referenced_roots,
    render,
    wildcard_names,
)
from ruleflow.exceptions import ConfigurationError, UnboundReferenceError


class TestMatch:
    """Test binding concrete paths against path templates."""

    def test_simple_binding(self):
        """A single wildcard binds the variable part of the path."""
        assert match("{s}_aln.bam", "ecoli_aln.bam") == {"s": "ecoli"}

    def test_literal_template(self):
        """Templates without wildcards match only themselves."""
        assert match("results/summary.txt", "results/summary.txt") == {}
        assert match("results/summary.txt", "results/other.txt") is None

    def test_match_is_anchored(self):
        """The whole path has to match, not a prefix or suffix."""
        assert match("{s}.bam", "ecoli.bam.bai") is None
        assert match("{s}.bam", "x/ecoli.bam") is None

    def test_default_wildcard_excludes_separator(self):
        """Without a constraint a wildcard never spans directories."""
        assert match("{s}.txt", "a/b.txt") is None
        assert match("data/{s}.txt", "data/b.txt") == {"s": "b"}

    def test_inline_regex(self):
        """An inline regex overrides the default sub-pattern."""
        assert match("{s,.+}.txt", "a/b.txt") == {"s": "a/b"}
        assert match("{n,[0-9]+}.txt", "12.txt") == {"n": "12"}
        assert match("{n,[0-9]+}.txt", "ab.txt") is None

    def test_inline_regex_with_braces(self):
        """Quantifier braces inside an inline regex are part of the regex."""
        assert match(r"{year,\d{4}}.log", "2024.log") == {"year": "2024"}
        assert match(r"{year,\d{4}}.log", "24.log") is None

    def test_constraints_mapping(self):
        """Constraints passed separately behave like inline regexes."""
        assert match("{n}.txt", "7.txt", {"n": r"\d+"}) == {"n": "7"}
        assert match("{n}.txt", "x.txt", {"n": r"\d+"}) is None

    def test_repeated_wildcard_must_agree(self):
        """A wildcard used twice binds the same value both times."""
        assert match("{s}/{s}.txt", "a/a.txt") == {"s": "a"}
        assert match("{s}/{s}.txt", "a/b.txt") is None

    def test_ambiguous_boundaries_are_rejected(self):
        """Two adjacent wildcards that could split the path differently do not match."""
        assert match("{a}_{b}.txt", "x_y_z.txt") is None
        assert match("{a}_{b}.txt", "x_y.txt") == {"a": "x", "b": "y"}

    def test_compiled_patterns_are_cached(self):
        """Compiling the same template twice yields the same object."""
        assert compile_pattern("{s}.bam") is compile_pattern("{s}.bam")
        assert compile_pattern("{s}.bam", {"s": "a+"}) is not compile_pattern("{s}.bam")

    def test_invalid_constraint(self):
        """A broken regular expression is a configuration error."""
        with pytest.raises(ConfigurationError):
            compile_pattern("{s,(}.txt")


class TestParseTemplate:
    """Test template tokenizing."""

    def test_wildcard_names_in_order(self):
        """Names are reported once, in order of appearance."""
        assert wildcard_names("{b}/{a}/{b}.txt") == ("b", "a")

    def test_escaped_braces(self):
        """Doubled braces are literal text."""
        assert wildcard_names("awk '{{print $1}}' {input}") == ("input",)

    def test_unbalanced_brace(self):
        """An unclosed placeholder is rejected."""
        with pytest.raises(ConfigurationError):
            parse_template("{sample.txt")

    def test_single_closing_brace(self):
        """A lone closing brace is rejected."""
        with pytest.raises(ConfigurationError):
            parse_template("sample}.txt")

    def test_referenced_roots(self):
        """Dotted and indexed references report their root name."""
        assert referenced_roots("{input.r1} {output[0]} {threads}") == (
            "input",
            "output",
            "threads",
        )


class TestRender:
    """Test placeholder substitution."""

    def test_wildcards(self):
        """Bare placeholders resolve to the binding."""
        assert render("{s}.sorted.bam", {"s": "ecoli"}) == "ecoli.sorted.bam"

    def test_slot_map_joins_values(self):
        """A whole slot map renders as its values joined by spaces."""
        inputs = SlotMap([("0", "a.txt"), ("1", ["b.txt", "c.txt"])])
        assert render("cat {input}", {}, {"input": inputs}) == "cat a.txt b.txt c.txt"

    def test_named_and_positional_slots(self):
        """Slots can be addressed by name or by position."""
        namespace = {
            "input": SlotMap(r1="x_R1.fq", r2="x_R2.fq"),
            "output": SlotMap([("0", "x.bam")]),
            "threads": 4,
            "resources": SlotMap(mem_mb=8000),
        }
        command = "tool -t {threads} -m {resources.mem_mb} {input.r1} {input[1]} > {output[0]}"
        assert render(command, {}, namespace) == "tool -t 4 -m 8000 x_R1.fq x_R2.fq > x.bam"

    def test_escaped_braces_render_literally(self):
        """Doubled braces survive rendering as single braces."""
        assert render("awk '{{print $1}}' {s}", {"s": "f"}) == "awk '{print $1}' f"

    def test_unbound_reference(self):
        """A placeholder without a value raises UnboundReferenceError."""
        with pytest.raises(UnboundReferenceError) as exc_info:
            render("{sample}.txt", {"s": "x"}, rule="align")
        assert exc_info.value.name == "sample"
        assert "align" in str(exc_info.value)

    def test_missing_slot_attribute(self):
        """Referencing an undeclared slot is unbound too."""
        with pytest.raises(UnboundReferenceError):
            render("{input.r3}", {}, {"input": SlotMap(r1="a")})


class TestSlotMap:
    """Test the slot mapping handed to callables and templates."""

    def test_attribute_access(self):
        """Slots are readable as attributes."""
        wildcards = SlotMap(sample="ecoli")
        assert wildcards.sample == "ecoli"
        with pytest.raises(AttributeError):
            wildcards.missing

    def test_paths_flatten_lists(self):
        """paths() flattens list-valued slots."""
        slots = SlotMap([("a", "1"), ("b", ["2", "3"])])
        assert list(slots.paths()) == ["1", "2", "3"]
