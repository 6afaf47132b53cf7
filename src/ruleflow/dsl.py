"""Helpers for declaring rules in a rule file.

A rule file is a Python module defining ``rules(config)`` (or a module-level
``RULES`` list)::

    from ruleflow import rule, temp, expand

    def rules(config):
        samples = config.get("samples", ["ecoli", "pputida"])
        return [
            rule("all", input=expand("{s}.sorted.bam", s=samples)),
            rule(
                "align",
                input={"r1": "{s}_R1.fq", "r2": "{s}_R2.fq", "ref": "{s}_genome.fa"},
                output=temp("{s}_aln.bam"),
                threads=4,
                resources={"mem_mb": 8000},
                shell="bwa mem -t {threads} {input.ref} {input.r1} {input.r2} > {output}",
            ),
            rule(
                "sort",
                input="{s}_aln.bam",
                output="{s}.sorted.bam",
                shell="samtools sort -o {output} {input}",
            ),
        ]
"""

from __future__ import annotations

from itertools import product
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from packaging import version

from ruleflow.__version__ import __version__
from ruleflow.core.patterns import render
from ruleflow.core.rules import Lookup, Rule, SlotSpec, TransientPath
from ruleflow.exceptions import VersionError


def rule(
    name: str,
    *,
    input: SlotSpec = None,
    output: SlotSpec = None,
    params: Optional[Mapping[str, Any]] = None,
    threads: int = 1,
    resources: Optional[Mapping[str, Any]] = None,
    shell: str = "",
    transient: bool = False,
    wildcard_constraints: Optional[Mapping[str, str]] = None,
    log: SlotSpec = None,
    message: Optional[str] = None,
) -> Rule:
    """Declare a rule. Inputs and outputs may be a string, a list or a mapping of slots."""
    return Rule(
        name=name,
        input=input,
        output=output,
        params=params or {},
        threads=threads,
        resources=resources or {},
        shell=shell,
        transient=transient,
        wildcard_constraints=wildcard_constraints or {},
        log=log,
        message=message,
    )


def temp(path: str) -> TransientPath:
    """Mark an output as transient: deleted once no pending job consumes it."""
    return TransientPath(path)


def lookup(key: str) -> Lookup:
    """Declare an input resolved by the workflow's resolver from a key template."""
    return Lookup(key)


def expand(
    pattern: Union[str, Iterable[str]],
    combinator: Callable[..., Iterable[tuple]] = product,
    **wildcards: Any,
) -> List[str]:
    """Render ``pattern`` for every combination of the given wildcard values.

    Example:
        expand("{s}.{ext}", s=["a", "b"], ext="bam")  ->  ["a.bam", "b.bam"]
    """
    patterns = [pattern] if isinstance(pattern, str) else list(pattern)
    names = list(wildcards)
    value_lists = []
    for name in names:
        values = wildcards[name]
        if isinstance(values, (str, int, float)):
            values = [values]
        value_lists.append([str(v) for v in values])

    results: List[str] = []
    for template in patterns:
        for combination in combinator(*value_lists):
            results.append(render(template, dict(zip(names, combination))))
    return results


def min_version(required: str) -> None:
    """Fail loading a rule file that needs a newer ruleflow."""
    if version.parse(__version__) < version.parse(required):
        raise VersionError(f"Rule file requires ruleflow >= {required}, found {__version__}")
