"""Job graph construction.

Starting from the requested targets, every path is traced back to the unique
rule able to produce it; the rule is bound to the path's wildcard values and
its inputs are requested in turn. The result is a directed acyclic graph of
jobs whose edges point from a job to the jobs producing its inputs. Building
the graph never runs anything and never touches the filesystem beyond
existence checks.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Set

import networkx as nx

from ruleflow.constants import DEFAULT_TARGET_RULE, MAX_RESOLUTION_DEPTH
from ruleflow.core import filesystem as fs
from ruleflow.core.job_types import JobKey, JobStatus, make_key
from ruleflow.core.patterns import SlotMap, render
from ruleflow.core.rules import Lookup, Rule, RuleRegistry
from ruleflow.exceptions import (
    AmbiguousRuleError,
    ConfigurationError,
    CyclicDependencyError,
    DuplicateOutputError,
    UnresolvableTargetError,
)
from ruleflow.utils.logging import get_logger

logger = get_logger("graph")

# Synthetic node standing for the requested targets
ROOT = "<requested targets>"

Resolver = Callable[[str], Any]


def normalize_path(path: str) -> str:
    return os.path.normpath(path) if path else path


@dataclass(eq=False)
class Job:
    """One concrete, fully bound instance of a rule."""

    rule: Rule
    wildcards: SlotMap
    input: SlotMap
    output: SlotMap
    params: SlotMap
    resources: SlotMap
    log: SlotMap
    threads: int
    jobid: int = 0
    command: str = ""
    message: Optional[str] = None
    status: JobStatus = JobStatus.PENDING

    @property
    def key(self) -> JobKey:
        return make_key(self.rule.name, dict(self.wildcards))

    @property
    def input_paths(self) -> List[str]:
        return list(dict.fromkeys(self.input.paths()))

    @property
    def output_paths(self) -> List[str]:
        return list(self.output.paths())

    @property
    def log_paths(self) -> List[str]:
        return list(self.log.paths())

    @property
    def transient_outputs(self) -> List[str]:
        paths = []
        for slot, value in self.output.items():
            if self.rule.is_transient(slot):
                paths.append(value)
        return paths

    def namespace(self) -> Dict[str, Any]:
        """Names available to command, message and submission templates."""
        return {
            "input": self.input,
            "output": self.output,
            "params": self.params,
            "wildcards": self.wildcards,
            "threads": self.threads,
            "resources": self.resources,
            "log": self.log,
            "rule": self.rule.name,
            "jobid": self.jobid,
        }

    def __str__(self) -> str:
        if self.wildcards:
            bound = ", ".join(f"{k}={v}" for k, v in self.wildcards.items())
            return f"{self.rule.name}[{self.jobid}]({bound})"
        return f"{self.rule.name}[{self.jobid}]"


class JobGraph:
    """Jobs plus the synthetic ROOT node for the requested targets."""

    def __init__(
        self,
        graph: nx.DiGraph,
        targets: List[str],
        source_files: Set[str],
    ):
        self.graph = graph
        self.targets = targets
        self.source_files = source_files
        self._order: List[JobKey] = [
            node
            for node in nx.lexicographical_topological_sort(
                graph.reverse(copy=False), key=lambda n: repr(n)
            )
            if node != ROOT
        ]
        self._producers: Dict[str, JobKey] = {}
        self._consumers: Dict[str, List[JobKey]] = {}
        for key in self._order:
            job = self.job(key)
            for path in job.output_paths:
                self._producers[path] = key
            for path in job.input_paths:
                self._consumers.setdefault(path, []).append(key)

    def job(self, key: JobKey) -> Job:
        return self.graph.nodes[key]["job"]

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Job]:
        """Iterate over jobs, producers before consumers."""
        return (self.job(key) for key in self._order)

    def __contains__(self, key: object) -> bool:
        return key in self.graph and key != ROOT

    def jobs(self) -> List[Job]:
        return list(self)

    def dependencies(self, job: Job) -> List[Job]:
        """Jobs producing an input of ``job``."""
        return [self.job(k) for k in sorted(self.graph.successors(job.key), key=repr)]

    def dependents(self, job: Job) -> List[Job]:
        """Jobs consuming an output of ``job``."""
        return [
            self.job(k) for k in sorted(self.graph.predecessors(job.key), key=repr) if k != ROOT
        ]

    def downstream(self, job: Job) -> List[Job]:
        """Every job depending, transitively, on ``job``."""
        keys = nx.ancestors(self.graph, job.key) - {ROOT}
        return [self.job(k) for k in self._order if k in keys]

    def is_target(self, job: Job) -> bool:
        return self.graph.has_edge(ROOT, job.key)

    def producer_of(self, path: str) -> Optional[Job]:
        key = self._producers.get(path)
        return self.job(key) if key is not None else None

    def consumers_of(self, path: str) -> List[Job]:
        return [self.job(k) for k in self._consumers.get(path, [])]

    def by_rule(self) -> Dict[str, List[Job]]:
        grouped: Dict[str, List[Job]] = {}
        for job in self:
            grouped.setdefault(job.rule.name, []).append(job)
        return grouped


@dataclass
class _BuildState:
    graph: nx.DiGraph = field(default_factory=nx.DiGraph)
    jobs: Dict[JobKey, Job] = field(default_factory=dict)
    path_memo: Dict[str, Optional[JobKey]] = field(default_factory=dict)
    output_owner: Dict[str, JobKey] = field(default_factory=dict)
    sources: Set[str] = field(default_factory=set)
    stack: List[JobKey] = field(default_factory=list)


class GraphBuilder:
    """Resolves requested targets into a JobGraph.

    Args:
        registry: Declared rules
        config: Workflow configuration mapping for this invocation
        resolver: Capability answering ``lookup()`` inputs (key -> path or paths)
        default_resources: Resource values used when a rule does not declare them
        default_target: Rule requested when no target is given
    """

    def __init__(
        self,
        registry: RuleRegistry,
        config: Optional[Mapping[str, Any]] = None,
        resolver: Optional[Resolver] = None,
        default_resources: Optional[Mapping[str, Any]] = None,
        default_target: str = DEFAULT_TARGET_RULE,
    ):
        self.registry = registry
        self.config = dict(config or {})
        self.resolver = resolver
        self.default_resources = dict(default_resources or {})
        self.default_target = default_target
        self._state = _BuildState()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, targets: Iterable[str] = ()) -> JobGraph:
        """Build the job graph for ``targets`` (paths or rule names)."""
        state = self._state = _BuildState()
        state.graph.add_node(ROOT)

        requested = [t for t in targets]
        if not requested:
            rule = self.registry.default_target(self.default_target)
            if rule is None:
                raise ConfigurationError("No rules declared and no targets requested")
            requested = [rule.name]

        for target in requested:
            rule = self.registry.get(target)
            if rule is not None and not rule.has_wildcards:
                key = self._job_for(rule, {}, depth=0)
            else:
                if rule is not None:
                    logger.debug(f"Rule {target!r} has wildcards; treating target as a path")
                key = self._resolve_path(normalize_path(target), requested_by=None, depth=0)
            if key is not None:
                state.graph.add_edge(ROOT, key)

        # Drop jobs left behind by inputs that fell back to existing source files
        reachable = nx.descendants(state.graph, ROOT) | {ROOT}
        state.graph.remove_nodes_from([n for n in list(state.graph) if n not in reachable])

        if not nx.is_directed_acyclic_graph(state.graph):
            cycle = nx.find_cycle(state.graph)
            raise CyclicDependencyError([str(self._label(u)) for u, _v in cycle])

        graph = JobGraph(state.graph, requested, state.sources)
        for jobid, job in enumerate(graph, 1):
            job.jobid = jobid
        for job in graph:
            self._render_command(job)

        logger.info(
            f"Built job graph: {len(graph)} jobs for {len(requested)} target(s), "
            f"{len(state.sources)} source file(s)"
        )
        return graph

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _label(self, key: JobKey) -> str:
        rule_name, binding = key
        if not binding:
            return rule_name
        return f"{rule_name}({', '.join(f'{k}={v}' for k, v in binding)})"

    def _resolve_path(self, path: str, requested_by: Optional[str], depth: int) -> Optional[JobKey]:
        """Return the key of the job producing ``path``, or None for a source file."""
        state = self._state
        if path in state.path_memo:
            return state.path_memo[path]

        candidates = self.registry.producers_of(path)
        if len(candidates) > 1:
            raise AmbiguousRuleError(path, [rule.name for rule, _ in candidates])

        if not candidates:
            if fs.exists(path):
                state.path_memo[path] = None
                state.sources.add(path)
                return None
            raise UnresolvableTargetError(path, requested_by)

        rule, binding = candidates[0]
        try:
            key = self._job_for(rule, binding, depth)
        except UnresolvableTargetError as exc:
            # A rule claims an existing file but its own inputs are gone:
            # keep the file as a source instead of failing.
            if not fs.exists(path):
                raise
            logger.warning(
                f"{path} matches rule {rule.name!r} but {exc.path} cannot be produced; "
                f"using the existing file as a source"
            )
            state.path_memo[path] = None
            state.sources.add(path)
            return None

        state.path_memo[path] = key
        return key

    def _job_for(self, rule: Rule, binding: Dict[str, str], depth: int) -> JobKey:
        state = self._state
        key = make_key(rule.name, binding)
        if key in state.jobs:
            return key
        if key in state.stack:
            chain = state.stack[state.stack.index(key) :] + [key]
            raise CyclicDependencyError([self._label(k) for k in chain])
        if depth > MAX_RESOLUTION_DEPTH:
            raise ConfigurationError(
                f"Dependency chain deeper than {MAX_RESOLUTION_DEPTH} jobs at {self._label(key)}; "
                "check for rules whose input patterns keep growing"
            )

        state.stack.append(key)
        try:
            job = self._instantiate(rule, binding)
            dependencies: List[JobKey] = []
            for path in job.input_paths:
                dep = self._resolve_path(path, requested_by=self._label(key), depth=depth + 1)
                if dep is not None and dep not in dependencies:
                    dependencies.append(dep)
        finally:
            state.stack.pop()

        for path in job.output_paths:
            owner = state.output_owner.get(path)
            if owner is not None and owner != key:
                raise DuplicateOutputError(path, [self._label(owner), self._label(key)])
            state.output_owner[path] = key
            # Later requests for this path resolve to this job directly
            state.path_memo.setdefault(path, key)

        state.jobs[key] = job
        state.graph.add_node(key, job=job)
        for dep in dependencies:
            state.graph.add_edge(key, dep)
        return key

    # ------------------------------------------------------------------
    # Instantiation
    # ------------------------------------------------------------------

    def _resolve_input(self, rule: Rule, slot: str, spec: Any, wildcards: SlotMap) -> Any:
        if isinstance(spec, Lookup):
            if self.resolver is None:
                raise ConfigurationError(
                    f"Rule {rule.name!r} input {slot!r} uses lookup() but no resolver was supplied"
                )
            value = self.resolver(render(spec.key, wildcards, rule=rule.name))
        elif isinstance(spec, str):
            return normalize_path(render(spec, wildcards, rule=rule.name))
        elif callable(spec):
            value = spec(wildcards)
        elif isinstance(spec, (list, tuple)):
            value = [render(item, wildcards, rule=rule.name) for item in spec]
        else:
            raise ConfigurationError(
                f"Rule {rule.name!r} input {slot!r}: unsupported declaration {spec!r}"
            )

        if isinstance(value, str):
            return normalize_path(value)
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return [normalize_path(v) for v in value]
        raise ConfigurationError(
            f"Rule {rule.name!r} input {slot!r} must resolve to a path or a list of paths, "
            f"got {value!r}"
        )

    @staticmethod
    def _evaluate(value: Any, wildcards: SlotMap) -> Any:
        return value(wildcards) if callable(value) else value

    def _instantiate(self, rule: Rule, binding: Dict[str, str]) -> Job:
        wildcards = SlotMap(binding)
        inputs = SlotMap(
            (slot, self._resolve_input(rule, slot, spec, wildcards))
            for slot, spec in rule.input.items()
        )
        outputs = SlotMap(
            (slot, normalize_path(render(template, wildcards, rule=rule.name)))
            for slot, template in rule.output.items()
        )
        logs = SlotMap(
            (slot, normalize_path(render(template, wildcards, rule=rule.name)))
            for slot, template in rule.log.items()
        )
        params = SlotMap((k, self._evaluate(v, wildcards)) for k, v in rule.params.items())
        resources = SlotMap(self.default_resources)
        resources.update((k, self._evaluate(v, wildcards)) for k, v in rule.resources.items())
        resources.setdefault("_cores", rule.threads)
        return Job(
            rule=rule,
            wildcards=wildcards,
            input=inputs,
            output=outputs,
            params=params,
            resources=resources,
            log=logs,
            threads=rule.threads,
        )

    def _render_command(self, job: Job) -> None:
        namespace = job.namespace()
        if job.rule.shell:
            job.command = render(job.rule.shell, job.wildcards, namespace, rule=job.rule.name)
        if job.rule.message:
            job.message = render(job.rule.message, job.wildcards, namespace, rule=job.rule.name)
