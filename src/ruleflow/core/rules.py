"""Rule definitions and the rule registry.

Rules are immutable declarations: path templates for inputs and outputs,
parameters and resources (literal or computed from the wildcard binding), a
thread count and a command template. The registry only stores and looks them
up; it knows nothing about the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ruleflow.core.patterns import Pattern, compile_pattern, referenced_roots, wildcard_names
from ruleflow.exceptions import (
    ConfigurationError,
    DuplicateOutputError,
    UnboundReferenceError,
)

# Names a command template may reference besides the rule's wildcards
COMMAND_NAMESPACE = frozenset(
    {"input", "output", "params", "wildcards", "threads", "resources", "log", "rule", "jobid"}
)


class TransientPath(str):
    """An output path eligible for deletion once no pending job needs it."""

    pass


@dataclass(frozen=True)
class Lookup:
    """An input resolved through the injected resolver capability.

    ``key`` is a template rendered with the job's binding before it is handed
    to the resolver, e.g. ``Lookup("{sample}")`` with a resolver reading a
    sample sheet.
    """

    key: str


InputSpec = Union[str, Lookup, Callable[..., Any], Sequence[str]]
SlotSpec = Union[None, str, Sequence[Any], Mapping[str, Any]]


def _as_slots(value: SlotSpec) -> Dict[str, Any]:
    """Normalize a slot declaration: positional entries become slots '0', '1', ..."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return {str(k): v for k, v in value.items()}
    if isinstance(value, (str, Lookup)) or callable(value):
        return {"0": value}
    return {str(i): v for i, v in enumerate(value)}


@dataclass(frozen=True, eq=False)
class Rule:
    """Immutable declaration of one processing step."""

    name: str
    input: Mapping[str, InputSpec] = field(default_factory=dict)
    output: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    threads: int = 1
    resources: Mapping[str, Any] = field(default_factory=dict)
    shell: str = ""
    # Every output of the rule is transient
    transient: bool = False
    # Individually transient output slots (temp() markers)
    transient_slots: FrozenSet[str] = frozenset()
    wildcard_constraints: Mapping[str, str] = field(default_factory=dict)
    log: Mapping[str, str] = field(default_factory=dict)
    message: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not str(self.name).strip():
            raise ConfigurationError("Rule name must be a non-empty string")

        outputs = _as_slots(self.output)
        transient_slots = set(self.transient_slots)
        for slot, template in outputs.items():
            if not isinstance(template, str):
                raise ConfigurationError(
                    f"Output {slot!r} of rule {self.name!r} must be a path template"
                )
            if isinstance(template, TransientPath):
                transient_slots.add(slot)
        object.__setattr__(self, "output", outputs)
        object.__setattr__(self, "input", _as_slots(self.input))
        object.__setattr__(self, "log", _as_slots(self.log))
        object.__setattr__(self, "params", dict(self.params or {}))
        object.__setattr__(self, "resources", dict(self.resources or {}))
        object.__setattr__(self, "wildcard_constraints", dict(self.wildcard_constraints or {}))
        object.__setattr__(self, "transient_slots", frozenset(transient_slots))

        if not isinstance(self.threads, int) or self.threads < 1:
            raise ConfigurationError(f"Rule {self.name!r}: threads must be a positive integer")
        unknown = transient_slots - set(outputs)
        if unknown:
            raise ConfigurationError(
                f"Rule {self.name!r}: transient slots {sorted(unknown)} are not outputs"
            )

        self._validate_outputs()
        self._validate_references()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_outputs(self) -> None:
        wildcard_sets = {
            slot: frozenset(wildcard_names(template)) for slot, template in self.output.items()
        }
        if len(set(wildcard_sets.values())) > 1:
            detail = ", ".join(
                f"{slot}: {sorted(names)}" for slot, names in wildcard_sets.items()
            )
            raise ConfigurationError(
                f"Rule {self.name!r}: all output templates must use the same wildcards ({detail})"
            )
        seen: Dict[str, str] = {}
        for slot, template in self.output.items():
            if template in seen:
                raise DuplicateOutputError(
                    template, [f"{self.name}.output.{seen[template]}", f"{self.name}.output.{slot}"]
                )
            seen[template] = slot
            # Compiling surfaces invalid wildcard names and constraints early
            compile_pattern(template, self.wildcard_constraints)

    def _check_roots(self, template: str, allowed: FrozenSet[str]) -> None:
        for root in referenced_roots(template):
            if root not in allowed:
                raise UnboundReferenceError(root, template, self.name)

    def _validate_references(self) -> None:
        wildcards = frozenset(self.wildcards)
        for spec in self.input.values():
            if isinstance(spec, Lookup):
                self._check_roots(spec.key, wildcards)
            elif isinstance(spec, str):
                self._check_roots(spec, wildcards)
            elif isinstance(spec, (list, tuple)):
                for item in spec:
                    if isinstance(item, str):
                        self._check_roots(item, wildcards)
        for template in self.log.values():
            self._check_roots(template, wildcards)
        if self.message:
            self._check_roots(self.message, wildcards | COMMAND_NAMESPACE)
        if self.shell:
            self._check_roots(self.shell, wildcards | COMMAND_NAMESPACE)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def wildcards(self) -> Tuple[str, ...]:
        """Wildcard names bound by this rule's outputs."""
        for template in self.output.values():
            return wildcard_names(template)
        return ()

    @property
    def has_wildcards(self) -> bool:
        return bool(self.wildcards)

    def output_patterns(self) -> List[Tuple[str, Pattern]]:
        return [
            (slot, compile_pattern(template, self.wildcard_constraints))
            for slot, template in self.output.items()
        ]

    def match_output(self, path: str) -> Optional[Dict[str, str]]:
        """Return the binding under which this rule produces ``path``, or None."""
        for _slot, pattern in self.output_patterns():
            binding = pattern.match(path)
            if binding is not None:
                return binding
        return None

    def is_transient(self, slot: str) -> bool:
        return self.transient or slot in self.transient_slots

    def __repr__(self) -> str:
        return f"Rule({self.name!r})"


class RuleRegistry:
    """Holds rule definitions keyed by name, in declaration order."""

    def __init__(self, rules: Sequence[Rule] = ()):
        self._rules: Dict[str, Rule] = {}
        for rule in rules:
            self.add(rule)

    def add(self, rule: Rule) -> None:
        if not isinstance(rule, Rule):
            raise ConfigurationError(f"Expected a Rule, got {type(rule).__name__}")
        if rule.name in self._rules:
            raise ConfigurationError(f"Duplicate rule name: {rule.name!r}")
        self._rules[rule.name] = rule

    def get(self, name: str) -> Optional[Rule]:
        return self._rules.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def names(self) -> List[str]:
        return list(self._rules)

    def producers_of(self, path: str) -> List[Tuple[Rule, Dict[str, str]]]:
        """Return every (rule, binding) whose output templates match ``path``."""
        found = []
        for rule in self._rules.values():
            binding = rule.match_output(path)
            if binding is not None:
                found.append((rule, binding))
        return found

    def default_target(self, preferred: str) -> Optional[Rule]:
        """Return the rule named ``preferred`` if declared, else the first rule."""
        if preferred in self._rules:
            return self._rules[preferred]
        return next(iter(self._rules.values()), None)
