"""Wildcard pattern matching and template rendering.

A template is literal text interleaved with named placeholders. In path
templates a placeholder is a wildcard, ``{sample}``, optionally carrying its
own regular expression, ``{sample,[A-Za-z0-9]+}``. In command templates a
placeholder may also be a dotted slot reference such as ``{input.reads}``,
``{output[0]}`` or ``{resources.mem_mb}``. Doubled braces (``{{`` and ``}}``)
stand for literal braces.

Matching is anchored and pure; compiled patterns are cached per template and
constraint set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from ruleflow.constants import DEFAULT_WILDCARD_REGEX
from ruleflow.exceptions import ConfigurationError, UnboundReferenceError
from ruleflow.utils.logging import get_logger

logger = get_logger("patterns")

# Greedy and lazy forms of the default wildcard; differing bindings mean the
# wildcard boundaries are ambiguous.
_LAZY_DEFAULT = DEFAULT_WILDCARD_REGEX + "?"

_REFERENCE_RE = re.compile(r"^(?P<root>[A-Za-z_][A-Za-z0-9_]*)(?P<rest>(?:\.[A-Za-z0-9_]+|\[[^\]]+\])*)$")
_ACCESSOR_RE = re.compile(r"\.([A-Za-z0-9_]+)|\[([^\]]+)\]")


@dataclass(frozen=True)
class Placeholder:
    """A ``{name}`` or ``{name,regex}`` field inside a template."""

    name: str
    regex: Optional[str] = None


Token = Union[str, Placeholder]


class SlotMap(dict):
    """Ordered mapping of slot name to resolved value.

    Renders as its values joined by single spaces so ``{input}`` in a command
    expands to every input path. Values may be strings or lists of strings.
    """

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __str__(self) -> str:
        return " ".join(self.paths())

    def paths(self) -> Iterator[str]:
        """Iterate over all values, flattening list-valued slots."""
        for value in self.values():
            if isinstance(value, (list, tuple)):
                for item in value:
                    yield str(item)
            else:
                yield str(value)

    def positional(self, index: int) -> Any:
        return list(self.values())[index]


@lru_cache(maxsize=1024)
def parse_template(template: str) -> Tuple[Token, ...]:
    """Split a template into literal strings and placeholders."""
    tokens: List[Token] = []
    buf: List[str] = []
    i = 0
    n = len(template)

    def flush() -> None:
        if buf:
            tokens.append("".join(buf))
            buf.clear()

    while i < n:
        char = template[i]
        if char == "{":
            if template.startswith("{{", i):
                buf.append("{")
                i += 2
                continue
            # Regex constraints may themselves contain braces, e.g. \d{4}
            depth = 1
            j = i + 1
            while j < n and depth:
                if template[j] == "{":
                    depth += 1
                elif template[j] == "}":
                    depth -= 1
                j += 1
            if depth:
                raise ConfigurationError(f"Unbalanced '{{' in template {template!r}")
            body = template[i + 1 : j - 1]
            name, _, regex = body.partition(",")
            name = name.strip()
            if not name:
                raise ConfigurationError(f"Empty placeholder in template {template!r}")
            flush()
            tokens.append(Placeholder(name, regex.strip() or None))
            i = j
        elif char == "}":
            if template.startswith("}}", i):
                buf.append("}")
                i += 2
                continue
            raise ConfigurationError(
                f"Single '}}' in template {template!r}; use '}}}}' for a literal brace"
            )
        else:
            buf.append(char)
            i += 1
    flush()
    return tuple(tokens)


def wildcard_names(template: str) -> Tuple[str, ...]:
    """Return the distinct placeholder names of a template in order of appearance."""
    seen: Dict[str, None] = {}
    for token in parse_template(template):
        if isinstance(token, Placeholder):
            seen.setdefault(token.name, None)
    return tuple(seen)


def referenced_roots(template: str) -> Tuple[str, ...]:
    """Return the root names (before any ``.attr``/``[key]`` accessor) a template references."""
    roots: Dict[str, None] = {}
    for name in wildcard_names(template):
        match = _REFERENCE_RE.match(name)
        if match is None:
            raise ConfigurationError(f"Invalid reference {{{name}}} in template {template!r}")
        roots.setdefault(match.group("root"), None)
    return tuple(roots)


class Pattern:
    """A compiled path template able to match concrete paths."""

    def __init__(self, template: str, constraints: Optional[Mapping[str, str]] = None):
        self.template = template
        self.tokens = parse_template(template)
        self.constraints = dict(constraints or {})
        self.wildcards = wildcard_names(template)
        for name in self.wildcards:
            if not name.isidentifier():
                raise ConfigurationError(
                    f"Invalid wildcard name {name!r} in path template {template!r}"
                )
        self._greedy = self._compile(lazy=False)
        self._lazy = self._compile(lazy=True)

    def _compile(self, lazy: bool) -> "re.Pattern[str]":
        parts = ["^"]
        seen = set()
        for token in self.tokens:
            if isinstance(token, str):
                parts.append(re.escape(token))
                continue
            if token.name in seen:
                parts.append(f"(?P={token.name})")
                continue
            seen.add(token.name)
            regex = token.regex or self.constraints.get(token.name)
            if regex is None:
                regex = _LAZY_DEFAULT if lazy else DEFAULT_WILDCARD_REGEX
            parts.append(f"(?P<{token.name}>{regex})")
        parts.append("$")
        try:
            return re.compile("".join(parts))
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid wildcard constraint in template {self.template!r}: {exc}"
            ) from exc

    @property
    def has_wildcards(self) -> bool:
        return bool(self.wildcards)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """Return the wildcard binding for ``path`` or None if it does not match."""
        found = self._greedy.match(path)
        if found is None:
            return None
        binding = found.groupdict()
        alternative = self._lazy.match(path)
        if alternative is None or alternative.groupdict() != binding:
            logger.debug(
                "Rejecting %r for %r: wildcard boundaries are ambiguous", path, self.template
            )
            return None
        return binding

    def __repr__(self) -> str:
        return f"Pattern({self.template!r})"


@lru_cache(maxsize=1024)
def _cached_pattern(template: str, constraints: Tuple[Tuple[str, str], ...]) -> Pattern:
    return Pattern(template, dict(constraints))


def compile_pattern(template: str, constraints: Optional[Mapping[str, str]] = None) -> Pattern:
    """Return a cached compiled pattern for ``template``."""
    return _cached_pattern(template, tuple(sorted((constraints or {}).items())))


def match(
    template: str, path: str, constraints: Optional[Mapping[str, str]] = None
) -> Optional[Dict[str, str]]:
    """Bind ``path`` against ``template``; None means no match."""
    return compile_pattern(template, constraints).match(path)


def _stringify(value: Any) -> str:
    if isinstance(value, SlotMap):
        return str(value)
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


def _lookup(name: str, namespace: Mapping[str, Any], template: str, rule: Optional[str]) -> Any:
    found = _REFERENCE_RE.match(name)
    if found is None or found.group("root") not in namespace:
        raise UnboundReferenceError(name, template, rule)
    value = namespace[found.group("root")]
    for attr, key in _ACCESSOR_RE.findall(found.group("rest")):
        key = attr or key.strip("'\"")
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        elif isinstance(value, SlotMap) and key.isdigit() and int(key) < len(value):
            value = value.positional(int(key))
        elif isinstance(value, (list, tuple)) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            raise UnboundReferenceError(name, template, rule)
    return value


def render(
    template: str,
    binding: Mapping[str, Any],
    extra: Optional[Mapping[str, Any]] = None,
    rule: Optional[str] = None,
) -> str:
    """Substitute every placeholder of ``template``.

    Args:
        template: Path or command template
        binding: Wildcard binding; bare ``{name}`` placeholders resolve here
        extra: Named slots (input, output, params, threads, resources, ...)
        rule: Rule name used in error messages

    Raises:
        UnboundReferenceError: if a placeholder has no value
    """
    namespace: Dict[str, Any] = dict(binding)
    if extra:
        namespace.update(extra)
    parts = []
    for token in parse_template(template):
        if isinstance(token, str):
            parts.append(token)
        else:
            parts.append(_stringify(_lookup(token.name, namespace, template, rule)))
    return "".join(parts)
