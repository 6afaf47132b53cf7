"""Rule-file loading.

A rule file is a plain Python file that defines either

  - ``rules(config) -> List[Rule]`` (receives the workflow configuration), or
  - ``RULES = [Rule, ...]``

and may define ``resolve(key) -> path | [paths]`` answering ``lookup()``
inputs.
"""

from __future__ import annotations

import runpy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from ruleflow.core.rules import Rule, RuleRegistry
from ruleflow.exceptions import ConfigurationError, WorkflowLoadError
from ruleflow.utils.logging import get_logger

logger = get_logger("loader")


@dataclass
class LoadedRules:
    registry: RuleRegistry
    resolver: Optional[Callable[[str], Any]] = None
    path: Optional[Path] = None


def load_rules(path: Path, config: Optional[Mapping[str, Any]] = None) -> LoadedRules:
    """Execute a rule file and collect its rules.

    Raises:
        WorkflowLoadError: if the file is missing, fails to execute or defines no rules
    """
    rule_path = Path(path).expanduser().resolve()
    if not rule_path.exists():
        raise WorkflowLoadError(f"Rule file not found: {rule_path}")
    if rule_path.suffix != ".py":
        raise WorkflowLoadError(f"Rule file must be a .py file, got: {rule_path.name}")

    module_name = f"ruleflow_rules_{rule_path.stem}"
    try:
        namespace = runpy.run_path(str(rule_path), run_name=module_name)
    except ConfigurationError:
        raise
    except Exception as e:
        raise WorkflowLoadError(f"Failed to execute rule file {rule_path}: {e}") from e

    if callable(namespace.get("rules")):
        try:
            rules = namespace["rules"](dict(config or {}))
        except ConfigurationError:
            raise
        except Exception as e:
            raise WorkflowLoadError(f"rules(config) in {rule_path} failed: {e}") from e
    elif "RULES" in namespace:
        rules = namespace["RULES"]
    else:
        raise WorkflowLoadError(
            f"{rule_path} defines no rules. Define rules(config) -> List[Rule] or RULES = [Rule, ...]."
        )

    if not isinstance(rules, (list, tuple)) or not all(isinstance(r, Rule) for r in rules):
        raise WorkflowLoadError(
            f"{rule_path}: rules must be a list of Rule objects (use ruleflow.rule(...))"
        )

    resolver = namespace.get("resolve")
    if resolver is not None and not callable(resolver):
        raise WorkflowLoadError(f"{rule_path}: 'resolve' must be callable")

    registry = RuleRegistry(rules)
    logger.debug(f"Loaded {len(registry)} rules from {rule_path}")
    return LoadedRules(registry=registry, resolver=resolver, path=rule_path)
