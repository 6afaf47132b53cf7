"""ruleflow: rule-based, dependency-driven workflow engine."""

from ruleflow.__version__ import __version__
from ruleflow.dsl import expand, lookup, min_version, rule, temp

__all__ = ["__version__", "rule", "temp", "expand", "lookup", "min_version"]
