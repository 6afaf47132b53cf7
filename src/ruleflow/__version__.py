"""Version information for ruleflow."""

__version__ = "0.4.0"
__license__ = "GPL-2.0"
__description__ = "Rule-based, dependency-driven workflow engine with wildcard rules and cluster dispatch"
