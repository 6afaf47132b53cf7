"""Command line interface (ruleflow)."""
