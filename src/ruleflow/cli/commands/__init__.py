"""ruleflow subcommands."""
