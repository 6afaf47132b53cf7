"""Resource files and configuration templates."""


def get_default_config() -> str:
    """Return default configuration YAML content."""
    return """# ruleflow Configuration File

# Rule file and working directory (can be overridden by CLI arguments)
rulefile: "Rulefile.py"
workdir: "."
# Targets built when none are given on the command line (default: rule 'all')
targets: []

# Runtime settings
runtime:
  log_level: "WARNING"
  log_file: ~
  state_dir: ".ruleflow"
  latency_wait: 30
  poll_interval: 0.2
  enable_progress: true
  printshellcmds: false

# Job dispatch
execution:
  jobs: 4
  force_all: false
  force_rules: []

# Cluster submission (leave submit empty to run jobs locally)
cluster:
  submit: ~
  default_resources: {}

# Workflow configuration passed to rules(config) in the rule file
config: {}
"""
