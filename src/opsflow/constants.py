"""
Centralized constants for opsflow.

Limits, file extensions and the command allow-list live here
to avoid duplication across modules.
"""

import re

from . import __short_name__

# Workflow source files, tried in this order
WORKFLOW_EXTENSIONS = (".yaml", ".yml", ".json")

# Workflow files larger than this are rejected before parsing (1 MiB)
MAX_WORKFLOW_FILE_SIZE = 1024 * 1024

MAX_STEPS = 100
MAX_WORKFLOW_NAME_LENGTH = 100
MAX_STEP_NAME_LENGTH = 200
MAX_VARIABLE_VALUE_LENGTH = 10_000

# Commands written to audit records are capped at this length
MAX_LOGGED_COMMAND_LENGTH = 200

# Names accepted by the workflow store (file stem)
WORKFLOW_FILE_NAME_PATTERN = re.compile(r"^[\w-]+$")

# Variable names for `variables`, `env` keys and `capture`
VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Shadowing these only warns
PRIVILEGED_ENV_NAMES = frozenset({"PATH", "HOME", "USER", "SHELL", "PWD"})

# Fields understood on a step; anything else is dropped
STEP_FIELDS = frozenset({"name", "run", "workingDir", "env", "if", "capture", "continueOnError"})

# Top-level workflow fields
WORKFLOW_FIELDS = frozenset({"name", "description", "version", "variables", "steps", "rollback"})

HISTORY_DIR_NAME = ".history"

CLI_NAME = __short_name__

# Base commands a step may start with without a warning
ALLOWED_WORKFLOW_COMMANDS = frozenset(
    {
        CLI_NAME,
        # Containers and orchestration
        "docker",
        "docker-compose",
        "kubectl",
        "helm",
        "terraform",
        # Source control and build
        "git",
        "make",
        "npm",
        "npx",
        "node",
        "python",
        "python3",
        "pip",
        # Shells
        "sh",
        "bash",
        "zsh",
        # Common utilities
        "echo",
        "printf",
        "true",
        "false",
        "test",
        "sleep",
        "date",
        "cat",
        "ls",
        "pwd",
        "mkdir",
        "touch",
        "grep",
        "head",
        "tail",
        "wc",
        "sort",
        "uniq",
        "tar",
        "gzip",
        "gunzip",
        "df",
        "du",
        "ps",
        "env",
        "which",
        "whoami",
        "hostname",
        # Network and remote
        "curl",
        "wget",
        "ssh",
        "scp",
        "rsync",
        # Services
        "systemctl",
        "journalctl",
    }
)
