"""
Command availability checks for workflow steps.

Lookups go through a CommandCache instance rather than module state, so
each runner or CLI invocation (and each test) gets its own cache.
"""

import shutil
from pathlib import Path

from .workflow.model import Step, Workflow


class CommandCache:
    """Memoized PATH lookups."""

    def __init__(self):
        self._paths: dict[str, Path | None] = {}

    def which(self, command: str) -> Path | None:
        """Get the path of an executable, or None if it is not on PATH."""
        if command not in self._paths:
            found = shutil.which(command)
            self._paths[command] = Path(found) if found else None
        return self._paths[command]


def base_command(step: Step) -> str | None:
    """
    First token of a step command.

    Returns None for empty commands and for tokens holding variable
    references, which can only be resolved at run time.
    """
    parts = step.run.split()
    if not parts or "$" in parts[0]:
        return None
    return parts[0]


def check_commands(workflow: Workflow, cache: CommandCache) -> dict[str, Path | None]:
    """
    Check every base command used by a workflow (steps and rollback).

    Returns:
        Dict mapping command to path (None if not found)
    """
    status: dict[str, Path | None] = {}
    for step in [*workflow.steps, *workflow.rollback]:
        command = base_command(step)
        if command is not None and command not in status:
            status[command] = cache.which(command)
    return status
