"""
Step executor - Runs a single workflow step as a subprocess.

Order of operations:
1. Substitute variables into name, command, working directory and env values
2. Re-validate the substituted command, since a variable can reintroduce a
   construct that load-time validation rejected
3. Dry run: report the command and return without spawning
4. Spawn without a shell; the command is split on whitespace
"""

import logging
import os
import subprocess
from dataclasses import dataclass

from ..audit import COMMAND_DECLINED, COMMAND_REJECTED, AuditSink, SecurityAuditLog
from ..errors import ExecutionError, SecurityViolationError
from ..security import contains_path_traversal, validate_allowed_command, validate_command_safety
from ..substitution import substitute
from ..workflow.model import Step
from .base import ExecutionContext, RunnerCallbacks

logger = logging.getLogger(__name__)

# Condition values that skip a step. Anything else runs it.
SKIP_CONDITION_VALUES = frozenset({"false", "0"})


def evaluate_condition(condition: str | None, variables: dict[str, str]) -> bool:
    """
    Decide whether a step runs.

    The substituted condition skips the step only when it is exactly "false"
    or "0". This is a string comparison, not an expression language.
    """
    if condition is None:
        return True
    return substitute(condition, variables) not in SKIP_CONDITION_VALUES


@dataclass
class StepOutcome:
    """Result of executing one step."""

    success: bool
    exit_code: int | None
    output: str
    stderr: str
    command: str


class StepExecutor:
    """Executes steps one at a time."""

    def __init__(
        self,
        timeout: float | None = None,
        audit: AuditSink | None = None,
        skip_security_check: bool = False,
    ):
        """
        Initialize the executor.

        Args:
            timeout: Per-step timeout in seconds (None = wait indefinitely)
            audit: Sink for security violations (default: logger only)
            skip_security_check: Bypass execution-time command validation
        """
        self.timeout = timeout
        self.audit = audit or SecurityAuditLog()
        self.skip_security_check = skip_security_check

    def execute(
        self,
        step: Step,
        context: ExecutionContext,
        verbose: bool = False,
        dry_run: bool = False,
        callbacks: RunnerCallbacks | None = None,
    ) -> StepOutcome:
        """
        Execute a step.

        Args:
            step: Step to run
            context: Run context providing variables
            verbose: Inherit stdio instead of capturing output
            dry_run: Validate and report only, never spawn
            callbacks: Optional progress/confirmation callbacks

        Returns:
            StepOutcome with exit code and captured output

        Raises:
            SecurityViolationError: Substituted command rejected or not confirmed
            ExecutionError: Process could not be started or timed out
        """
        cb = callbacks or RunnerCallbacks()
        variables = context.variables

        name = substitute(step.name, variables)
        command = substitute(step.run, variables)
        working_dir = substitute(step.working_dir, variables) if step.working_dir else None
        env_vars = {key: substitute(value, variables) for key, value in step.env.items()}

        logger.debug("Step %s: %s", name, command)
        if verbose and cb.on_command:
            cb.on_command(name, command)

        if not self.skip_security_check:
            self._check_substituted(name, command, working_dir)

        if dry_run:
            if cb.on_dry_run:
                cb.on_dry_run(command)
            return StepOutcome(success=True, exit_code=0, output="", stderr="", command=command)

        allowance = validate_allowed_command(command)
        if allowance.requires_confirmation and cb.confirm_command is not None:
            if not cb.confirm_command(command):
                self._reject(COMMAND_DECLINED, name, command, "Operator declined absolute-path command")
                raise SecurityViolationError(f"Command was not confirmed: {command.split()[0]}", step=name)

        env = {**os.environ, **variables, **env_vars}
        args = command.split()

        try:
            completed = subprocess.run(
                args,
                cwd=working_dir,
                env=env,
                timeout=self.timeout,
                capture_output=not verbose,
                text=True,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"Step '{name}' timed out after {self.timeout}s") from e
        except (OSError, ValueError) as e:
            # ValueError: embedded NUL in args or env, e.g. from a captured output
            raise ExecutionError(f"Failed to start '{args[0]}': {e}") from e

        return StepOutcome(
            success=completed.returncode == 0,
            exit_code=completed.returncode,
            output=(completed.stdout or "").strip(),
            stderr=(completed.stderr or "").strip(),
            command=command,
        )

    def _check_substituted(self, name: str, command: str, working_dir: str | None) -> None:
        safety = validate_command_safety(command)
        if not safety.safe:
            self._reject(COMMAND_REJECTED, name, command, safety.reason)
            raise SecurityViolationError(f"Security violation in step '{name}': {safety.reason}", step=name)

        if working_dir is not None and contains_path_traversal(working_dir):
            reason = "Working directory contains path traversal sequence"
            self._reject(COMMAND_REJECTED, name, command, reason)
            raise SecurityViolationError(f"Security violation in step '{name}': {reason}", step=name)

    def _reject(self, event: str, name: str, command: str, reason: str) -> None:
        self.audit.log_security_violation(event, {"step": name, "command": command, "reason": reason})
