"""Base runner classes and protocols."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ..history import StepResult
from ..workflow.model import RunStatus, StepStatus

if TYPE_CHECKING:
    from ..workflow import Workflow


@dataclass
class ExecutionContext:
    """
    Mutable state of one workflow run.

    Created fresh per run and discarded afterwards.
    """

    variables: dict[str, str] = field(default_factory=dict)
    start_time: datetime = field(default_factory=datetime.now)
    results: list[StepResult] = field(default_factory=list)
    step_statuses: list[StepStatus] = field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING

    @classmethod
    def for_workflow(cls, workflow: Workflow, overrides: dict[str, str] | None = None) -> ExecutionContext:
        """Seed variables from the workflow, then caller overrides (caller wins)."""
        variables = dict(workflow.variables)
        variables.update(overrides or {})
        return cls(
            variables=variables,
            step_statuses=[StepStatus.PENDING] * len(workflow.steps),
        )


@dataclass
class RunnerResult:
    """Result of running a workflow."""

    success: bool
    workflow_name: str
    status: RunStatus = RunStatus.SUCCEEDED
    results: list[StepResult] = field(default_factory=list)
    steps_skipped: int = 0
    failed_step_index: int | None = None
    failed_step: str | None = None
    failed_exit_code: int | None = None
    rolled_back: bool = False
    rollback_failures: int = 0
    duration_ms: int = 0
    history_path: Path | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def steps_executed(self) -> int:
        return len(self.results)


@dataclass
class RunnerCallbacks:
    """
    Callbacks for runner progress reporting.

    Allows CLI to display progress without coupling runner to Rich/UI.
    All callbacks are optional - if None, no callback is made.
    """

    # Workflow lifecycle
    on_workflow_start: Callable[[Workflow, int], None] | None = None  # workflow, total_steps
    on_workflow_complete: Callable[[RunnerResult], None] | None = None

    # Step lifecycle
    on_step_start: Callable[[int, int, str], None] | None = None  # index, total, name
    on_step_skipped: Callable[[int, str], None] | None = None  # index, name
    on_step_complete: Callable[[int, StepResult], None] | None = None  # index, result
    on_step_error: Callable[[int, str, str], None] | None = None  # index, name, message

    # Executor output
    on_command: Callable[[str, str], None] | None = None  # name, command (verbose)
    on_dry_run: Callable[[str], None] | None = None  # command

    # Rollback
    on_rollback_start: Callable[[int], None] | None = None  # rollback step count
    on_rollback_step: Callable[[int, int, str], None] | None = None  # index, total, name
    on_rollback_step_failed: Callable[[str, str], None] | None = None  # name, message

    # Warnings raised before execution (missing commands)
    on_warning: Callable[[str], None] | None = None

    # Interactive confirmation for absolute-path commands; None runs without asking
    confirm_command: Callable[[str], bool] | None = None

