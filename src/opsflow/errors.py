"""Exception hierarchy for the workflow engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .security import ValidationResult


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class WorkflowNotFoundError(WorkflowError):
    """No workflow file exists for the requested name."""


class InvalidWorkflowNameError(WorkflowNotFoundError):
    """The requested name cannot map to a file in the workflows directory."""


class WorkflowExistsError(WorkflowError):
    """Refusing to overwrite an existing workflow."""


class FileTooLargeError(WorkflowError):
    """Workflow file exceeds the size ceiling."""


class WorkflowParseError(WorkflowError):
    """Workflow file is not valid YAML/JSON or not a mapping."""


class WorkflowValidationError(WorkflowError):
    """
    Aggregate of every structural and security issue found in a workflow.

    The full ValidationResult is kept so callers can report each issue.
    """

    def __init__(self, result: ValidationResult, source: str | None = None):
        self.result = result
        self.source = source
        count = len(result.errors)
        where = f" in {source}" if source else ""
        super().__init__(f"Workflow validation failed{where}: {count} error(s)")


class SecurityViolationError(WorkflowError):
    """A command was rejected at execution time."""

    def __init__(self, message: str, step: str | None = None):
        self.step = step
        super().__init__(message)


class ExecutionError(WorkflowError):
    """A step process could not be spawned or did not finish."""


class HistoryWriteError(WorkflowError):
    """A history record could not be persisted."""
