"""
Runners layer - Execution engines for workflows.

Runners execute workflows, handling step sequencing, rollback and
progress reporting. The executor runs individual steps.
"""

from .base import ExecutionContext, RunnerCallbacks, RunnerResult
from .executor import StepExecutor, StepOutcome, evaluate_condition
from .sequential import SequentialRunner

__all__ = [
    "ExecutionContext",
    "RunnerCallbacks",
    "RunnerResult",
    "SequentialRunner",
    "StepExecutor",
    "StepOutcome",
    "evaluate_condition",
]
