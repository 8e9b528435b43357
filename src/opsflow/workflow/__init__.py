"""
Workflow layer - Workflow definitions and their on-disk store.

Workflows are DATA STRUCTURES that define what to do.
They do NOT execute anything - that's the runner's job.
"""

from .model import RunStatus, Step, StepStatus, Workflow
from .store import WorkflowStore, WorkflowSummary, build_workflow, calculate_workflow_hash
from .templates import TEMPLATES, get_template

__all__ = [
    "RunStatus",
    "Step",
    "StepStatus",
    "Workflow",
    "WorkflowStore",
    "WorkflowSummary",
    "build_workflow",
    "calculate_workflow_hash",
    "TEMPLATES",
    "get_template",
]
