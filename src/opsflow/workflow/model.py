"""Workflow and step definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StepStatus(Enum):
    """Status of a step during a run."""

    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStatus(Enum):
    """Status of a whole workflow run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"


def _scalar_to_str(value: Any) -> str:
    """Render a YAML scalar the way an author would write it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class Step:
    """
    A unit of work in a workflow.

    Steps are data - they describe a command line to run, not how to run it.
    The executor interprets steps.
    """

    name: str
    run: str
    working_dir: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    condition: str | None = None
    capture: str | None = None
    continue_on_error: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> Step:
        """Build a Step from a validated mapping; unknown fields are dropped."""
        env = data.get("env") or {}
        return cls(
            name=data["name"],
            run=data["run"],
            working_dir=data.get("workingDir"),
            env={key: _scalar_to_str(value) for key, value in env.items()},
            condition=data.get("if"),
            capture=data.get("capture"),
            continue_on_error=bool(data.get("continueOnError", False)),
        )

    def to_dict(self) -> dict:
        """Serialize using the workflow file's field names, omitting defaults."""
        result: dict[str, Any] = {"name": self.name, "run": self.run}
        if self.working_dir is not None:
            result["workingDir"] = self.working_dir
        if self.env:
            result["env"] = dict(self.env)
        if self.condition is not None:
            result["if"] = self.condition
        if self.capture is not None:
            result["capture"] = self.capture
        if self.continue_on_error:
            result["continueOnError"] = True
        return result


@dataclass
class Workflow:
    """
    A named, ordered procedure of steps with optional rollback steps.

    Workflows define WHAT to do, not HOW to execute it.
    Read-only once loaded; runtime state lives in the ExecutionContext.
    """

    name: str
    steps: list[Step]
    description: str | None = None
    variables: dict[str, str] = field(default_factory=dict)
    rollback: list[Step] = field(default_factory=list)
    # Derived at load time
    integrity_hash: str | None = None
    security_warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(
        cls,
        data: dict,
        integrity_hash: str | None = None,
        security_warnings: list[str] | None = None,
    ) -> Workflow:
        """Build a Workflow from a validated document."""
        variables = data.get("variables") or {}
        return cls(
            name=data["name"],
            description=data.get("description"),
            variables={key: _scalar_to_str(value) for key, value in variables.items()},
            steps=[Step.from_dict(step) for step in data["steps"]],
            rollback=[Step.from_dict(step) for step in data.get("rollback") or []],
            integrity_hash=integrity_hash,
            security_warnings=list(security_warnings or []),
        )

    def to_dict(self) -> dict:
        """Serialize to the workflow file layout (derived metadata excluded)."""
        result: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            result["description"] = self.description
        if self.variables:
            result["variables"] = dict(self.variables)
        result["steps"] = [step.to_dict() for step in self.steps]
        if self.rollback:
            result["rollback"] = [step.to_dict() for step in self.rollback]
        return result
