"""
Workflow store - Locates, loads and persists workflow files.

All workflows live in one directory as <name>.yaml, <name>.yml or
<name>.json. Loading is atomic: a Workflow is only returned once the file
passed the size ceiling, parsing and security validation.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from ..constants import CLI_NAME, HISTORY_DIR_NAME, MAX_WORKFLOW_FILE_SIZE, WORKFLOW_EXTENSIONS, WORKFLOW_FILE_NAME_PATTERN
from ..errors import (
    FileTooLargeError,
    InvalidWorkflowNameError,
    WorkflowError,
    WorkflowExistsError,
    WorkflowNotFoundError,
    WorkflowParseError,
    WorkflowValidationError,
)
from ..security import ValidationResult, validate_workflow
from .model import Workflow
from .templates import DEFAULT_TEMPLATE, get_template

logger = logging.getLogger(__name__)

FORMATS = ("yaml", "json")


def calculate_workflow_hash(data: Any) -> str:
    """
    SHA-256 fingerprint of a workflow document.

    Keys are sorted so logically identical documents hash the same
    regardless of field order. Used to correlate history records, not as
    a security control.
    """
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def read_workflow_file(path: Path) -> Any:
    """
    Read and parse a workflow file, enforcing the size ceiling first.

    Returns:
        The parsed document (not yet validated)

    Raises:
        FileTooLargeError: File exceeds MAX_WORKFLOW_FILE_SIZE
        WorkflowParseError: File is not valid YAML/JSON text
    """
    size = path.stat().st_size
    if size > MAX_WORKFLOW_FILE_SIZE:
        raise FileTooLargeError(f"Workflow file {path.name} is {size} bytes, exceeds maximum of {MAX_WORKFLOW_FILE_SIZE}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise WorkflowParseError(f"Workflow file {path.name} is not valid UTF-8: {e}") from e

    return parse_workflow_text(content, path.suffix, source=path.name)


def parse_workflow_text(content: str, suffix: str, source: str = "<workflow>") -> Any:
    """Parse workflow text as JSON (for .json) or YAML."""
    try:
        if suffix.lower() == ".json":
            return json.loads(content)
        return yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise WorkflowParseError(f"Failed to parse {source}: {e}") from e


def dump_workflow(data: dict, fmt: str = "yaml") -> str:
    """Serialize a workflow document as YAML or JSON text."""
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    return yaml.safe_dump(data, sort_keys=False, width=100, allow_unicode=True)


def build_workflow(raw: Any, source: str | None = None) -> Workflow:
    """
    Validate a parsed document and construct a Workflow.

    Raises:
        WorkflowValidationError: With every issue found
    """
    result = validate_workflow(raw)
    if not result.valid:
        raise WorkflowValidationError(result, source)

    return Workflow.from_dict(
        raw,
        integrity_hash=calculate_workflow_hash(raw),
        security_warnings=[str(issue) for issue in result.warnings],
    )


@dataclass
class WorkflowSummary:
    """Listing entry for a workflow file."""

    name: str
    description: str
    steps: int
    modified: datetime
    path: Path
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "steps": self.steps,
            "modified": self.modified.isoformat(),
            "path": str(self.path),
            "error": self.error,
        }


class WorkflowStore:
    """
    Workflow files in a single directory.

    History records are kept in <workflows_dir>/.history.
    """

    def __init__(self, workflows_dir: Path):
        self.workflows_dir = Path(workflows_dir)

    @property
    def history_dir(self) -> Path:
        return self.workflows_dir / HISTORY_DIR_NAME

    def ensure_dir(self):
        """Create the workflows directory if it doesn't exist."""
        self.workflows_dir.mkdir(parents=True, exist_ok=True)

    def find(self, name: str) -> Path | None:
        """
        Resolve a workflow name to its file.

        Tries .yaml, .yml, then .json. The resolved basename must be exactly
        <name><ext> and live directly in the workflows directory.

        Raises:
            InvalidWorkflowNameError: Name contains anything but word characters and '-'
        """
        _check_name(name)

        if not self.workflows_dir.is_dir():
            return None

        root = self.workflows_dir.resolve()
        for ext in WORKFLOW_EXTENSIONS:
            expected = f"{name}{ext}"
            candidate = self.workflows_dir / expected
            if candidate.name != expected or candidate.parent.resolve() != root:
                continue
            if candidate.is_file():
                return candidate
        return None

    def path_for(self, name: str) -> Path:
        """Like find(), but raises WorkflowNotFoundError when missing."""
        path = self.find(name)
        if path is None:
            raise WorkflowNotFoundError(
                f"Workflow '{name}' not found. Run '{CLI_NAME} workflow list' to see available workflows."
            )
        return path

    def read_raw(self, name: str) -> tuple[Path, Any]:
        """Locate and parse a workflow without validating it."""
        path = self.path_for(name)
        return path, read_workflow_file(path)

    def check(self, name: str) -> ValidationResult:
        """Validate a workflow file and return every issue found."""
        _, raw = self.read_raw(name)
        return validate_workflow(raw)

    def load(self, name: str) -> Workflow:
        """
        Load a runnable workflow.

        Raises:
            WorkflowNotFoundError, FileTooLargeError, WorkflowParseError,
            WorkflowValidationError
        """
        path, raw = self.read_raw(name)
        workflow = build_workflow(raw, source=path.name)
        logger.debug("Loaded workflow %s from %s (hash %s)", name, path, workflow.integrity_hash)
        for warning in workflow.security_warnings:
            logger.warning("Workflow %s: %s", name, warning)
        return workflow

    def save(self, name: str, workflow: Workflow | dict, fmt: str = "yaml") -> Path:
        """
        Write a workflow file as <name>.yaml or <name>.json.

        Files for the same name with another extension are removed, so the
        saved file is the one find() resolves.
        """
        _check_name(name)
        if fmt not in FORMATS:
            raise ValueError(f"Unknown format '{fmt}', expected one of: {', '.join(FORMATS)}")

        self.ensure_dir()
        data = workflow.to_dict() if isinstance(workflow, Workflow) else workflow
        path = self.workflows_dir / f"{name}.{fmt}"
        path.write_text(dump_workflow(data, fmt), encoding="utf-8")

        for ext in WORKFLOW_EXTENSIONS:
            sibling = self.workflows_dir / f"{name}{ext}"
            if sibling != path and sibling.is_file():
                logger.info("Removing %s superseded by %s", sibling.name, path.name)
                sibling.unlink()
        return path

    def create(self, name: str, template: str = DEFAULT_TEMPLATE, fmt: str = "yaml") -> Path:
        """Create a workflow from a built-in template, refusing to overwrite."""
        if self.find(name) is not None:
            raise WorkflowExistsError(f"Workflow '{name}' already exists.")
        return self.save(name, get_template(template), fmt)

    def delete(self, name: str) -> Path:
        """Delete a workflow file and return its former path."""
        path = self.path_for(name)
        path.unlink()
        return path

    def export(self, name: str) -> str:
        """Validated workflow as YAML text."""
        return dump_workflow(self.load(name).to_dict(), "yaml")

    def import_file(self, source: Path, name: str | None = None) -> Path:
        """
        Import a workflow file into the store as YAML.

        The file is size-checked, parsed and validated before anything is written.
        """
        source = Path(source)
        if not source.is_file():
            raise WorkflowNotFoundError(f"File not found: {source}")

        raw = read_workflow_file(source)
        workflow = build_workflow(raw, source=source.name)
        return self.save(name or source.stem, workflow, "yaml")

    def list_workflows(self) -> list[WorkflowSummary]:
        """Summaries of every workflow file, sorted by name."""
        if not self.workflows_dir.is_dir():
            return []

        summaries = []
        for path in self.workflows_dir.iterdir():
            if not path.is_file() or path.suffix not in WORKFLOW_EXTENSIONS:
                continue
            summaries.append(self._summarize(path))

        return sorted(summaries, key=lambda s: s.name)

    def _summarize(self, path: Path) -> WorkflowSummary:
        modified = datetime.fromtimestamp(path.stat().st_mtime)
        summary = WorkflowSummary(name=path.stem, description="No description", steps=0, modified=modified, path=path)

        if not WORKFLOW_FILE_NAME_PATTERN.match(path.stem):
            summary.error = "Invalid workflow file name"
            return summary

        try:
            raw = read_workflow_file(path)
        except WorkflowError as e:
            summary.error = str(e)
            return summary

        if not isinstance(raw, dict):
            summary.error = "Invalid workflow file"
            return summary

        description = raw.get("description")
        if isinstance(description, str) and description:
            summary.description = description
        steps = raw.get("steps")
        summary.steps = len(steps) if isinstance(steps, list) else 0
        return summary


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not WORKFLOW_FILE_NAME_PATTERN.match(name):
        raise InvalidWorkflowNameError(f"Invalid workflow name '{name}': use letters, digits, '-' and '_' only")
