"""
Security module - Structural and security validation of workflows.

Workflow files are user-editable, so every document is checked before it
becomes a runnable Workflow:
- Structure: required fields, types, size limits
- Command safety: shell metacharacters, substitution, redirection, piping
  into shells and other injection-prone constructs are hard errors
- Allow-listing: base commands outside the allow-list only warn
- Path traversal in working directories and commands

Validation collects every issue rather than stopping at the first one.
"""

import os
import re
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import (
    ALLOWED_WORKFLOW_COMMANDS,
    MAX_STEP_NAME_LENGTH,
    MAX_STEPS,
    MAX_VARIABLE_VALUE_LENGTH,
    MAX_WORKFLOW_NAME_LENGTH,
    PRIVILEGED_ENV_NAMES,
    STEP_FIELDS,
    VARIABLE_NAME_PATTERN,
    WORKFLOW_FIELDS,
)
from .substitution import VARIABLE_TOKEN

# Characters never allowed in names, nor in commands outside variable references
SHELL_DANGEROUS_CHARS = frozenset(";|&$`\n\r")

# Control characters other than tab, LF and CR (those are reported as dangerous chars)
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

PATH_TRAVERSAL = re.compile(r"\.\.[\\/]|(?:^|[\\/\s])\.\.$")

DANGEROUS_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"(?:^|[;&|]\s*|\bsudo\s+)rm\s+(?:-\w+\s+)*-\w*[rRf]"), "recursive or forced deletion"),
    (re.compile(r"(?:^|[;&|]\s*|\bsudo\s+)rm\s+(?:-\w+\s+)*/(?:\s|$)"), "deletion of the filesystem root"),
    (re.compile(r"\bmkfs(?:\.\w+)?\b|\bshred\b|\bdd\s+if="), "disk-level destructive utility"),
    (re.compile(r"\d*[<>]&-?\d*"), "file-descriptor redirection"),
    (re.compile(r">{1,2}\s*[^\s&]"), "output redirection"),
    (re.compile(r"\$\("), "command substitution"),
    (re.compile(r"`"), "backtick command substitution"),
    (re.compile(r"\|\s*(?:sudo\s+)?(?:\S*/)?(?:ba|da|z|k|c|tc|a)?sh\b"), "pipe into a shell interpreter"),
    (re.compile(r"(?:;|&&|\|\||\|)\s*(?:sudo\s+)?(?:rm|mv|cp|curl|wget|nc)\b"), "chaining into a destructive utility"),
    (re.compile(r"\b(?:curl|wget)\b.*\|\s*\S*sh\b"), "remote script piped into a shell"),
    (re.compile(r"\b(?:eval|exec|system)\s*\("), "eval/exec/system call"),
    (re.compile(r"^\s*(?:eval|exec)\s"), "eval/exec invocation"),
]


class Severity(Enum):
    """Severity of a validation issue."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ValidationIssue:
    """A single problem found in a workflow document."""

    message: str
    location: str | None = None
    suggestion: str | None = None
    severity: Severity = Severity.ERROR

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "location": self.location,
            "suggestion": self.suggestion,
            "severity": self.severity.value,
        }


@dataclass
class ValidationResult:
    """Aggregated outcome of validating a workflow."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(
        self,
        message: str,
        location: str | None = None,
        suggestion: str | None = None,
        critical: bool = False,
    ) -> None:
        severity = Severity.CRITICAL if critical else Severity.ERROR
        self.errors.append(ValidationIssue(message, location, suggestion, severity))

    def warn(self, message: str, location: str | None = None, suggestion: str | None = None) -> None:
        self.warnings.append(ValidationIssue(message, location, suggestion, Severity.WARNING))

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


@dataclass
class CommandSafety:
    """Result of command-safety validation."""

    safe: bool
    reason: str | None = None


@dataclass
class CommandAllowance:
    """Result of checking a command against the allow-list."""

    allowed: bool
    command: str | None = None
    requires_confirmation: bool = False
    reason: str | None = None


def is_safe_shell_string(value: Any) -> bool:
    """
    Check that a string has no shell metacharacters or control characters.

    Used for names, which are echoed back to the operator and never need
    variable references. The empty string is considered safe.
    """
    if not isinstance(value, str):
        return False
    if CONTROL_CHARS.search(value):
        return False
    return not any(char in SHELL_DANGEROUS_CHARS for char in value)


def contains_path_traversal(value: Any) -> bool:
    """
    Detect directory traversal sequences.

    Checks the raw value plus its URL-decoded and double-decoded forms for
    ../ or ..\\ segments and NUL bytes.
    """
    if not isinstance(value, str):
        return False

    candidates = [value]
    decoded = value
    for _ in range(2):
        decoded = urllib.parse.unquote(decoded)
        if decoded == candidates[-1]:
            break
        candidates.append(decoded)

    for candidate in candidates:
        if "\x00" in candidate:
            return True
        if PATH_TRAVERSAL.search(candidate):
            return True
    return False


def validate_command_safety(command: Any) -> CommandSafety:
    """
    Validate a step command against injection-prone constructs.

    Well-formed ${NAME} / $NAME references are permitted here because they are
    resolved later; the executor re-runs this check on the substituted command.
    A rejected command cannot be escaped or quoted into acceptance.

    Returns:
        CommandSafety with the first reason the command was rejected
    """
    if not isinstance(command, str):
        return CommandSafety(False, "Command must be a string")

    if not command.strip():
        return CommandSafety(False, "Command cannot be empty")

    if CONTROL_CHARS.search(command):
        return CommandSafety(False, "Command contains control characters")

    masked = VARIABLE_TOKEN.sub("VAR", command)
    for char in sorted(SHELL_DANGEROUS_CHARS):
        if char in masked:
            return CommandSafety(False, f"Command contains dangerous character {char!r}")

    if contains_path_traversal(command):
        return CommandSafety(False, "Command contains path traversal sequence")

    for pattern, description in DANGEROUS_PATTERNS:
        if pattern.search(command):
            return CommandSafety(False, f"Command matches dangerous pattern: {description}")

    return CommandSafety(True)


def validate_allowed_command(command: Any) -> CommandAllowance:
    """
    Check the base command (first whitespace-delimited token) against the allow-list.

    Absolute paths are accepted when their basename is allow-listed but
    require confirmation at run time.
    """
    if not isinstance(command, str) or not command.strip():
        return CommandAllowance(False, reason="Command cannot be empty")

    base = command.split()[0]

    if os.path.isabs(base):
        name = os.path.basename(base)
        if name in ALLOWED_WORKFLOW_COMMANDS:
            return CommandAllowance(
                True,
                command=name,
                requires_confirmation=True,
                reason=f"Absolute path '{base}' requires confirmation before running",
            )
        return CommandAllowance(False, command=name, reason=f"Command '{name}' is not in the allowed command list")

    if base in ALLOWED_WORKFLOW_COMMANDS:
        return CommandAllowance(True, command=base)

    return CommandAllowance(False, command=base, reason=f"Command '{base}' is not in the allowed command list")


def validate_workflow(raw: Any) -> ValidationResult:
    """
    Validate a parsed workflow document.

    Args:
        raw: Value produced by the YAML/JSON parser

    Returns:
        ValidationResult listing every error and warning found
    """
    result = ValidationResult()

    if not isinstance(raw, dict):
        result.error(
            "Workflow must be a mapping of fields",
            suggestion="Define at least 'name' and 'steps' at the top level",
        )
        return result

    _validate_name(raw, result)

    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        result.error("Workflow 'description' must be a string", location="description")

    for key in raw:
        if key not in WORKFLOW_FIELDS:
            result.warn(f"Unknown workflow field '{key}' is ignored", location=str(key))

    if "variables" in raw and raw["variables"] is not None:
        _validate_variables(raw["variables"], result)

    if "steps" not in raw or raw["steps"] is None:
        result.error(
            "Workflow 'steps' is required",
            location="steps",
            suggestion="Add a 'steps' list with at least one step",
        )
    else:
        _validate_step_list(raw["steps"], "steps", result, required=True)

    if raw.get("rollback") is not None:
        _validate_step_list(raw["rollback"], "rollback", result, required=False)

    return result


def _validate_name(raw: dict, result: ValidationResult) -> None:
    if "name" not in raw or raw["name"] is None:
        result.error("Workflow 'name' is required", location="name")
        return

    name = raw["name"]
    if not isinstance(name, str):
        result.error("Workflow 'name' must be a string", location="name", suggestion="Quote the name")
        return

    if not name.strip():
        result.error("Workflow 'name' cannot be empty", location="name")
    if len(name) > MAX_WORKFLOW_NAME_LENGTH:
        result.error(
            f"Workflow name length {len(name)} exceeds maximum of {MAX_WORKFLOW_NAME_LENGTH} characters",
            location="name",
        )
    if not is_safe_shell_string(name):
        result.error(
            "Workflow name contains shell metacharacters or control characters",
            location="name",
            suggestion="Remove characters such as ; | & $ ` and line breaks",
            critical=True,
        )


def _validate_variables(variables: Any, result: ValidationResult) -> None:
    if not isinstance(variables, dict):
        result.error("Workflow 'variables' must be a mapping", location="variables")
        return

    for key, value in variables.items():
        location = f"variables.{key}"
        if not isinstance(key, str) or not VARIABLE_NAME_PATTERN.match(key):
            result.error(
                f"Invalid variable name '{key}'",
                location=location,
                suggestion="Use letters, digits and underscores, not starting with a digit",
            )
            continue

        if key in PRIVILEGED_ENV_NAMES:
            result.warn(
                f"Variable '{key}' shadows a privileged environment variable",
                location=location,
                suggestion="Rename the variable",
            )

        _validate_scalar(value, location, f"Variable '{key}'", result)


def _validate_scalar(value: Any, location: str, label: str, result: ValidationResult) -> None:
    if value is None or isinstance(value, (dict, list)):
        result.error(f"{label} must be a string or number", location=location)
        return

    if len(str(value)) > MAX_VARIABLE_VALUE_LENGTH:
        result.error(
            f"{label} value length {len(str(value))} exceeds maximum of {MAX_VARIABLE_VALUE_LENGTH} characters",
            location=location,
        )

    if CONTROL_CHARS.search(str(value)):
        result.error(
            f"{label} contains control characters",
            location=location,
            suggestion="Remove NUL bytes and other non-printable characters",
            critical=True,
        )


def _validate_step_list(steps: Any, section: str, result: ValidationResult, required: bool) -> None:
    if not isinstance(steps, list):
        result.error(f"Workflow '{section}' must be a list", location=section)
        return

    if required and not steps:
        result.error(
            "Workflow must define at least one step",
            location=section,
            suggestion="Add a step with 'name' and 'run'",
        )

    if len(steps) > MAX_STEPS:
        label = "steps" if section == "steps" else "rollback steps"
        result.error(
            f"Workflow has {len(steps)} {label}, exceeds maximum of {MAX_STEPS} steps",
            location=section,
            suggestion="Split the procedure into several workflows",
        )

    for index, step in enumerate(steps):
        _validate_step(step, f"{section}[{index}]", result)


def _validate_step(step: Any, location: str, result: ValidationResult) -> None:
    if not isinstance(step, dict):
        result.error("Step must be a mapping with 'name' and 'run'", location=location)
        return

    for key in step:
        if key not in STEP_FIELDS:
            result.warn(f"Unknown step field '{key}' is ignored", location=f"{location}.{key}")

    name = step.get("name")
    if name is None:
        result.error("Step 'name' is required", location=f"{location}.name")
    elif not isinstance(name, str):
        result.error("Step 'name' must be a string", location=f"{location}.name")
    else:
        if len(name) > MAX_STEP_NAME_LENGTH:
            result.error(
                f"Step name length {len(name)} exceeds maximum of {MAX_STEP_NAME_LENGTH} characters",
                location=f"{location}.name",
            )
        if not is_safe_shell_string(name):
            result.error(
                "Step name contains shell metacharacters or control characters",
                location=f"{location}.name",
                suggestion="Remove characters such as ; | & $ ` and line breaks",
                critical=True,
            )

    run = step.get("run")
    if run is None:
        result.error("Step 'run' is required", location=f"{location}.run", suggestion="Add the command to execute")
    elif not isinstance(run, str):
        result.error("Step 'run' must be a string", location=f"{location}.run")
    else:
        safety = validate_command_safety(run)
        if not safety.safe:
            result.error(
                safety.reason,
                location=f"{location}.run",
                suggestion="Rewrite the command without shell operators; use one step per command",
                critical=True,
            )
        else:
            allowance = validate_allowed_command(run)
            if not allowance.allowed:
                result.warn(
                    allowance.reason,
                    location=f"{location}.run",
                    suggestion="Check that this command is intended",
                )
            elif allowance.requires_confirmation:
                result.warn(allowance.reason, location=f"{location}.run")

    working_dir = step.get("workingDir")
    if working_dir is not None:
        if not isinstance(working_dir, str):
            result.error("Step 'workingDir' must be a string", location=f"{location}.workingDir")
        elif contains_path_traversal(working_dir):
            result.error(
                "Working directory contains path traversal sequence",
                location=f"{location}.workingDir",
                suggestion="Use an absolute path or a path below the current directory",
                critical=True,
            )

    env = step.get("env")
    if env is not None:
        if not isinstance(env, dict):
            result.error("Step 'env' must be a mapping", location=f"{location}.env")
        else:
            for key, value in env.items():
                env_location = f"{location}.env.{key}"
                if not isinstance(key, str) or not VARIABLE_NAME_PATTERN.match(key):
                    result.error(f"Invalid environment variable name '{key}'", location=env_location)
                    continue
                _validate_scalar(value, env_location, f"Environment variable '{key}'", result)

    condition = step.get("if")
    if condition is not None and not isinstance(condition, str):
        result.error(
            "Step 'if' must be a string",
            location=f"{location}.if",
            suggestion='Quote the value, e.g. if: "false"',
        )

    capture = step.get("capture")
    if capture is not None and (not isinstance(capture, str) or not VARIABLE_NAME_PATTERN.match(capture)):
        result.error(
            f"Invalid capture variable name '{capture}'",
            location=f"{location}.capture",
            suggestion="Use letters, digits and underscores, not starting with a digit",
        )

    continue_on_error = step.get("continueOnError")
    if continue_on_error is not None and not isinstance(continue_on_error, bool):
        result.error("Step 'continueOnError' must be true or false", location=f"{location}.continueOnError")
