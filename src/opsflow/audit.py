"""
Security audit log.

Rejected commands are appended as JSON lines so violations outlive the
process. Detail values are sanitized and length-capped before writing.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from .constants import MAX_LOGGED_COMMAND_LENGTH

logger = logging.getLogger(__name__)

_UNPRINTABLE = re.compile(r"[\x00-\x1f\x7f]")

COMMAND_REJECTED = "WORKFLOW_COMMAND_REJECTED"
COMMAND_DECLINED = "WORKFLOW_COMMAND_DECLINED"


def sanitize_for_log(value: Any, max_length: int = MAX_LOGGED_COMMAND_LENGTH) -> str:
    """Replace control characters and cap the length of a logged value."""
    text = _UNPRINTABLE.sub("?", str(value))
    if len(text) > max_length:
        return f"{text[:max_length]}...[truncated]"
    return text


class AuditSink(Protocol):
    """Anything that can record a security violation."""

    def log_security_violation(self, event: str, details: dict[str, Any]) -> None: ...


class SecurityAuditLog:
    """
    JSON-lines audit sink.

    With no path, violations only reach the logger.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else None

    def log_security_violation(self, event: str, details: dict[str, Any]) -> None:
        record = {
            "timestamp": datetime.now().isoformat(),
            "event": event,
            "details": {key: sanitize_for_log(value) for key, value in details.items()},
        }
        logger.warning("Security violation %s: %s", event, record["details"])

        if self.path is None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.error("Failed to write audit record to %s: %s", self.path, e)

    def read_events(self) -> list[dict]:
        """Read back every recorded violation."""
        if self.path is None or not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
