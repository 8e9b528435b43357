"""
Execution history - one JSON record per workflow run.

Records are stored in the history directory as <workflow>-<epoch ms>.json:
- Written once with exclusive create, never overwritten or merged
- Two runs only share a timestamp name if they start in the same
  millisecond; the second then gets a -N suffix
- No locking between independent CLI invocations
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import HistoryWriteError

logger = logging.getLogger(__name__)

# Workflow names may contain spaces or slashes; file names may not
_UNSAFE_FILE_CHARS = re.compile(r"[^\w-]")


@dataclass
class StepResult:
    """Outcome of one executed (non-skipped) step."""

    step: str
    success: bool
    duration_ms: int
    output: str = ""
    exit_code: int | None = None

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "success": self.success,
            "duration": self.duration_ms,
            "output": self.output,
            "exitCode": self.exit_code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StepResult:
        if not isinstance(data, dict):
            raise ValueError(f"Step result must be a mapping, got {type(data).__name__}")
        return cls(
            step=data.get("step", ""),
            success=bool(data.get("success", False)),
            duration_ms=int(data.get("duration", 0)),
            output=data.get("output", ""),
            exit_code=data.get("exitCode"),
        )


@dataclass
class HistoryEntry:
    """Persisted record of a single workflow run."""

    workflow: str
    start_time: datetime
    end_time: datetime
    duration_ms: int
    success: bool
    steps_executed: int
    results: list[StepResult] = field(default_factory=list)
    workflow_hash: str | None = None
    failed_step: str | None = None
    rolled_back: bool = False

    def to_dict(self) -> dict:
        return {
            "workflow": self.workflow,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "duration": self.duration_ms,
            "success": self.success,
            "stepsExecuted": self.steps_executed,
            "results": [r.to_dict() for r in self.results],
            "workflowHash": self.workflow_hash,
            "failedStep": self.failed_step,
            "rolledBack": self.rolled_back,
        }

    @classmethod
    def from_dict(cls, data: dict) -> HistoryEntry:
        if not isinstance(data, dict):
            raise ValueError(f"History record must be a mapping, got {type(data).__name__}")
        return cls(
            workflow=data["workflow"],
            start_time=datetime.fromisoformat(data["startTime"]),
            end_time=datetime.fromisoformat(data["endTime"]),
            duration_ms=int(data.get("duration", 0)),
            success=bool(data.get("success", False)),
            steps_executed=int(data.get("stepsExecuted", 0)),
            results=[StepResult.from_dict(r) for r in data.get("results", [])],
            workflow_hash=data.get("workflowHash"),
            failed_step=data.get("failedStep"),
            rolled_back=bool(data.get("rolledBack", False)),
        )


class HistoryStore:
    """Append-only directory of history records."""

    def __init__(self, history_dir: Path):
        self.history_dir = Path(history_dir)

    def ensure_dir(self):
        """Create history directory if it doesn't exist."""
        self.history_dir.mkdir(parents=True, exist_ok=True)

    def record(self, entry: HistoryEntry) -> Path:
        """
        Persist a history entry as a new file.

        Returns:
            Path of the written record

        Raises:
            HistoryWriteError: Directory or file could not be written
        """
        stamp = int(entry.start_time.timestamp() * 1000)
        prefix = _UNSAFE_FILE_CHARS.sub("_", entry.workflow)
        content = json.dumps(entry.to_dict(), indent=2)

        try:
            self.ensure_dir()
            suffix = 0
            while True:
                name = f"{prefix}-{stamp}.json" if suffix == 0 else f"{prefix}-{stamp}-{suffix}.json"
                path = self.history_dir / name
                try:
                    with open(path, "x", encoding="utf-8") as f:
                        f.write(content)
                    return path
                except FileExistsError:
                    suffix += 1
        except OSError as e:
            raise HistoryWriteError(f"Failed to write history for {entry.workflow}: {e}") from e

    def read(self, path: Path) -> HistoryEntry:
        """Load one history record."""
        with open(path, encoding="utf-8") as f:
            return HistoryEntry.from_dict(json.load(f))

    def entries(self, workflow: str | None = None, limit: int | None = None) -> list[HistoryEntry]:
        """
        History records, newest first.

        Args:
            workflow: Only records for this workflow name
            limit: Maximum number of records to return

        Unreadable records are skipped with a warning.
        """
        if not self.history_dir.is_dir():
            return []

        entries = []
        for path in self.history_dir.glob("*.json"):
            try:
                entry = self.read(path)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable history record %s: %s", path.name, e)
                continue
            if workflow is None or entry.workflow == workflow:
                entries.append(entry)

        entries.sort(key=lambda e: e.start_time, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries
