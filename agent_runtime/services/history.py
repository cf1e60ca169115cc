"""Recent job results, optionally persisted as JSON files."""
from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from agent_runtime.core.models import JobResult, Task
from agent_runtime.core.redaction import redact

logger = logging.getLogger(__name__)


class JobHistory:
    """Bounded in-memory log of finished jobs.

    With ``output_dir`` set, every record is also written to
    ``<output_dir>/tasks/<task_id>.json`` with secrets masked.
    """

    def __init__(self, limit: int = 100, output_dir: Optional[Path] = None) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self._entries: Deque[JobResult] = deque(maxlen=limit)
        self.output_dir = Path(output_dir) if output_dir else None

    def record(self, result: JobResult, task: Optional[Task] = None) -> None:
        self._entries.append(result)
        if self.output_dir is not None:
            self._persist(result, task)

    def recent(self, limit: Optional[int] = None) -> List[JobResult]:
        """Newest first."""
        entries = list(reversed(self._entries))
        return entries if limit is None else entries[:limit]

    def get(self, task_id: str) -> Optional[JobResult]:
        return next((entry for entry in reversed(self._entries) if entry.task_id == task_id), None)

    def __len__(self) -> int:
        return len(self._entries)

    def _persist(self, result: JobResult, task: Optional[Task]) -> None:
        document: Dict[str, Any] = {
            "result": result.to_dict(include_history=True),
            "startedAt": result.started_at.isoformat() if result.started_at else None,
            "finishedAt": result.finished_at.isoformat() if result.finished_at else None,
        }
        if task is not None:
            document["task"] = {
                "taskId": task.task_id,
                "priority": task.priority.value,
                "description": task.description,
                "payload": task.payload,
            }
        target = self.output_dir / "tasks" / f"{result.task_id}.json"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(redact(document), indent=2, default=str), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write task output %s: %s", target, exc)
