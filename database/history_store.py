"""Append-only JSONL log of completed flow sessions."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

import structlog

from models.schemas import FlowSession, utcnow

logger = structlog.get_logger()

HISTORY_FILE = "history.jsonl"


class HistoryStore:
    """One ``history.jsonl`` per flow, next to its metadata."""

    def __init__(self, flows_dir: Union[str, Path]):
        self._flows_dir = Path(flows_dir).expanduser()

    def path_for(self, flow_name: str) -> Path:
        return self._flows_dir / flow_name / HISTORY_FILE

    async def save(self, session: FlowSession) -> bool:
        """Append the session with ``completed_at``. Errors are logged, never raised."""
        entry = session.model_dump(mode="json")
        entry["completed_at"] = utcnow().isoformat()
        path = self.path_for(session.flow_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error("flow_history_save_failed", flow=session.flow_name, error=str(e))
            return False
        logger.debug("flow_history_saved", flow=session.flow_name, sender=session.sender_id)
        return True

    async def read(self, flow_name: str) -> list[dict[str, Any]]:
        path = self.path_for(flow_name)
        if not path.exists():
            return []
        with open(path, "r") as f:
            return [json.loads(line) for line in f if line.strip()]
