from __future__ import annotations

import json
import logging
import os
from threading import Lock
from typing import Any, Dict, List

from models.schemas import AgentDecisionLog
from settings import SETTINGS

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only JSONL trail of routing decisions (one line per decision)."""

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.audit_log_path if path is None else path
        self._lock = Lock()
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    def log_decision(self, record: AgentDecisionLog) -> None:
        self.log_json(record.model_dump(mode="json"))

    def log_json(self, payload: Dict[str, Any]) -> None:
        if not self.path:
            return
        line = json.dumps(payload, ensure_ascii=True)
        try:
            with self._lock:
                with open(self.path, "a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
        except OSError as exc:
            logger.warning("audit_write_failed", extra={"path": self.path, "error": repr(exc)})

    def decisions_for(self, conversation_id: str) -> List[Dict[str, Any]]:
        if not self.path or not os.path.exists(self.path):
            return []
        rows: List[Dict[str, Any]] = []
        with self._lock:
            with open(self.path, "r", encoding="utf-8") as fh:
                for line in fh:
                    try:
                        row = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if row.get("conversation_id") == conversation_id:
                        rows.append(row)
        return rows
