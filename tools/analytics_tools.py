from __future__ import annotations

import json
import logging
import os
from collections import Counter
from datetime import datetime
from threading import Lock
from typing import Dict, List

from settings import SETTINGS

logger = logging.getLogger(__name__)


class AnalyticsTools:
    """Append-only JSONL event log for handoff and AI-assist lifecycle events."""

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.analytics_log_path if path is None else path
        self._lock = Lock()
        self._memory: List[dict] = []
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    async def log_event(self, event_type: str, payload: Dict[str, object]) -> dict:
        record = {"ts": datetime.utcnow().isoformat(), "event_type": event_type, "payload": payload}
        with self._lock:
            if not self.path:
                self._memory.append(record)
                return record
            try:
                with open(self.path, "a", encoding="utf-8") as fh:
                    fh.write(json.dumps(record, ensure_ascii=False) + "\n")
            except OSError as exc:
                logger.warning("analytics_write_failed", extra={"event_type": event_type, "error": repr(exc)})
        return record

    def _rows(self) -> List[dict]:
        if not self.path:
            return list(self._memory)
        rows: List[dict] = []
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as fh:
                for line in fh:
                    try:
                        rows.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue
        return rows

    async def events(self, event_type: str | None = None) -> List[dict]:
        rows = self._rows()
        if event_type:
            rows = [r for r in rows if r.get("event_type") == event_type]
        return rows

    async def dashboard_metrics(self) -> Dict[str, object]:
        rows = self._rows()
        by_type = Counter(r.get("event_type", "unknown") for r in rows)
        finishes = Counter(
            str((r.get("payload") or {}).get("reason", "unknown")) for r in rows if r.get("event_type") == "handoff_finished"
        )
        return {
            "total_events": len(rows),
            "events_by_type": dict(by_type.most_common()),
            "handoff_finish_reasons": dict(finishes.most_common()),
        }
