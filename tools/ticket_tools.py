from __future__ import annotations

import json
import logging
import os
import time
import uuid
from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional

from models.schemas import AgentIdentity, EscalationPayload, TranscriptMessage
from settings import SETTINGS

logger = logging.getLogger(__name__)


class TicketStore:
    """JSON-file store for transcripts, handoff tickets and ratings.

    An empty path keeps everything in memory.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.ticket_store_path if path is None else path
        self._messages: Dict[str, List[dict]] = {}
        self._tickets: List[dict] = []
        self._ratings: List[dict] = []
        self._lock = Lock()
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("ticket_store_load_failed", extra={"path": self.path, "error": repr(exc)})
            return
        if isinstance(payload.get("messages"), dict):
            self._messages = payload["messages"]
        if isinstance(payload.get("tickets"), list):
            self._tickets = payload["tickets"]
        if isinstance(payload.get("ratings"), list):
            self._ratings = payload["ratings"]

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        last_err: Exception | None = None
        for attempt in range(5):
            tmp = f"{self.path}.{uuid.uuid4().hex}.tmp"
            try:
                with open(tmp, "w", encoding="utf-8") as fh:
                    json.dump({"messages": self._messages, "tickets": self._tickets, "ratings": self._ratings}, fh, ensure_ascii=False)
                os.replace(tmp, self.path)
                return
            except PermissionError as exc:
                last_err = exc
                self._discard(tmp)
                time.sleep(0.03 * (attempt + 1))
            except OSError as exc:
                last_err = exc
                self._discard(tmp)
                break
        logger.warning("ticket_store_persist_failed", extra={"path": self.path, "error": repr(last_err)})

    @staticmethod
    def _discard(tmp: str) -> None:
        try:
            if os.path.exists(tmp):
                os.remove(tmp)
        except OSError:
            logger.debug("ticket_store_tmp_cleanup_failed", extra={"tmp": tmp})

    def save_message(self, conversation_id: str, message: TranscriptMessage) -> dict:
        row = message.model_dump(mode="json")
        with self._lock:
            self._messages.setdefault(conversation_id, []).append(row)
            self._persist()
        return row

    def create_ticket(
        self,
        conversation_id: str,
        topic: str,
        agent: AgentIdentity,
        payload: EscalationPayload | None = None,
    ) -> dict:
        with self._lock:
            ticket = {
                "ticket_id": f"TCK-{len(self._tickets) + 1:05d}",
                "conversation_id": conversation_id,
                "topic": topic,
                "agent_id": agent.agent_id,
                "agent_name": agent.name,
                "payload": (payload or EscalationPayload()).model_dump(mode="json"),
                "status": "OPEN",
                "opened_at": datetime.utcnow().isoformat(),
            }
            self._tickets.append(ticket)
            self._persist()
        return ticket

    def close_ticket(self, conversation_id: str, reason: str = "agent") -> Optional[dict]:
        with self._lock:
            for ticket in reversed(self._tickets):
                if ticket["conversation_id"] == conversation_id and ticket.get("status") == "OPEN":
                    ticket["status"] = "CLOSED"
                    ticket["closed_reason"] = reason
                    ticket["closed_at"] = datetime.utcnow().isoformat()
                    self._persist()
                    return ticket
        return None

    def save_rating(self, conversation_id: str, stars: int | None, skipped: bool = False) -> dict:
        row = {
            "conversation_id": conversation_id,
            "stars": None if skipped else stars,
            "skipped": bool(skipped),
            "ts": datetime.utcnow().isoformat(),
        }
        with self._lock:
            self._ratings.append(row)
            self._persist()
        return row

    def messages_for(self, conversation_id: str) -> List[dict]:
        with self._lock:
            return list(self._messages.get(conversation_id, []))

    def tickets_for(self, conversation_id: str) -> List[dict]:
        with self._lock:
            return [t for t in self._tickets if t["conversation_id"] == conversation_id]

    def ratings_for(self, conversation_id: str) -> List[dict]:
        with self._lock:
            return [r for r in self._ratings if r["conversation_id"] == conversation_id]
