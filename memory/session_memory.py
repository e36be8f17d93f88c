from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional

from models.schemas import NavigationData, Session, Step
from settings import SETTINGS

logger = logging.getLogger(__name__)


class SessionRepository:
    """Keyed store of one mutable dialogue session per conversation id.

    Sessions are created lazily by ``get`` and are never dropped implicitly;
    ``reset`` clears step, data and history but keeps the record. When a
    ``path`` is configured every write is mirrored to a JSON snapshot so a
    restarted process resumes open conversations.
    """

    def __init__(self, path: str | None = None, history_limit: int | None = None) -> None:
        self.path = SETTINGS.session_store_path if path is None else path
        self.history_limit = history_limit or SETTINGS.history_limit
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("session_store_load_failed", extra={"path": self.path, "error": repr(exc)})
            return
        for key, raw in dict(payload.get("sessions", {})).items():
            try:
                self._sessions[str(key)] = Session.model_validate(raw)
            except ValueError:
                continue

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {"sessions": {k: v.model_dump(mode="json") for k, v in self._sessions.items()}}
        tmp = f"{self.path}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("session_store_persist_failed", extra={"path": self.path, "error": repr(exc)})

    async def get(self, conversation_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(conversation_id)
            if session is None:
                session = Session(conversation_id=conversation_id)
                self._sessions[conversation_id] = session
                self._persist()
            return session

    async def find(self, conversation_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(conversation_id)

    async def save(self, session: Session) -> Session:
        with self._lock:
            session.updated_at = datetime.utcnow()
            self._sessions[session.conversation_id] = session
            self._persist()
            return session

    async def reset(self, conversation_id: str) -> Session:
        session = await self.get(conversation_id)
        with self._lock:
            session.step = Step.START
            session.data = NavigationData()
            session.history = []
            session.updated_at = datetime.utcnow()
            self._persist()
        return session

    def push_history(self, session: Session, text: str) -> List[str]:
        session.history.append(text)
        overflow = len(session.history) - self.history_limit
        if overflow > 0:
            del session.history[:overflow]
        return session.history
