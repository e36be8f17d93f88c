from __future__ import annotations

import logging
from typing import List, Optional

from celery import Celery

from models.schemas import AgentIdentity, EscalationPayload, TranscriptMessage
from settings import SETTINGS
from tools.ticket_tools import TicketStore

logger = logging.getLogger(__name__)


celery_app = Celery("service_desk")
if SETTINGS.redis_url:
    celery_app.conf.broker_url = SETTINGS.redis_url
    celery_app.conf.result_backend = SETTINGS.redis_url
else:
    celery_app.conf.task_always_eager = True

_default_store: Optional[TicketStore] = None


def default_store() -> TicketStore:
    global _default_store
    if _default_store is None:
        _default_store = TicketStore()
    return _default_store


@celery_app.task(name="tasks.persistence.save_message")
def save_message(conversation_id: str, message: dict) -> dict:
    return default_store().save_message(conversation_id, TranscriptMessage.model_validate(message))


@celery_app.task(name="tasks.persistence.create_ticket")
def create_ticket(conversation_id: str, topic: str, agent: dict, payload: dict) -> dict:
    return default_store().create_ticket(
        conversation_id,
        topic,
        AgentIdentity.model_validate(agent),
        EscalationPayload.model_validate(payload),
    )


@celery_app.task(name="tasks.persistence.close_ticket")
def close_ticket(conversation_id: str, reason: str) -> Optional[dict]:
    return default_store().close_ticket(conversation_id, reason)


@celery_app.task(name="tasks.persistence.save_rating")
def save_rating(conversation_id: str, stars: Optional[int], skipped: bool) -> dict:
    return default_store().save_rating(conversation_id, stars, skipped)


class PersistenceSink:
    """Durable side effects of a conversation.

    With a broker configured and no explicit store, writes are queued as
    Celery tasks; otherwise they run in-process against the store. Failures
    are logged and swallowed so message delivery never depends on storage.
    """

    def __init__(self, store: TicketStore | None = None) -> None:
        self.store = store
        self.queued = store is None and bool(SETTINGS.redis_url)

    def _target(self) -> TicketStore:
        return self.store or default_store()

    def save_message(self, conversation_id: str, message: TranscriptMessage) -> None:
        try:
            if self.queued:
                save_message.delay(conversation_id, message.model_dump(mode="json"))
            else:
                self._target().save_message(conversation_id, message)
        except Exception as exc:
            self._failed("save_message", conversation_id, exc)

    def create_ticket(self, conversation_id: str, topic: str, agent: AgentIdentity, payload: EscalationPayload) -> Optional[dict]:
        try:
            if self.queued:
                create_ticket.delay(conversation_id, topic, agent.model_dump(mode="json"), payload.model_dump(mode="json"))
                return None
            return self._target().create_ticket(conversation_id, topic, agent, payload)
        except Exception as exc:
            self._failed("create_ticket", conversation_id, exc)
            return None

    def close_ticket(self, conversation_id: str, reason: str) -> None:
        try:
            if self.queued:
                close_ticket.delay(conversation_id, reason)
            else:
                self._target().close_ticket(conversation_id, reason)
        except Exception as exc:
            self._failed("close_ticket", conversation_id, exc)

    def save_rating(self, conversation_id: str, stars: Optional[int], skipped: bool = False) -> None:
        try:
            if self.queued:
                save_rating.delay(conversation_id, stars, skipped)
            else:
                self._target().save_rating(conversation_id, stars, skipped)
        except Exception as exc:
            self._failed("save_rating", conversation_id, exc)

    def transcript(self, conversation_id: str) -> List[dict]:
        return self._target().messages_for(conversation_id)

    @staticmethod
    def _failed(operation: str, conversation_id: str, exc: Exception) -> None:
        logger.warning(
            "persistence_failed",
            extra={"operation": operation, "conversation_id": conversation_id, "error": repr(exc)},
        )
