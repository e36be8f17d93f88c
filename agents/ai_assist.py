from __future__ import annotations

import contextlib
import logging
from typing import AsyncContextManager, Awaitable, Callable, Optional

from agents.replies import AI_EXPIRED
from agents.text_utils import normalize
from memory.session_memory import SessionRepository
from models.schemas import AIAssistState, AssistData, NavigationData, Session, Step
from settings import SETTINGS
from tasks.timers import TimerService

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], Awaitable[None]]

EXIT_WORDS = {"salir", "volver", "salir del modo consulta", "terminar consulta"}


def is_exit_word(text: str) -> bool:
    return normalize(text) in EXIT_WORDS


class AIAssistController:
    """Timed open-question sub-mode on top of ``general_menu``.

    The expiry timer is keyed ``ai:<conversation_id>``. When it fires the
    session is re-read and only a conversation that is still in the mode (and
    not handed to a person) is closed, with one inactivity notice.
    """

    def __init__(
        self,
        timers: TimerService,
        sessions: SessionRepository,
        ttl_seconds: float | None = None,
        notify: Optional[Notify] = None,
        is_human: Optional[Callable[[str], bool]] = None,
        lock_for: Optional[Callable[[str], AsyncContextManager]] = None,
    ) -> None:
        self.timers = timers
        self.sessions = sessions
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else SETTINGS.ai_assist_ttl_seconds)
        self.notify = notify
        self.is_human = is_human or (lambda _cid: False)
        self.lock_for = lock_for

    @staticmethod
    def timer_key(conversation_id: str) -> str:
        return f"ai:{conversation_id}"

    def enter(self, session: Session) -> AIAssistState:
        state = AIAssistState(active=True, expires_at=self.timers.now() + self.ttl_seconds)
        session.step = Step.GENERAL_AI
        session.data = AssistData(ai=state)
        self._arm(session.conversation_id)
        logger.info("ai_assist_entered", extra={"conversation_id": session.conversation_id})
        return state

    def touch(self, session: Session) -> bool:
        if not self.is_active(session):
            return False
        session.data.ai.expires_at = self.timers.now() + self.ttl_seconds
        self._arm(session.conversation_id)
        return True

    def is_active(self, session: Session | None) -> bool:
        if session is None or session.step != Step.GENERAL_AI:
            return False
        return isinstance(session.data, AssistData) and session.data.ai.active

    def exit(self, session: Session) -> None:
        session.step = Step.GENERAL_MENU
        session.data = NavigationData()
        self.cancel(session.conversation_id)

    def cancel(self, conversation_id: str) -> bool:
        return self.timers.cancel(self.timer_key(conversation_id))

    def _arm(self, conversation_id: str, delay: float | None = None) -> None:
        async def _fire() -> None:
            await self.expire(conversation_id)

        self.timers.schedule(self.timer_key(conversation_id), self.ttl_seconds if delay is None else delay, _fire)

    async def expire(self, conversation_id: str) -> bool:
        lock = self.lock_for(conversation_id) if self.lock_for else contextlib.nullcontext()
        async with lock:
            if self.is_human(conversation_id):
                return False
            session = await self.sessions.find(conversation_id)
            if not self.is_active(session):
                return False
            remaining = (session.data.ai.expires_at or 0.0) - self.timers.now()
            if remaining > 0:
                # Touched while this fire waited for the lock.
                if not self.timers.pending(self.timer_key(conversation_id)):
                    self._arm(conversation_id, remaining)
                return False
            self.exit(session)
            await self.sessions.save(session)
            logger.info("ai_assist_expired", extra={"conversation_id": conversation_id})
            if self.notify is not None:
                await self.notify(conversation_id, AI_EXPIRED)
        return True
