from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Dict, List, Optional

from agents import replies
from agents.ai_assist import AIAssistController
from agents.dialogue_engine import DialogueStateMachine
from agents.handoff import HandoffOrchestrator
from agents.intent_resolver import HybridIntentResolver
from agents.llm_runtime import LLMRuntime
from channels.delivery import DeliveryChannel
from channels.web_chat import WebChatConnectionManager
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionRepository
from models.schemas import (
    AgentIdentity,
    AssignResult,
    EscalationPayload,
    FinishReason,
    HandoffRecord,
    MessageAuthor,
    OutboundMessage,
    Photo,
    Step,
    TranscriptMessage,
    TurnResult,
)
from settings import SETTINGS
from tasks.persistence import PersistenceSink
from tasks.timers import AsyncioTimerService, TimerService
from tools.analytics_tools import AnalyticsTools
from tools.listing_tools import ListingProvider, build_listing_provider

logger = logging.getLogger(__name__)


class ConversationOrchestrator:
    """Entry point for every inbound event of the service desk.

    Each event for a conversation runs under that conversation's lock, so
    user turns, agent actions, timer fires and sweeps never interleave for
    the same id. Replies are delivered in order and written to the transcript;
    storage failures are logged by the sink and never hold delivery back.
    """

    def __init__(
        self,
        llm: LLMRuntime | None = None,
        sessions: SessionRepository | None = None,
        timers: TimerService | None = None,
        resolver: HybridIntentResolver | None = None,
        handoff: HandoffOrchestrator | None = None,
        delivery: DeliveryChannel | None = None,
        persistence: PersistenceSink | None = None,
        analytics_tools: AnalyticsTools | None = None,
        audit_logger: AuditLogger | None = None,
        listing_provider: ListingProvider | None = None,
    ) -> None:
        self.llm = llm or LLMRuntime()
        self.sessions = sessions or SessionRepository()
        self.timers = timers or AsyncioTimerService()
        self.audit_logger = audit_logger or AuditLogger()
        self.resolver = resolver or HybridIntentResolver(llm=self.llm, clock=self.timers.now, audit_logger=self.audit_logger)
        self.handoff = handoff or HandoffOrchestrator(clock=self.timers.now)
        self.delivery = delivery or WebChatConnectionManager()
        self.persistence = persistence or PersistenceSink()
        self.analytics_tools = analytics_tools or AnalyticsTools()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self.ai = AIAssistController(
            self.timers,
            self.sessions,
            notify=self._ai_expired,
            is_human=self.handoff.is_human,
            lock_for=self.lock_for,
        )
        self.engine = DialogueStateMachine(
            self.sessions,
            self.resolver,
            self.ai,
            listing_provider=listing_provider or build_listing_provider(SETTINGS.listing_provider),
            llm=self.llm,
            audit_logger=self.audit_logger,
        )

    @contextlib.asynccontextmanager
    async def lock_for(self, conversation_id: str) -> AsyncIterator[None]:
        """Hold the conversation's lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[conversation_id] - 1
            if users:
                self._lock_users[conversation_id] = users
            else:
                self._lock_users.pop(conversation_id, None)
                self._locks.pop(conversation_id, None)

    async def handle_user_text(self, conversation_id: str, text: str) -> TurnResult:
        async with self.lock_for(conversation_id):
            self._transcript(conversation_id, MessageAuthor.USER, text)
            record = self.handoff.get(conversation_id)
            if record is not None:
                return await self._relay_from_user(record, OutboundMessage(author=MessageAuthor.USER, text=text))
            result = await self.engine.handle_text(conversation_id, text)
            return await self._complete_turn(result)

    async def handle_user_media(self, conversation_id: str, photo: Photo) -> TurnResult:
        async with self.lock_for(conversation_id):
            self._transcript(conversation_id, MessageAuthor.USER, "", media_url=photo.url, kind="image")
            record = self.handoff.get(conversation_id)
            if record is not None:
                message = OutboundMessage(author=MessageAuthor.USER, kind="image", media_url=photo.url)
                return await self._relay_from_user(record, message)
            result = await self.engine.handle_media(conversation_id, photo)
            return await self._complete_turn(result)

    async def assign(self, conversation_id: str, agent: AgentIdentity, agent_channel: str | None = None) -> AssignResult:
        async with self.lock_for(conversation_id):
            result = self.handoff.assign(conversation_id, agent, agent_channel)
            if not result.created:
                return result
            self.ai.cancel(conversation_id)
            self.persistence.create_ticket(conversation_id, result.payload.topic(), agent, result.payload)
            await self._send_user(conversation_id, replies.ASSIGNED_NOTICE.format(agent=agent.name), author=MessageAuthor.SYSTEM)
            await self.analytics_tools.log_event(
                "handoff_assigned",
                {"conversation_id": conversation_id, "agent_id": agent.agent_id, "topic": result.payload.topic()},
            )
        await self.delivery.publish_queue(self.handoff.queue_snapshot())
        return result

    async def agent_message(self, conversation_id: str, text: str) -> bool:
        async with self.lock_for(conversation_id):
            if not self.handoff.touch(conversation_id):
                return False
            self._transcript(conversation_id, MessageAuthor.AGENT, text)
            await self.delivery.send_to_user(conversation_id, OutboundMessage(author=MessageAuthor.AGENT, text=text))
            return True

    async def finish(
        self, conversation_id: str, reason: FinishReason | str = FinishReason.AGENT
    ) -> Optional[HandoffRecord]:
        async with self.lock_for(conversation_id):
            return await self._finish_locked(conversation_id, reason)

    async def _finish_locked(self, conversation_id: str, reason: FinishReason | str) -> Optional[HandoffRecord]:
        reason = FinishReason(reason)
        record = self.handoff.finish(conversation_id)
        if record is None:
            return None
        await self._send_user(conversation_id, replies.FINISH_NOTICES[reason], author=MessageAuthor.SYSTEM)
        if reason != FinishReason.TIMEOUT:
            await self.delivery.send_to_user(
                conversation_id,
                OutboundMessage(author=MessageAuthor.SYSTEM, kind="rate_request", text=replies.RATE_REQUEST),
            )
        if record.agent_channel:
            await self.delivery.send_to_agent(
                record.agent_channel,
                conversation_id,
                OutboundMessage(author=MessageAuthor.SYSTEM, kind="finished", text=reason.value),
            )
        self.persistence.close_ticket(conversation_id, reason.value)
        await self.engine.reset(conversation_id)
        self.resolver.forget(conversation_id)
        await self.analytics_tools.log_event(
            "handoff_finished",
            {"conversation_id": conversation_id, "agent_id": record.agent.agent_id, "reason": reason.value},
        )
        return record

    async def submit_rating(self, conversation_id: str, stars: int | None, skipped: bool = False) -> TurnResult:
        async with self.lock_for(conversation_id):
            if not skipped and (stars is None or not 1 <= stars <= 5):
                raise ValueError("stars must be between 1 and 5 unless the rating is skipped")
            self.persistence.save_rating(conversation_id, stars, skipped)
            session = await self.sessions.get(conversation_id)
            session.step = Step.RATE_FOLLOWUP
            await self.sessions.save(session)
            result = TurnResult(
                conversation_id=conversation_id,
                step=session.step,
                replies=[replies.RATE_THANKS, replies.RATE_FOLLOWUP],
                buttons=replies.buttons_for_step(session.step),
            )
            await self._deliver(result)
            return result

    async def sweep_inactive(self) -> List[str]:
        closed: List[str] = []
        for record in self.handoff.expired():
            conversation_id = record.conversation_id
            async with self.lock_for(conversation_id):
                still_expired = any(r.conversation_id == conversation_id for r in self.handoff.expired())
                if not still_expired:
                    continue
                if await self._finish_locked(conversation_id, FinishReason.TIMEOUT) is not None:
                    closed.append(conversation_id)
        if closed:
            logger.info("handoff_sweep_closed", extra={"conversations": closed})
        return closed

    async def agent_connected(self, agent: AgentIdentity, agent_channel: str) -> List[HandoffRecord]:
        records = self.handoff.agent_connected(agent.agent_id, agent_channel)
        for record in records:
            logger.info("handoff_reattached", extra={"conversation_id": record.conversation_id, "agent_id": agent.agent_id})
        return records

    def agent_disconnected(self, agent_channel: str) -> int:
        return self.handoff.agent_disconnected(agent_channel)

    async def user_disconnected(self, conversation_id: str) -> bool:
        async with self.lock_for(conversation_id):
            removed = self.handoff.user_disconnected(conversation_id)
        if removed:
            await self.delivery.publish_queue(self.handoff.queue_snapshot())
        return removed

    async def logout(self, agent_id: str) -> List[str]:
        finished: List[str] = []
        for record in self.handoff.active_for_agent(agent_id):
            if await self.finish(record.conversation_id, FinishReason.LOGOUT) is not None:
                finished.append(record.conversation_id)
        return finished

    async def _complete_turn(self, result: TurnResult) -> TurnResult:
        await self._deliver(result)
        if result.escalation is not None:
            result.enqueued = await self._enqueue(result.conversation_id, result.escalation)
        return result

    async def _enqueue(self, conversation_id: str, payload: EscalationPayload) -> bool:
        entry = self.handoff.enqueue(conversation_id, payload)
        if entry is None:
            return False
        self.ai.cancel(conversation_id)
        await self._send_user(conversation_id, replies.QUEUED_NOTICE, author=MessageAuthor.SYSTEM)
        await self.analytics_tools.log_event(
            "handoff_enqueued",
            {"conversation_id": conversation_id, "topic": payload.topic(), "reason": payload.reason},
        )
        await self.delivery.publish_queue(self.handoff.queue_snapshot())
        return True

    async def _relay_from_user(self, record: HandoffRecord, message: OutboundMessage) -> TurnResult:
        self.handoff.touch(record.conversation_id)
        if record.agent_channel:
            await self.delivery.send_to_agent(record.agent_channel, record.conversation_id, message)
        session = await self.sessions.get(record.conversation_id)
        return TurnResult(conversation_id=record.conversation_id, step=session.step, human_mode=True)

    async def _deliver(self, result: TurnResult) -> None:
        last = len(result.replies) - 1
        for i, text in enumerate(result.replies):
            buttons = result.buttons if i == last else []
            await self._send_user(result.conversation_id, text, buttons=buttons)
        if result.cards:
            await self.delivery.send_to_user(
                result.conversation_id,
                OutboundMessage(kind="cards", cards=list(result.cards)),
            )

    async def _send_user(self, conversation_id: str, text: str, author: MessageAuthor = MessageAuthor.BOT, buttons=None) -> None:
        self._transcript(conversation_id, author, text)
        await self.delivery.send_to_user(
            conversation_id,
            OutboundMessage(author=author, text=text, buttons=list(buttons or [])),
        )

    async def _ai_expired(self, conversation_id: str, text: str) -> None:
        await self._send_user(conversation_id, text, author=MessageAuthor.SYSTEM)
        await self.analytics_tools.log_event("ai_assist_expired", {"conversation_id": conversation_id})

    def _transcript(
        self,
        conversation_id: str,
        who: MessageAuthor,
        text: str,
        media_url: str | None = None,
        kind: str = "text",
    ) -> None:
        self.persistence.save_message(
            conversation_id,
            TranscriptMessage(who=who, text=text, media_url=media_url, type=kind, timestamp=self.timers.now()),
        )
