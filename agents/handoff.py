from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable, Dict, List, Optional

from models.schemas import AgentIdentity, AssignResult, EscalationPayload, HandoffRecord, PendingQueueEntry
from settings import SETTINGS

logger = logging.getLogger(__name__)


class HandoffOrchestrator:
    """Owns the pending queue and the handoff records.

    Every mutation is synchronous and completes before returning, so callers
    on the event loop never observe a half-applied enqueue/assign/finish.
    Duplicate operations are no-ops.
    """

    def __init__(self, clock: Callable[[], float] | None = None, inactivity_seconds: float | None = None) -> None:
        self.clock = clock or time.time
        self.inactivity_seconds = float(
            SETTINGS.handoff_inactivity_seconds if inactivity_seconds is None else inactivity_seconds
        )
        self._queue: Dict[str, PendingQueueEntry] = {}
        self._handoffs: Dict[str, HandoffRecord] = {}
        self._lock = Lock()

    def enqueue(self, conversation_id: str, payload: EscalationPayload | None = None) -> Optional[PendingQueueEntry]:
        with self._lock:
            if conversation_id in self._queue or conversation_id in self._handoffs:
                return None
            entry = PendingQueueEntry(
                conversation_id=conversation_id,
                enqueued_at=self.clock(),
                payload=payload or EscalationPayload(),
            )
            self._queue[conversation_id] = entry
        logger.info("handoff_enqueued", extra={"conversation_id": conversation_id, "topic": entry.payload.topic()})
        return entry

    def remove_from_queue(self, conversation_id: str) -> bool:
        with self._lock:
            return self._queue.pop(conversation_id, None) is not None

    def assign(self, conversation_id: str, agent: AgentIdentity, agent_channel: str | None = None) -> AssignResult:
        now = self.clock()
        with self._lock:
            entry = self._queue.pop(conversation_id, None)
            record = self._handoffs.get(conversation_id)
            if record is not None:
                record.agent = agent
                record.agent_channel = agent_channel or record.agent_channel
                record.last_activity = now
                return AssignResult(record=record, created=False, payload=record.payload)
            payload = entry.payload if entry else EscalationPayload()
            record = HandoffRecord(
                conversation_id=conversation_id,
                agent=agent,
                agent_channel=agent_channel,
                payload=payload,
                assigned_at=now,
                last_activity=now,
            )
            self._handoffs[conversation_id] = record
        logger.info("handoff_assigned", extra={"conversation_id": conversation_id, "agent_id": agent.agent_id})
        return AssignResult(record=record, created=True, payload=payload)

    def is_human(self, conversation_id: str) -> bool:
        return conversation_id in self._handoffs

    def get(self, conversation_id: str) -> Optional[HandoffRecord]:
        return self._handoffs.get(conversation_id)

    def touch(self, conversation_id: str, at: float | None = None) -> bool:
        record = self._handoffs.get(conversation_id)
        if record is None:
            return False
        record.last_activity = self.clock() if at is None else at
        return True

    def finish(self, conversation_id: str) -> Optional[HandoffRecord]:
        with self._lock:
            record = self._handoffs.pop(conversation_id, None)
            self._queue.pop(conversation_id, None)
        if record is not None:
            logger.info("handoff_finished", extra={"conversation_id": conversation_id, "agent_id": record.agent.agent_id})
        return record

    def expired(self, now: float | None = None) -> List[HandoffRecord]:
        now = self.clock() if now is None else now
        return [
            record
            for record in list(self._handoffs.values())
            if not record.no_timeout and now - record.last_activity > self.inactivity_seconds
        ]

    def set_no_timeout(self, conversation_id: str, no_timeout: bool) -> bool:
        record = self._handoffs.get(conversation_id)
        if record is None:
            return False
        record.no_timeout = bool(no_timeout)
        return True

    def set_no_timeout_for_agent(self, agent_id: str, no_timeout: bool) -> int:
        records = self.active_for_agent(agent_id)
        for record in records:
            record.no_timeout = bool(no_timeout)
        return len(records)

    def agent_connected(self, agent_id: str, agent_channel: str) -> List[HandoffRecord]:
        records = self.active_for_agent(agent_id)
        for record in records:
            record.agent_channel = agent_channel
        return records

    def agent_disconnected(self, agent_channel: str) -> int:
        cleared = 0
        for record in list(self._handoffs.values()):
            if record.agent_channel == agent_channel:
                record.agent_channel = None
                cleared += 1
        return cleared

    def user_disconnected(self, conversation_id: str) -> bool:
        """Drop an unclaimed queue entry; an active handoff survives."""
        return self.remove_from_queue(conversation_id)

    def queue_snapshot(self) -> List[PendingQueueEntry]:
        return sorted(self._queue.values(), key=lambda entry: entry.enqueued_at)

    def active_for_agent(self, agent_id: str) -> List[HandoffRecord]:
        return [r for r in list(self._handoffs.values()) if r.agent.agent_id == agent_id]
