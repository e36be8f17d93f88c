from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from models.schemas import OutboundMessage, PendingQueueEntry


class DeliveryChannel(ABC):
    """Outbound side of the transports: the end user and the agent console."""

    @abstractmethod
    async def send_to_user(self, conversation_id: str, message: OutboundMessage) -> None:
        raise NotImplementedError

    @abstractmethod
    async def send_to_agent(self, agent_channel: str, conversation_id: str, message: OutboundMessage) -> None:
        raise NotImplementedError

    async def publish_queue(self, entries: List[PendingQueueEntry]) -> None:
        return None
