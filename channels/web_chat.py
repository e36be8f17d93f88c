from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Set

from fastapi import WebSocket, WebSocketDisconnect

from channels.delivery import DeliveryChannel
from models.schemas import FinishReason, OutboundMessage, PendingQueueEntry, Photo

if TYPE_CHECKING:
    from agents.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class WebChatConnectionManager(DeliveryChannel):
    """Websocket fan-out for end users (by conversation) and agents (by channel id)."""

    connections: Dict[str, Set[WebSocket]] = field(default_factory=dict)
    agents: Dict[str, WebSocket] = field(default_factory=dict)

    async def connect(self, conversation_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.setdefault(conversation_id, set()).add(websocket)

    def disconnect(self, conversation_id: str, websocket: WebSocket) -> None:
        if conversation_id in self.connections:
            self.connections[conversation_id].discard(websocket)
            if not self.connections[conversation_id]:
                self.connections.pop(conversation_id, None)

    async def connect_agent(self, websocket: WebSocket) -> str:
        await websocket.accept()
        agent_channel = uuid.uuid4().hex
        self.agents[agent_channel] = websocket
        return agent_channel

    def disconnect_agent(self, agent_channel: str) -> None:
        self.agents.pop(agent_channel, None)

    async def broadcast(self, conversation_id: str, payload: dict) -> None:
        for ws in list(self.connections.get(conversation_id, set())):
            try:
                await ws.send_json(payload)
            except (RuntimeError, WebSocketDisconnect) as exc:
                logger.warning("web_chat_send_failed", extra={"conversation_id": conversation_id, "error": repr(exc)})
                self.disconnect(conversation_id, ws)

    async def send_to_user(self, conversation_id: str, message: OutboundMessage) -> None:
        await self.broadcast(conversation_id, {"type": message.kind, "message": message.model_dump(mode="json")})

    async def send_to_agent(self, agent_channel: str, conversation_id: str, message: OutboundMessage) -> None:
        ws = self.agents.get(agent_channel)
        if ws is None:
            return
        try:
            await ws.send_json({"type": message.kind, "conversation_id": conversation_id, "message": message.model_dump(mode="json")})
        except (RuntimeError, WebSocketDisconnect) as exc:
            logger.warning("agent_console_send_failed", extra={"agent_channel": agent_channel, "error": repr(exc)})
            self.disconnect_agent(agent_channel)

    async def publish_queue(self, entries: List[PendingQueueEntry]) -> None:
        payload = {"type": "queue", "queue": [e.model_dump(mode="json") | {"topic": e.payload.topic()} for e in entries]}
        for agent_channel, ws in list(self.agents.items()):
            try:
                await ws.send_json(payload)
            except (RuntimeError, WebSocketDisconnect) as exc:
                logger.warning("agent_console_send_failed", extra={"agent_channel": agent_channel, "error": repr(exc)})
                self.disconnect_agent(agent_channel)


async def websocket_chat_handler(
    websocket: WebSocket,
    orchestrator: "ConversationOrchestrator",
    manager: WebChatConnectionManager,
    conversation_id: str,
) -> None:
    await manager.connect(conversation_id, websocket)
    try:
        await websocket.send_json({"type": "connected", "conversation_id": conversation_id})
        while True:
            inbound = await websocket.receive_json()
            kind = str(inbound.get("type") or "message")
            if kind == "image":
                url = str(inbound.get("url") or "").strip()
                if not url:
                    await websocket.send_json({"type": "error", "message": "url is required"})
                    continue
                await orchestrator.handle_user_media(
                    conversation_id,
                    Photo(url=url, media_type=str(inbound.get("media_type") or "image/*"), name=str(inbound.get("name") or "")),
                )
            elif kind == "rate":
                stars = inbound.get("stars")
                try:
                    await orchestrator.submit_rating(
                        conversation_id,
                        int(stars) if stars is not None else None,
                        skipped=bool(inbound.get("skipped")),
                    )
                except (TypeError, ValueError):
                    await websocket.send_json({"type": "error", "message": "stars must be between 1 and 5"})
            elif kind == "end":
                await orchestrator.finish(conversation_id, FinishReason.USER)
            else:
                await orchestrator.handle_user_text(conversation_id, str(inbound.get("text") or ""))
    except WebSocketDisconnect:
        manager.disconnect(conversation_id, websocket)
        if conversation_id not in manager.connections:
            await orchestrator.user_disconnected(conversation_id)
