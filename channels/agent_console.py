from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from channels.web_chat import WebChatConnectionManager
from models.schemas import AgentIdentity, FinishReason

if TYPE_CHECKING:
    from agents.orchestrator import ConversationOrchestrator


async def websocket_agent_handler(
    websocket: WebSocket,
    orchestrator: "ConversationOrchestrator",
    manager: WebChatConnectionManager,
    agent_id: str,
    agent_name: str = "Agente",
) -> None:
    agent = AgentIdentity(agent_id=agent_id, name=agent_name or "Agente")
    agent_channel = await manager.connect_agent(websocket)
    try:
        reattached = await orchestrator.agent_connected(agent, agent_channel)
        await websocket.send_json(
            {
                "type": "connected",
                "agent_channel": agent_channel,
                "active": [r.model_dump(mode="json") for r in reattached],
                "queue": [e.model_dump(mode="json") for e in orchestrator.handoff.queue_snapshot()],
            }
        )
        while True:
            inbound = await websocket.receive_json()
            kind = str(inbound.get("type") or "")
            conversation_id = str(inbound.get("conversation_id") or "")
            if kind == "take" and conversation_id:
                await orchestrator.assign(conversation_id, agent, agent_channel)
            elif kind == "message" and conversation_id:
                await orchestrator.agent_message(conversation_id, str(inbound.get("text") or ""))
            elif kind == "finish" and conversation_id:
                await orchestrator.finish(conversation_id, FinishReason.AGENT)
            elif kind == "toggle_timeout" and conversation_id:
                orchestrator.handoff.set_no_timeout(conversation_id, bool(inbound.get("no_timeout")))
            elif kind == "toggle_timeout_global":
                orchestrator.handoff.set_no_timeout_for_agent(agent.agent_id, bool(inbound.get("no_timeout")))
            elif kind == "logout":
                await orchestrator.logout(agent.agent_id)
            else:
                await websocket.send_json({"type": "error", "message": f"unsupported event: {kind or 'empty'}"})
    except WebSocketDisconnect:
        manager.disconnect_agent(agent_channel)
        orchestrator.agent_disconnected(agent_channel)
