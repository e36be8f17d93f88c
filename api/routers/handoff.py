from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, WebSocket
from pydantic import BaseModel, Field

from channels.agent_console import websocket_agent_handler
from channels.web_chat import WebChatConnectionManager
from models.schemas import AgentIdentity, FinishReason


router = APIRouter(prefix="/handoff", tags=["handoff"])


class AssignRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    agent_id: str = Field(min_length=1)
    agent_name: str = "Agente"


class AgentMessageRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class FinishRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    reason: FinishReason = FinishReason.AGENT


class TimeoutToggleRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    no_timeout: bool = True


class AgentTimeoutToggleRequest(BaseModel):
    agent_id: str = Field(min_length=1)
    no_timeout: bool = True


class LogoutRequest(BaseModel):
    agent_id: str = Field(min_length=1)


def _orchestrator(request: Request):
    return request.app.state.orchestrator


@router.get("/queue")
async def get_queue(request: Request):
    entries = _orchestrator(request).handoff.queue_snapshot()
    return {"queue": [e.model_dump(mode="json") | {"topic": e.payload.topic()} for e in entries]}


@router.post("/assign")
async def post_assign(payload: AssignRequest, request: Request):
    agent = AgentIdentity(agent_id=payload.agent_id, name=payload.agent_name)
    result = await _orchestrator(request).assign(payload.conversation_id, agent)
    return result.model_dump(mode="json")


@router.post("/message")
async def post_agent_message(payload: AgentMessageRequest, request: Request):
    delivered = await _orchestrator(request).agent_message(payload.conversation_id, payload.text)
    if not delivered:
        raise HTTPException(status_code=404, detail="handoff_not_found")
    return {"ok": True}


@router.post("/finish")
async def post_finish(payload: FinishRequest, request: Request):
    record = await _orchestrator(request).finish(payload.conversation_id, payload.reason)
    return {"ok": True, "finished": record is not None}


@router.post("/timeout")
async def post_toggle_timeout(payload: TimeoutToggleRequest, request: Request):
    if not _orchestrator(request).handoff.set_no_timeout(payload.conversation_id, payload.no_timeout):
        raise HTTPException(status_code=404, detail="handoff_not_found")
    return {"ok": True, "no_timeout": payload.no_timeout}


@router.post("/timeout/global")
async def post_toggle_timeout_global(payload: AgentTimeoutToggleRequest, request: Request):
    updated = _orchestrator(request).handoff.set_no_timeout_for_agent(payload.agent_id, payload.no_timeout)
    return {"ok": True, "updated": updated}


@router.get("/active/{agent_id}")
async def get_active(agent_id: str, request: Request):
    records = _orchestrator(request).handoff.active_for_agent(agent_id)
    return {"agent_id": agent_id, "active": [r.model_dump(mode="json") for r in records]}


@router.post("/logout")
async def post_logout(payload: LogoutRequest, request: Request):
    finished = await _orchestrator(request).logout(payload.agent_id)
    return {"ok": True, "finished": finished}


@router.get("/metrics")
async def get_metrics(request: Request):
    return await _orchestrator(request).analytics_tools.dashboard_metrics()


@router.websocket("/ws/{agent_id}")
async def agent_ws(websocket: WebSocket, agent_id: str):
    app = websocket.app
    manager: WebChatConnectionManager = app.state.web_chat_manager
    name = websocket.query_params.get("name") or "Agente"
    await websocket_agent_handler(websocket, orchestrator=app.state.orchestrator, manager=manager, agent_id=agent_id, agent_name=name)
