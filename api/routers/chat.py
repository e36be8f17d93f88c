from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket
from pydantic import BaseModel, Field

from channels.web_chat import WebChatConnectionManager, websocket_chat_handler
from models.schemas import FinishReason, Photo


router = APIRouter(prefix="/chat", tags=["chat"])


class ChatMessageRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    text: str = ""


class ChatMediaRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    url: str = Field(min_length=1)
    media_type: str = "image/*"
    name: str = ""


class RatingRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    stars: Optional[int] = Field(default=None, ge=1, le=5)
    skipped: bool = False


class FinishRequest(BaseModel):
    conversation_id: str = Field(min_length=1)


def _orchestrator(request: Request):
    return request.app.state.orchestrator


@router.post("/message")
async def post_chat_message(payload: ChatMessageRequest, request: Request):
    result = await _orchestrator(request).handle_user_text(payload.conversation_id, payload.text)
    return result.model_dump(mode="json")


@router.post("/media")
async def post_chat_media(payload: ChatMediaRequest, request: Request):
    photo = Photo(url=payload.url, media_type=payload.media_type, name=payload.name)
    result = await _orchestrator(request).handle_user_media(payload.conversation_id, photo)
    return result.model_dump(mode="json")


@router.post("/rating")
async def post_rating(payload: RatingRequest, request: Request):
    if payload.stars is None and not payload.skipped:
        raise HTTPException(status_code=422, detail="stars_or_skipped_required")
    result = await _orchestrator(request).submit_rating(payload.conversation_id, payload.stars, skipped=payload.skipped)
    return result.model_dump(mode="json")


@router.post("/finish")
async def post_finish(payload: FinishRequest, request: Request):
    record = await _orchestrator(request).finish(payload.conversation_id, FinishReason.USER)
    return {"ok": True, "finished": record is not None}


@router.get("/session/{conversation_id}")
async def get_session(conversation_id: str, request: Request):
    session = await _orchestrator(request).sessions.find(conversation_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    return session.model_dump(mode="json")


@router.get("/transcript/{conversation_id}")
async def get_transcript(conversation_id: str, request: Request):
    messages = _orchestrator(request).persistence.transcript(conversation_id)
    return {"conversation_id": conversation_id, "messages": messages}


@router.websocket("/ws/{conversation_id}")
async def chat_ws(websocket: WebSocket, conversation_id: str):
    app = websocket.app
    manager: WebChatConnectionManager = app.state.web_chat_manager
    orchestrator = app.state.orchestrator
    await websocket_chat_handler(websocket, orchestrator=orchestrator, manager=manager, conversation_id=conversation_id)
