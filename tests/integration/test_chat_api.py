from __future__ import annotations

from fastapi.testclient import TestClient

from agents import replies
from agents.llm_runtime import LLMRuntime
from agents.orchestrator import ConversationOrchestrator
from api.main import create_app
from channels.web_chat import WebChatConnectionManager
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionRepository
from tasks.persistence import PersistenceSink
from tasks.timers import ManualTimerService
from tools.analytics_tools import AnalyticsTools
from tools.ticket_tools import TicketStore


def _client() -> TestClient:
    orchestrator = ConversationOrchestrator(
        llm=LLMRuntime(provider="none"),
        sessions=SessionRepository(path=""),
        timers=ManualTimerService(),
        delivery=WebChatConnectionManager(),
        persistence=PersistenceSink(store=TicketStore(path="")),
        analytics_tools=AnalyticsTools(path=""),
        audit_logger=AuditLogger(path=""),
    )
    return TestClient(create_app(orchestrator))


def test_chat_message_endpoint_end_to_end():
    client = _client()
    resp = client.post("/api/v1/chat/message", json={"conversation_id": "api-c1", "text": "hola"})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["conversation_id"] == "api-c1"
    assert data["step"] == "main"
    assert data["replies"] == [replies.main_menu()]
    assert data["human_mode"] is False

    session = client.get("/api/v1/chat/session/api-c1")
    assert session.status_code == 200
    assert session.json()["step"] == "main"

    transcript = client.get("/api/v1/chat/transcript/api-c1").json()
    assert [m["who"] for m in transcript["messages"]] == ["user", "bot"]


def test_unknown_session_is_404():
    client = _client()
    resp = client.get("/api/v1/chat/session/missing")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "session_not_found"


def test_rating_requires_stars_or_skip():
    client = _client()
    assert client.post("/api/v1/chat/rating", json={"conversation_id": "r1"}).status_code == 422
    assert client.post("/api/v1/chat/rating", json={"conversation_id": "r1", "stars": 9}).status_code == 422

    resp = client.post("/api/v1/chat/rating", json={"conversation_id": "r1", "stars": 4})
    assert resp.status_code == 200
    assert resp.json()["replies"] == [replies.RATE_THANKS, replies.RATE_FOLLOWUP]


def test_health_endpoint():
    client = _client()
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "service-desk-engine"
    assert data["llm_provider"] == "none"
    assert data["llm_runtime_available"] is False
    assert data["queue_size"] == 0
    assert "x-process-time-ms" in resp.headers


def test_websocket_chat_delivers_replies():
    client = _client()
    with client.websocket_connect("/api/v1/chat/ws/ws-1") as ws:
        assert ws.receive_json() == {"type": "connected", "conversation_id": "ws-1"}
        ws.send_json({"type": "message", "text": "hola"})
        event = ws.receive_json()
        assert event["type"] == "text"
        assert event["message"]["text"] == replies.main_menu()
        assert event["message"]["buttons"]
