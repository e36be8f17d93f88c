from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agents.orchestrator import ConversationOrchestrator
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.rate_limiting import RateLimitMiddleware
from api.routers import chat, handoff
from channels.web_chat import WebChatConnectionManager
from settings import SETTINGS
from tasks.inactivity_sweep import InactivitySweeper

logger = logging.getLogger(__name__)


def create_app(orchestrator: ConversationOrchestrator | None = None) -> FastAPI:
    if orchestrator is None:
        manager = WebChatConnectionManager()
        orchestrator = ConversationOrchestrator(delivery=manager)
    elif isinstance(orchestrator.delivery, WebChatConnectionManager):
        manager = orchestrator.delivery
    else:
        manager = WebChatConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = InactivitySweeper(app.state.orchestrator)
        task = asyncio.create_task(sweeper.run_forever())
        logger.info("inactivity_sweeper_started", extra={"interval_seconds": sweeper.interval_seconds})
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="Service Desk Conversation Engine", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.state.orchestrator = orchestrator
    app.state.web_chat_manager = manager

    api_prefix = "/api/v1"
    app.include_router(chat.router, prefix=api_prefix)
    app.include_router(handoff.router, prefix=api_prefix)

    @app.get("/health")
    async def health():
        orch: ConversationOrchestrator = app.state.orchestrator
        return {
            "ok": True,
            "service": "service-desk-engine",
            "company": SETTINGS.company_name,
            "llm_provider": orch.llm.provider,
            "llm_model": orch.llm.model,
            "llm_runtime_available": orch.llm.available(),
            "listing_provider": SETTINGS.listing_provider,
            "queue_size": len(orch.handoff.queue_snapshot()),
        }

    return app


app = create_app()
