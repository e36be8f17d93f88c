from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List

from settings import SETTINGS

if TYPE_CHECKING:
    from agents.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


class InactivitySweeper:
    """Periodically closes human handoffs idle past the inactivity window."""

    def __init__(self, orchestrator: "ConversationOrchestrator", interval_seconds: float | None = None) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = float(
            SETTINGS.handoff_sweep_interval_seconds if interval_seconds is None else interval_seconds
        )

    async def run_once(self) -> List[str]:
        return await self.orchestrator.sweep_inactive()

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("inactivity_sweep_failed", extra={"error": repr(exc)})
