from __future__ import annotations

import asyncio
from typing import List, Tuple

import pytest

from agents import replies
from agents.llm_runtime import LLMRuntime
from agents.orchestrator import ConversationOrchestrator
from channels.delivery import DeliveryChannel
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionRepository
from models.schemas import AgentIdentity, MessageAuthor, OutboundMessage, PendingQueueEntry, Step
from tasks.persistence import PersistenceSink
from tasks.timers import ManualTimerService
from tools.analytics_tools import AnalyticsTools
from tools.listing_tools import MockListingProvider
from tools.ticket_tools import TicketStore


class RecordingChannel(DeliveryChannel):
    def __init__(self) -> None:
        self.user: List[Tuple[str, OutboundMessage]] = []
        self.agent: List[Tuple[str, str, OutboundMessage]] = []
        self.queues: List[List[PendingQueueEntry]] = []

    async def send_to_user(self, conversation_id, message):
        self.user.append((conversation_id, message))

    async def send_to_agent(self, agent_channel, conversation_id, message):
        self.agent.append((agent_channel, conversation_id, message))

    async def publish_queue(self, entries):
        self.queues.append(list(entries))

    def texts(self, conversation_id: str) -> List[str]:
        return [m.text for cid, m in self.user if cid == conversation_id]


class CountingLLM(LLMRuntime):
    def __init__(self) -> None:
        super().__init__(provider="none")
        self.calls = 0

    async def classify_intent(self, text, history=(), step="any"):
        self.calls += 1
        return self.default_classification()

    async def answer_question(self, text, history=(), step="any"):
        self.calls += 1
        return "Respuesta libre"


def _build():
    timers = ManualTimerService()
    channel = RecordingChannel()
    store = TicketStore(path="")
    llm = CountingLLM()
    orchestrator = ConversationOrchestrator(
        llm=llm,
        sessions=SessionRepository(path=""),
        timers=timers,
        delivery=channel,
        persistence=PersistenceSink(store=store),
        analytics_tools=AnalyticsTools(path=""),
        audit_logger=AuditLogger(path=""),
        listing_provider=MockListingProvider(),
    )
    return orchestrator, channel, store, timers, llm


def test_replies_are_delivered_in_order_and_transcribed():
    async def _run():
        orchestrator, channel, store, _timers, _llm = _build()
        result = await orchestrator.handle_user_text("c1", "hola")
        assert channel.texts("c1") == result.replies == [replies.main_menu()]
        assert [b.value for _cid, m in channel.user for b in m.buttons] == ["1", "2", "3"]
        transcript = store.messages_for("c1")
        assert [row["who"] for row in transcript] == ["user", "bot"]

    asyncio.run(_run())


def test_escalation_is_enqueued_once_with_notice():
    async def _run():
        orchestrator, channel, _store, _timers, _llm = _build()
        first = await orchestrator.handle_user_text("c1", "operador")
        assert first.enqueued is True
        assert channel.texts("c1") == [replies.OPERATOR_HANDOFF, replies.QUEUED_NOTICE]
        second = await orchestrator.handle_user_text("c1", "operador")
        assert second.enqueued is False
        assert len(orchestrator.handoff.queue_snapshot()) == 1
        events = await orchestrator.analytics_tools.events("handoff_enqueued")
        assert len(events) == 1

    asyncio.run(_run())


def test_human_mode_suppresses_bot_and_relays_both_ways():
    async def _run():
        orchestrator, channel, _store, _timers, llm = _build()
        await orchestrator.handle_user_text("c1", "operador")
        await orchestrator.assign("c1", AgentIdentity(agent_id="ag-1", name="Ana"), "ch-1")
        assert channel.texts("c1")[-1] == "👤 Ana tomó tu caso."

        before = len(channel.user)
        result = await orchestrator.handle_user_text("c1", "se rompió la canilla")
        assert result.human_mode is True
        assert result.replies == []
        assert len(channel.user) == before
        assert channel.agent[-1][0] == "ch-1"
        assert channel.agent[-1][2].text == "se rompió la canilla"
        assert llm.calls == 0

        assert await orchestrator.agent_message("c1", "Hola, soy Ana") is True
        last = channel.user[-1][1]
        assert last.author == MessageAuthor.AGENT
        assert last.text == "Hola, soy Ana"

    asyncio.run(_run())


def test_finish_sends_notice_rating_request_and_resets():
    async def _run():
        orchestrator, channel, store, _timers, _llm = _build()
        await orchestrator.handle_user_text("c1", "operador")
        await orchestrator.assign("c1", AgentIdentity(agent_id="ag-1", name="Ana"), "ch-1")

        record = await orchestrator.finish("c1", "agent")
        assert record is not None
        kinds = [m.kind for _cid, m in channel.user[-2:]]
        assert kinds == ["text", "rate_request"]
        assert channel.user[-2][1].text == replies.FINISH_NOTICES["agent"]
        assert store.tickets_for("c1")[0]["status"] == "CLOSED"
        assert not orchestrator.handoff.is_human("c1")
        assert (await orchestrator.sessions.find("c1")).step == Step.START
        assert await orchestrator.finish("c1", "agent") is None

    asyncio.run(_run())


def test_rating_moves_session_to_follow_up():
    async def _run():
        orchestrator, channel, store, _timers, _llm = _build()
        result = await orchestrator.submit_rating("c1", 5)
        assert result.replies == [replies.RATE_THANKS, replies.RATE_FOLLOWUP]
        assert result.step == Step.RATE_FOLLOWUP
        assert store.ratings_for("c1")[0]["stars"] == 5

        follow = await orchestrator.handle_user_text("c1", "no")
        assert follow.replies == [replies.RATE_FOLLOWUP_NO]

    asyncio.run(_run())


def test_ai_assist_expiry_notice_is_delivered_once():
    async def _run():
        orchestrator, channel, _store, timers, _llm = _build()
        await orchestrator.handle_user_text("c1", "3")
        entered = await orchestrator.handle_user_text("c1", "que barrios recomiendan para vivir")
        assert entered.step == Step.GENERAL_AI
        assert entered.replies[-1] == replies.AI_ENTERED

        await timers.advance(100)
        await orchestrator.handle_user_text("c1", "y en el centro?")
        await timers.advance(100)
        assert replies.AI_EXPIRED not in channel.texts("c1")

        await timers.advance(100)
        await timers.advance(1000)
        assert channel.texts("c1").count(replies.AI_EXPIRED) == 1
        assert (await orchestrator.sessions.find("c1")).step == Step.GENERAL_MENU

    asyncio.run(_run())


def test_persistence_failure_does_not_block_delivery():
    class BrokenStore(TicketStore):
        def save_message(self, conversation_id, message):
            raise OSError("disk full")

    async def _run():
        orchestrator, channel, _store, _timers, _llm = _build()
        orchestrator.persistence = PersistenceSink(store=BrokenStore(path=""))
        result = await orchestrator.handle_user_text("c1", "hola")
        assert channel.texts("c1") == result.replies

    asyncio.run(_run())


def test_agent_logout_finishes_its_conversations():
    async def _run():
        orchestrator, channel, _store, _timers, _llm = _build()
        ana = AgentIdentity(agent_id="ag-1", name="Ana")
        for cid in ("c1", "c2"):
            await orchestrator.handle_user_text(cid, "operador")
            await orchestrator.assign(cid, ana, "ch-1")
        finished = await orchestrator.logout("ag-1")
        assert sorted(finished) == ["c1", "c2"]
        assert orchestrator.handoff.active_for_agent("ag-1") == []
        assert replies.FINISH_NOTICES["logout"] in channel.texts("c2")

    asyncio.run(_run())


class GatedLLM(LLMRuntime):
    """Classifier that parks one utterance until ``gate`` is set."""

    def __init__(self, parked: str) -> None:
        super().__init__(provider="none")
        self.parked = parked
        self.gate = asyncio.Event()
        self.log: List[Tuple[str, str]] = []

    async def classify_intent(self, text, history=(), step="any"):
        self.log.append(("start", text))
        if text == self.parked:
            await self.gate.wait()
        self.log.append(("end", text))
        return self.default_classification()

    async def answer_question(self, text, history=(), step="any"):
        return "Respuesta libre"


def test_events_are_serialised_per_conversation_only():
    async def _run():
        llm = GatedLLM(parked="qwerty lento")
        orchestrator = ConversationOrchestrator(
            llm=llm,
            sessions=SessionRepository(path=""),
            timers=ManualTimerService(),
            delivery=RecordingChannel(),
            persistence=PersistenceSink(store=TicketStore(path="")),
            analytics_tools=AnalyticsTools(path=""),
            audit_logger=AuditLogger(path=""),
            listing_provider=MockListingProvider(),
        )
        first = asyncio.create_task(orchestrator.handle_user_text("a", "qwerty lento"))
        await asyncio.sleep(0)
        second = asyncio.create_task(orchestrator.handle_user_text("a", "zxcv luego de eso"))

        await orchestrator.handle_user_text("b", "asdf otro tema")
        assert llm.log == [("start", "qwerty lento"), ("start", "asdf otro tema"), ("end", "asdf otro tema")]

        llm.gate.set()
        await asyncio.gather(first, second)
        assert llm.log[3:] == [("end", "qwerty lento"), ("start", "zxcv luego de eso"), ("end", "zxcv luego de eso")]
        assert orchestrator._locks == {}

    asyncio.run(_run())


def test_rating_without_stars_must_be_skipped():
    async def _run():
        orchestrator, _channel, store, _timers, _llm = _build()
        with pytest.raises(ValueError):
            await orchestrator.submit_rating("c1", None)
        assert store.ratings_for("c1") == []

        skipped = await orchestrator.submit_rating("c1", None, skipped=True)
        assert skipped.step == Step.RATE_FOLLOWUP
        assert store.ratings_for("c1")[0]["skipped"] is True

    asyncio.run(_run())


def test_unknown_finish_reason_is_rejected():
    async def _run():
        orchestrator, _channel, _store, _timers, _llm = _build()
        with pytest.raises(ValueError):
            await orchestrator.finish("c1", "bored")

    asyncio.run(_run())
