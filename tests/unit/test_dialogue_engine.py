from __future__ import annotations

import asyncio

from agents import replies
from agents.ai_assist import AIAssistController
from agents.dialogue_engine import DialogueStateMachine
from agents.intent_resolver import HybridIntentResolver
from agents.llm_runtime import CLARIFY_QUESTION, LLMRuntime
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionRepository
from models.schemas import (
    Disambiguation,
    IssueCategory,
    IssueReportData,
    Photo,
    PropertyOperation,
    PropertySearchData,
    SaleData,
    Step,
)
from tasks.timers import ManualTimerService
from tools.listing_tools import MockListingProvider


class CountingLLM(LLMRuntime):
    def __init__(self) -> None:
        super().__init__(provider="none")
        self.classify_calls = 0

    async def classify_intent(self, text, history=(), step="any"):
        self.classify_calls += 1
        return self.default_classification()

    async def answer_question(self, text, history=(), step="any"):
        return "Respuesta libre"


def _engine():
    timers = ManualTimerService()
    sessions = SessionRepository(path="")
    audit = AuditLogger(path="")
    llm = CountingLLM()
    resolver = HybridIntentResolver(llm=llm, clock=timers.now, audit_logger=audit)
    ai = AIAssistController(timers, sessions)
    engine = DialogueStateMachine(
        sessions, resolver, ai, listing_provider=MockListingProvider(), llm=llm, audit_logger=audit
    )
    return engine, sessions, llm


def test_greeting_then_numeric_menus():
    async def _run():
        engine, _sessions, llm = _engine()
        greeting = await engine.handle_text("c1", "hola")
        assert greeting.step == Step.MAIN
        assert greeting.replies == [replies.main_menu()]
        assert [b.value for b in greeting.buttons] == ["1", "2", "3"]

        rentals = await engine.handle_text("c1", "1")
        assert rentals.step == Step.RENTALS_MENU
        index = await engine.handle_text("c1", "opción 2")
        assert index.step == Step.INDEX_MENU
        assert index.replies == [replies.index_menu()]
        assert llm.classify_calls == 0

    asyncio.run(_run())


def test_reset_word_mid_flow_returns_to_main_menu():
    async def _run():
        engine, sessions, _llm = _engine()
        await engine.handle_text("c1", "se rompió la canilla")
        result = await engine.handle_text("c1", "menu")
        assert result.step == Step.MAIN
        assert result.replies == [replies.main_menu()]
        session = await sessions.find("c1")
        assert not isinstance(session.data, IssueReportData)

    asyncio.run(_run())


def test_operator_word_escalates_outside_incident_steps():
    async def _run():
        engine, _sessions, _llm = _engine()
        result = await engine.handle_text("c1", "operador")
        assert result.replies == [replies.OPERATOR_HANDOFF]
        assert result.escalation is not None
        assert result.escalation.reason == "Pedido de operador"

    asyncio.run(_run())


def test_operator_word_inside_incident_asks_for_photos_first():
    async def _run():
        engine, _sessions, _llm = _engine()
        await engine.handle_text("c1", "se rompió la canilla")
        result = await engine.handle_text("c1", "operador")
        assert result.step == Step.REPORT_PHOTOS_ASK
        assert result.replies == [replies.OPERATOR_DEFERRED]
        assert result.escalation is None

    asyncio.run(_run())


def test_repair_phrase_apologises_and_shows_menu():
    async def _run():
        engine, _sessions, _llm = _engine()
        await engine.handle_text("c1", "quiero alquilar")
        result = await engine.handle_text("c1", "no me entendiste")
        assert result.step == Step.MAIN
        assert result.replies == [replies.REPAIR_APOLOGY, replies.main_menu()]

    asyncio.run(_run())


def test_empty_text_asks_for_more_detail():
    async def _run():
        engine, _sessions, _llm = _engine()
        result = await engine.handle_text("c1", "   ")
        assert result.replies == [replies.MORE_DETAIL]

    asyncio.run(_run())


def test_quick_answer_short_circuits_the_resolver():
    async def _run():
        engine, _sessions, llm = _engine()
        result = await engine.handle_text("c1", "¿cuál es el horario de atención?")
        assert result.replies == [replies.office_info()]
        assert llm.classify_calls == 0

    asyncio.run(_run())


def test_rent_interest_is_not_taken_by_the_faq():
    async def _run():
        engine, sessions, _llm = _engine()
        result = await engine.handle_text("c1", "me interesa alquilar")
        assert result.step == Step.SEARCH_TYPE
        session = await sessions.find("c1")
        assert isinstance(session.data, PropertySearchData)
        assert session.data.operation == PropertyOperation.RENT

    asyncio.run(_run())


def test_unclassified_text_asks_follow_up_then_more_detail():
    async def _run():
        engine, sessions, llm = _engine()
        first = await engine.handle_text("c1", "tengo una consulta")
        assert first.replies == [CLARIFY_QUESTION]
        session = await sessions.find("c1")
        assert session.data.awaiting == Disambiguation.CLARIFY_GENERIC
        assert llm.classify_calls == 1

        second = await engine.handle_text("c1", "eso")
        assert second.replies == [replies.MORE_DETAIL]

    asyncio.run(_run())


def test_rating_follow_up_answers():
    async def _run():
        engine, sessions, _llm = _engine()
        session = await sessions.get("c1")
        session.step = Step.RATE_FOLLOWUP
        yes = await engine.handle_text("c1", "sí")
        assert yes.step == Step.MAIN

        session.step = Step.RATE_FOLLOWUP
        no = await engine.handle_text("c1", "no")
        assert no.replies == [replies.RATE_FOLLOWUP_NO]
        assert no.step == Step.START

    asyncio.run(_run())


def test_sale_intake_collects_fields_and_declines_appraisal():
    async def _run():
        engine, sessions, _llm = _engine()
        start = await engine.handle_text("c1", "quiero vender mi casa")
        assert start.step == Step.SALE_TYPE
        await engine.handle_text("c1", "casa")
        await engine.handle_text("c1", "Villa Mitre")
        await engine.handle_text("c1", "muy bueno")
        session = await sessions.find("c1")
        assert isinstance(session.data, SaleData)
        assert session.data.condition == "Muy bueno"

        summary = await engine.handle_text("c1", "listo")
        assert summary.step == Step.SALE_HANDOFF
        assert "Villa Mitre" in summary.replies[0]
        assert summary.replies[0].endswith(replies.APPRAISAL_QUESTION)

        declined = await engine.handle_text("c1", "no")
        assert declined.replies == [replies.BACK_TO_MENU]
        assert declined.escalation is None
        assert declined.step == Step.START

    asyncio.run(_run())


def test_photo_outside_incident_is_acknowledged():
    async def _run():
        engine, _sessions, _llm = _engine()
        result = await engine.handle_media("c1", Photo(url="https://cdn.example/p.jpg"))
        assert result.replies == [replies.PHOTO_THANKS]

    asyncio.run(_run())


def test_incident_category_menu_and_reinference_from_description():
    async def _run():
        engine, sessions, _llm = _engine()
        await engine.handle_text("c1", "1")
        await engine.handle_text("c1", "1")
        category = await engine.handle_text("c1", "5")
        assert category.step == Step.REPORT_ADDRESS
        await engine.handle_text("c1", "Alsina 120")
        await engine.handle_text("c1", "pierde agua el termotanque del baño")
        session = await sessions.find("c1")
        assert session.data.category == IssueCategory.PLUMBING

    asyncio.run(_run())


def test_menu_choice_clears_pending_clarification():
    async def _run():
        engine, sessions, _llm = _engine()
        await engine.handle_text("c1", "hola")
        unclear = await engine.handle_text("c1", "blablabla xyz")
        assert unclear.replies == [CLARIFY_QUESTION]

        rentals = await engine.handle_text("c1", "1")
        assert rentals.step == Step.RENTALS_MENU
        assert (await sessions.find("c1")).data.awaiting is None

        report = await engine.handle_text("c1", "canilla rota")
        assert report.step == Step.REPORT_ADDRESS
        assert report.replies == [replies.ADDRESS_PROMPT]

    asyncio.run(_run())


def test_reset_forgets_escalation_streak():
    async def _run():
        engine, _sessions, _llm = _engine()
        await engine.handle_text("c1", "hola")
        await engine.handle_text("c1", "blablabla xyz tres")
        assert "c1" in engine.resolver._escalation

        await engine.reset("c1")
        assert "c1" not in engine.resolver._escalation

    asyncio.run(_run())
