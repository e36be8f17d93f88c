from __future__ import annotations

import asyncio

from agents import replies
from agents.ai_assist import AIAssistController
from agents.dialogue_engine import DialogueStateMachine
from agents.intent_resolver import HybridIntentResolver
from agents.llm_runtime import LLMRuntime
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionRepository
from models.schemas import Currency, Listing, PropertyOperation, Step
from tasks.timers import ManualTimerService
from tools.listing_tools import MockListingProvider


def _engine(provider):
    timers = ManualTimerService()
    sessions = SessionRepository(path="")
    audit = AuditLogger(path="")
    llm = LLMRuntime(provider="none")
    resolver = HybridIntentResolver(llm=llm, clock=timers.now, audit_logger=audit)
    engine = DialogueStateMachine(
        sessions, resolver, AIAssistController(timers, sessions), listing_provider=provider, llm=llm, audit_logger=audit
    )
    return engine, sessions


async def _walk(engine, answers):
    result = None
    for text in answers:
        result = await engine.handle_text("s1", text)
    return result


RENT_CENTRO = ["quiero alquilar", "depto", "1", "200000", "Centro", "2", "1", "no", "balcón"]


def test_zone_retry_then_no_results():
    async def _run():
        provider = MockListingProvider(listings=[])
        engine, sessions = _engine(provider)
        result = await _walk(engine, RENT_CENTRO)

        assert len(provider.queries) == 2
        assert provider.queries[0].zone == "Centro"
        assert provider.queries[1].zone is None
        assert provider.queries[0].price_band() == (170000.0, 230000.0)
        assert result.step == Step.SEARCH_HANDOFF
        assert result.cards == []
        assert any("probé también sin filtrar por zona" in r for r in result.replies)
        assert result.replies[-1] == replies.ADVISOR_QUESTION
        session = await sessions.find("s1")
        assert session.data.zone_relaxed is True

    asyncio.run(_run())


def test_zone_retry_finds_listings_elsewhere():
    async def _run():
        listing = Listing(
            id="X-1",
            title="Depto 2 amb. – Oeste",
            price=205000,
            currency=Currency.ARS,
            zone="Oeste",
            property_type="depto",
            operation=PropertyOperation.RENT,
        )
        provider = MockListingProvider(listings=[listing])
        engine, _sessions = _engine(provider)
        result = await _walk(engine, RENT_CENTRO)
        assert len(provider.queries) == 2
        assert [c.id for c in result.cards] == ["X-1"]
        assert any("te muestro otras zonas" in r for r in result.replies)

    asyncio.run(_run())


def test_seeded_catalogue_match_in_zone_and_handoff():
    async def _run():
        provider = MockListingProvider()
        engine, _sessions = _engine(provider)
        result = await _walk(engine, RENT_CENTRO)
        assert len(provider.queries) == 1
        assert [c.id for c in result.cards] == ["P-101"]

        done = await engine.handle_text("s1", "sí")
        assert done.escalation.property_form["zone"] == "Centro"
        assert done.escalation.property_form["results"] == ["P-101"]
        assert done.escalation.topic() == "🏠 Alquiler depto"

    asyncio.run(_run())


def test_budget_hint_is_used_when_typed_parse_fails():
    async def _run():
        engine, sessions = _engine(MockListingProvider())
        await _walk(engine, ["quiero alquilar", "casa", "pesos"])
        result = await engine.handle_text("s1", "unos 250 mil")
        assert result.step == Step.SEARCH_ZONE
        assert result.replies[0] == "💰 Tomé tu presupuesto: $ 250.000,00"
        session = await sessions.find("s1")
        assert session.data.budget == 250000.0

    asyncio.run(_run())


def test_garage_answer_must_be_yes_or_no():
    async def _run():
        engine, _sessions = _engine(MockListingProvider())
        await _walk(engine, RENT_CENTRO[:7])
        result = await engine.handle_text("s1", "tal vez")
        assert result.replies == [replies.YES_NO_PROMPT]
        assert result.step == Step.SEARCH_GARAGE

    asyncio.run(_run())
