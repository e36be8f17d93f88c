from __future__ import annotations

import asyncio
from typing import List

from agents.intent_resolver import HybridIntentResolver
from agents.llm_runtime import CLARIFY_QUESTION, LLMRuntime
from compliance.audit_logger import AuditLogger
from models.schemas import IntentType, IssueCategory, NLUResult, ResolverTier, Step


class ScriptedLLM(LLMRuntime):
    def __init__(self, intents: List[IntentType] | None = None, answer: str = "Respuesta libre") -> None:
        super().__init__(provider="none")
        self.intents = list(intents or [])
        self.answer = answer
        self.classify_calls = 0
        self.answer_calls = 0

    async def classify_intent(self, text, history=(), step="any"):
        self.classify_calls += 1
        if self.intents:
            return NLUResult(intent=self.intents.pop(0), confidence=0.9)
        return self.default_classification()

    async def answer_question(self, text, history=(), step="any"):
        self.answer_calls += 1
        return self.answer


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_pattern_tier_match_never_reaches_later_tiers():
    async def _run():
        llm = ScriptedLLM()
        resolver = HybridIntentResolver(llm=llm, audit_logger=AuditLogger(path=""))
        resolution = await resolver.resolve("c1", "se rompió la canilla", [], Step.START)
        assert resolution.tier == ResolverTier.PATTERN
        assert resolution.intent.intent == IntentType.REPORT_ISSUE
        assert resolution.intent.slots.category == IssueCategory.PLUMBING.value
        assert llm.classify_calls == 0
        assert llm.answer_calls == 0

    asyncio.run(_run())


def test_heuristic_tier_catches_denser_phrasing():
    async def _run():
        llm = ScriptedLLM()
        resolver = HybridIntentResolver(llm=llm)
        resolution = await resolver.resolve("c1", "soy inquilino y tengo una consulta", [], Step.MAIN)
        assert resolution.tier == ResolverTier.HEURISTIC
        assert resolution.intent.intent == IntentType.TENANT_INFO
        assert llm.classify_calls == 0

    asyncio.run(_run())


def test_stamp_duty_question_is_not_taken_as_owner_intent():
    resolver = HybridIntentResolver(llm=ScriptedLLM())
    assert resolver.match_rules("el sellado lo paga el propietario?", Step.MAIN) is None


def test_budget_hint_only_counts_while_awaiting_budget():
    resolver = HybridIntentResolver(llm=ScriptedLLM())
    hinted = resolver.match_rules("tengo unos 250.000 pesos", Step.SEARCH_BUDGET)
    assert hinted.hint is not None
    assert hinted.hint.budget == 250000.0
    assert resolver.match_rules("tengo unos 250.000 pesos", Step.MAIN) is None


def test_classifier_unavailable_falls_back_to_other_with_question():
    async def _run():
        resolver = HybridIntentResolver(llm=LLMRuntime(provider="none"), streak_threshold=5)
        resolution = await resolver.resolve("c1", "tengo una duda con mi contrato", [], Step.MAIN)
        assert resolution.tier == ResolverTier.CLASSIFIER
        assert resolution.intent.intent == IntentType.OTHER
        assert resolution.intent.confidence == 0
        assert resolution.intent.follow_up_question == CLARIFY_QUESTION

    asyncio.run(_run())


def test_classifier_intent_resets_the_streak():
    async def _run():
        llm = ScriptedLLM([IntentType.OTHER, IntentType.PROPERTIES_BUY])
        resolver = HybridIntentResolver(llm=llm)
        await resolver.resolve("c1", "mmm no se bien", [], Step.MAIN)
        assert resolver.escalation_state("c1").streak == 1
        resolution = await resolver.resolve("c1", "algo con una casa en el centro", [], Step.MAIN)
        assert resolution.intent.intent == IntentType.PROPERTIES_BUY
        assert resolver.escalation_state("c1").streak == 0

    asyncio.run(_run())


def test_qa_escalation_after_streak_and_cooldown():
    async def _run():
        llm = ScriptedLLM()
        clock = Clock()
        resolver = HybridIntentResolver(llm=llm, clock=clock, streak_threshold=2, cooldown_seconds=15)

        first = await resolver.resolve("c1", "tengo una duda rara", [], Step.MAIN)
        assert first.tier == ResolverTier.CLASSIFIER
        second = await resolver.resolve("c1", "sigo con la duda", [], Step.MAIN)
        assert second.tier == ResolverTier.QA
        assert second.qa_answer == "Respuesta libre"
        state = resolver.escalation_state("c1")
        assert state.streak == 0
        assert state.last_escalation_at == 1000.0

        clock.now += 5
        await resolver.resolve("c1", "otra duda", [], Step.MAIN)
        blocked = await resolver.resolve("c1", "y otra mas", [], Step.MAIN)
        assert blocked.tier == ResolverTier.CLASSIFIER
        assert llm.answer_calls == 1

        clock.now += 15
        allowed = await resolver.resolve("c1", "una mas", [], Step.MAIN)
        assert allowed.tier == ResolverTier.QA
        assert llm.answer_calls == 2

    asyncio.run(_run())


def test_interrogative_other_escalates_immediately():
    async def _run():
        llm = ScriptedLLM()
        resolver = HybridIntentResolver(llm=llm, streak_threshold=3)
        resolution = await resolver.resolve("c1", "¿cuánto tarda la escritura?", [], Step.MAIN)
        assert resolution.tier == ResolverTier.QA
        assert llm.answer_calls == 1

    asyncio.run(_run())


def test_resolutions_are_written_to_the_audit_log(tmp_path):
    async def _run():
        audit = AuditLogger(path=str(tmp_path / "audit.jsonl"))
        resolver = HybridIntentResolver(llm=ScriptedLLM(), audit_logger=audit)
        await resolver.resolve("c9", "hola", [], Step.START)
        rows = audit.decisions_for("c9")
        assert len(rows) == 1
        assert rows[0]["action"] == "intent:greeting"
        assert rows[0]["step"] == "start"

    asyncio.run(_run())
