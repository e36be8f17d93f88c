from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Sequence

from agents import heuristic_layer, pattern_layer
from agents.llm_runtime import LLMRuntime
from agents.pattern_layer import PatternRule, evaluate
from agents.text_utils import is_interrogative
from compliance.audit_logger import AuditLogger
from models.schemas import (
    AgentDecisionLog,
    EscalationState,
    IntentHint,
    IntentType,
    NLUResult,
    Resolution,
    ResolverTier,
    Step,
)
from settings import SETTINGS

logger = logging.getLogger(__name__)


class HybridIntentResolver:
    """Pattern tier, then heuristic tier, then the remote classifier, then QA.

    First success wins and later tiers are never consulted. A budget hint from
    the pattern tier only counts while the conversation is waiting for a
    budget; anywhere else the cascade keeps going.
    """

    name = "intent_resolver"

    def __init__(
        self,
        llm: LLMRuntime | None = None,
        pattern_rules: Sequence[PatternRule] | None = None,
        heuristic_rules: Sequence[PatternRule] | None = None,
        clock: Callable[[], float] | None = None,
        streak_threshold: int | None = None,
        cooldown_seconds: float | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.llm = llm or LLMRuntime()
        self.pattern_rules = list(pattern_rules if pattern_rules is not None else pattern_layer.PATTERN_RULES)
        self.heuristic_rules = list(heuristic_rules if heuristic_rules is not None else heuristic_layer.HEURISTIC_RULES)
        self.clock = clock or time.time
        self.streak_threshold = streak_threshold or SETTINGS.qa_escalation_streak
        self.cooldown_seconds = SETTINGS.qa_escalation_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        self.audit_logger = audit_logger
        self._escalation: Dict[str, EscalationState] = {}

    def escalation_state(self, conversation_id: str) -> EscalationState:
        state = self._escalation.get(conversation_id)
        if state is None:
            state = EscalationState()
            self._escalation[conversation_id] = state
        return state

    def forget(self, conversation_id: str) -> None:
        self._escalation.pop(conversation_id, None)

    def match_rules(self, text: str, step: Step | None = None) -> Optional[Resolution]:
        """Run only the two local tiers."""
        hit = evaluate(self.pattern_rules, text)
        if hit is not None:
            name, match = hit
            if isinstance(match, IntentHint):
                if step == Step.SEARCH_BUDGET:
                    return Resolution(tier=ResolverTier.PATTERN, hint=match)
            else:
                logger.debug("intent_pattern_hit", extra={"rule": name, "intent": match.intent.value})
                return Resolution(tier=ResolverTier.PATTERN, intent=match)
        hit = evaluate(self.heuristic_rules, text)
        if hit is not None:
            name, match = hit
            if isinstance(match, NLUResult):
                logger.debug("intent_heuristic_hit", extra={"rule": name, "intent": match.intent.value})
                return Resolution(tier=ResolverTier.HEURISTIC, intent=match)
        return None

    async def resolve(
        self,
        conversation_id: str,
        text: str,
        history: Sequence[str] = (),
        step: Step | None = None,
    ) -> Optional[Resolution]:
        if not str(text or "").strip():
            return None
        state = self.escalation_state(conversation_id)
        resolution = self.match_rules(text, step)
        if resolution is not None:
            if resolution.intent is not None:
                state.streak = 0
            return self._record(conversation_id, resolution, step)

        step_name = step.value if step is not None else "any"
        nlu = await self.llm.classify_intent(text, history, step_name)
        if nlu.intent != IntentType.OTHER:
            state.streak = 0
            return self._record(conversation_id, Resolution(tier=ResolverTier.CLASSIFIER, intent=nlu), step)

        state.streak += 1
        if self._may_escalate(state, text):
            answer = await self.llm.answer_question(text, history, step_name)
            state.streak = 0
            state.last_escalation_at = self.clock()
            logger.info("intent_qa_escalation", extra={"conversation_id": conversation_id, "step": step_name})
            return self._record(conversation_id, Resolution(tier=ResolverTier.QA, qa_answer=answer), step)
        return self._record(conversation_id, Resolution(tier=ResolverTier.CLASSIFIER, intent=nlu), step)

    def _may_escalate(self, state: EscalationState, text: str) -> bool:
        if state.streak < self.streak_threshold and not is_interrogative(text):
            return False
        if state.last_escalation_at is None:
            return True
        return self.clock() - state.last_escalation_at >= self.cooldown_seconds

    def _record(self, conversation_id: str, resolution: Resolution, step: Step | None) -> Resolution:
        if self.audit_logger is None:
            return resolution
        if resolution.intent is not None:
            action = f"intent:{resolution.intent.intent.value}"
            reasoning = f"tier={resolution.tier.value} confidence={resolution.intent.confidence:.2f}"
        elif resolution.hint is not None:
            action = "hint:budget"
            reasoning = f"tier={resolution.tier.value} budget={resolution.hint.budget}"
        else:
            action = "qa_answer"
            reasoning = f"tier={resolution.tier.value} streak_or_question"
        self.audit_logger.log_decision(
            AgentDecisionLog(
                conversation_id=conversation_id,
                agent=self.name,
                action=action,
                reasoning=reasoning,
                step=step.value if step is not None else None,
            )
        )
        return resolution
