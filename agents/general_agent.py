from __future__ import annotations

from agents import replies
from agents.ai_assist import AIAssistController, is_exit_word
from agents.base import BaseFlowAgent, FlowTurn
from agents.llm_runtime import LLMRuntime
from compliance.audit_logger import AuditLogger
from models.schemas import Session, Step


class GeneralAgent(BaseFlowAgent):
    """General questions: canned answers first, then the timed AI-assist mode."""

    steps = frozenset({Step.GENERAL_MENU, Step.GENERAL_AI})

    def __init__(self, llm: LLMRuntime, ai: AIAssistController, audit_logger: AuditLogger | None = None) -> None:
        super().__init__(name="general_agent", audit_logger=audit_logger)
        self.llm = llm
        self.ai = ai

    def start(self, session: Session, turn: FlowTurn) -> None:
        session.step = Step.GENERAL_MENU
        turn.say(replies.GENERAL_PROMPT)

    async def handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        if not text.strip():
            turn.say(replies.GENERAL_PROMPT)
            return
        if session.step == Step.GENERAL_MENU:
            self.ai.enter(session)
            self.build_decision_log(session.conversation_id, "ai_assist_entered", "no quick answer or rule match", Step.GENERAL_MENU)
            turn.say(await self._answer(session, text), replies.AI_ENTERED)
            return
        if is_exit_word(text):
            self.ai.exit(session)
            turn.say(replies.AI_EXITED, replies.GENERAL_PROMPT)
            return
        if not self.ai.touch(session):
            self.ai.enter(session)
        turn.say(await self._answer(session, text))

    async def _answer(self, session: Session, text: str) -> str:
        return await self.llm.answer_question(text, session.history, Step.GENERAL_AI.value)
