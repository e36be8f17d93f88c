from __future__ import annotations

import logging
import re

from agents import replies
from agents.ai_assist import AIAssistController
from agents.base import FlowTurn
from agents.general_agent import GeneralAgent
from agents.index_agent import IndexUpdateAgent
from agents.intent_resolver import HybridIntentResolver
from agents.issue_report_agent import IssueReportAgent
from agents.llm_runtime import LLMRuntime
from agents.property_sale_agent import PropertySaleAgent
from agents.property_search_agent import PropertySearchAgent
from agents.text_utils import is_repair, normalize, parse_yes_no, pick_menu_number
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionRepository
from models.schemas import (
    NLU_STEPS,
    REPORT_STEPS,
    Disambiguation,
    EscalationPayload,
    IntentType,
    NavigationData,
    NLUResult,
    Photo,
    PropertyOperation,
    Resolution,
    Session,
    Step,
    TurnResult,
)
from tools.listing_tools import ListingProvider

logger = logging.getLogger(__name__)

RESET_WORDS = {"menu", "inicio", "start", "/start"}
OPERATOR_WORDS = {"operador", "humano", "agente", "asesor"}

_SEARCH_INTENTS = {
    IntentType.PROPERTIES_RENT: PropertyOperation.RENT,
    IntentType.PROPERTIES_BUY: PropertyOperation.BUY,
    IntentType.PROPERTIES_TEMP: PropertyOperation.TEMPORARY,
}
_PROPERTIES_MENU = {1: PropertyOperation.RENT, 2: PropertyOperation.BUY, 3: PropertyOperation.TEMPORARY}


class DialogueStateMachine:
    """Step-indexed flow logic for one conversation turn at a time.

    Callers serialise turns per conversation; the machine itself keeps no
    per-turn state outside the session it loads and saves.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        resolver: HybridIntentResolver,
        ai: AIAssistController,
        listing_provider: ListingProvider | None = None,
        llm: LLMRuntime | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.sessions = sessions
        self.resolver = resolver
        self.ai = ai
        self.issue = IssueReportAgent(audit_logger=audit_logger)
        self.index = IndexUpdateAgent(audit_logger=audit_logger)
        self.search = PropertySearchAgent(provider=listing_provider, audit_logger=audit_logger)
        self.sale = PropertySaleAgent(audit_logger=audit_logger)
        self.general = GeneralAgent(llm=llm or resolver.llm, ai=ai, audit_logger=audit_logger)
        self.specialists = [self.issue, self.index, self.search, self.sale, self.general]

    async def handle_text(self, conversation_id: str, text: str) -> TurnResult:
        session = await self.sessions.get(conversation_id)
        turn = FlowTurn()
        await self._handle(session, str(text or ""), turn)
        return await self._finish_turn(session, turn)

    async def handle_media(self, conversation_id: str, photo: Photo) -> TurnResult:
        session = await self.sessions.get(conversation_id)
        turn = FlowTurn()
        if not self.issue.add_photo(session, photo, turn):
            turn.say(replies.PHOTO_THANKS)
        return await self._finish_turn(session, turn)

    async def reset(self, conversation_id: str) -> Session:
        self.ai.cancel(conversation_id)
        self.resolver.forget(conversation_id)
        return await self.sessions.reset(conversation_id)

    async def _finish_turn(self, session: Session, turn: FlowTurn) -> TurnResult:
        if turn.reset:
            await self.reset(session.conversation_id)
        else:
            await self.sessions.save(session)
        if not turn.replies:
            logger.warning("dialogue_turn_without_reply", extra={"conversation_id": session.conversation_id, "step": session.step.value})
            turn.say(replies.NOT_UNDERSTOOD)
        return TurnResult(
            conversation_id=session.conversation_id,
            step=session.step,
            replies=list(turn.replies),
            buttons=replies.buttons_for_step(session.step),
            cards=list(turn.cards),
            escalation=turn.escalation,
        )

    async def _handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        body = text.strip()
        lowered = normalize(body)
        if body:
            self.sessions.push_history(session, body)

        if lowered in RESET_WORDS:
            await self.reset(session.conversation_id)
            self._main_menu(session, turn)
            return
        if lowered in OPERATOR_WORDS:
            if session.step in REPORT_STEPS:
                self.issue.defer_operator(session, turn)
                return
            turn.say(replies.OPERATOR_HANDOFF)
            turn.escalate(EscalationPayload(reason="Pedido de operador"))
            return
        if is_repair(body):
            self.ai.cancel(session.conversation_id)
            session.data = NavigationData()
            turn.say(replies.REPAIR_APOLOGY)
            self._main_menu(session, turn)
            return
        if not body:
            turn.say(replies.MORE_DETAIL)
            return

        if session.step == Step.RATE_FOLLOWUP:
            answer = parse_yes_no(body)
            if answer == "yes":
                self._main_menu(session, turn)
                return
            if answer == "no":
                turn.say(replies.RATE_FOLLOWUP_NO)
                turn.reset = True
                return
            session.step = Step.MAIN

        if self._numeric_menu(session, body, turn):
            session.data.awaiting = None
            return
        if self._pending_disambiguation(session, lowered, turn):
            return

        if session.step in NLU_STEPS or session.step == Step.GENERAL_AI:
            quick = replies.quick_answer(body)
            if quick:
                self.ai.touch(session)
                turn.say(quick)
                return

        if session.step == Step.GENERAL_MENU:
            resolution = self.resolver.match_rules(body, session.step)
            if resolution is not None and resolution.intent is not None:
                await self.handle_intent(session, resolution.intent, turn)
                return
        elif session.step in NLU_STEPS:
            resolution = await self.resolver.resolve(session.conversation_id, body, list(session.history), session.step)
            if resolution is not None:
                await self._apply_resolution(session, resolution, body, turn)
                return

        await self.dispatch(session, body, turn)

    async def dispatch(self, session: Session, body: str, turn: FlowTurn) -> None:
        for agent in self.specialists:
            if agent.handles(session.step):
                await agent.handle(session, body, turn)
                return
        if session.step in (Step.START, Step.MAIN):
            self._main_menu(session, turn)
        elif session.step == Step.RENTALS_MENU:
            turn.say(replies.rentals_menu())
        elif session.step == Step.PROPERTIES_MENU:
            turn.say(replies.PROPERTIES_PROMPT)
        else:
            await self.reset(session.conversation_id)
            self._main_menu(session, turn)

    async def handle_intent(self, session: Session, nlu: NLUResult, turn: FlowTurn) -> None:
        intent = nlu.intent
        if intent != IntentType.OTHER:
            session.data.awaiting = None
        if intent == IntentType.GREETING:
            self._main_menu(session, turn)
        elif intent == IntentType.THANKS:
            turn.say(replies.THANKS_REPLY)
        elif intent == IntentType.GOODBYE:
            turn.say(replies.GOODBYE_REPLY)
        elif intent == IntentType.OPERATOR:
            turn.say(replies.OPERATOR_HANDOFF)
            turn.escalate(EscalationPayload(reason="Pedido de operador (NLU)"))
        elif intent in (IntentType.TENANT_INFO, IntentType.OWNER_INFO):
            session.data = NavigationData()
            session.step = Step.RENTALS_MENU
            turn.say(replies.TENANT_INFO if intent == IntentType.TENANT_INFO else replies.OWNER_INFO, replies.rentals_menu())
        elif intent == IntentType.REPORT_ISSUE:
            self.issue.start(session, turn, nlu.slots.category, session.history)
        elif intent == IntentType.INDEX_UPDATE:
            self.index.start(session, turn, nlu.slots.index)
        elif intent in _SEARCH_INTENTS:
            self.search.start(session, turn, _SEARCH_INTENTS[intent])
        elif intent == IntentType.PROPERTIES_SELL:
            self.sale.start(session, turn)
        else:
            follow_up = (nlu.follow_up_question or "").strip()
            if follow_up:
                turn.say(follow_up)
                session.data.awaiting = (
                    Disambiguation.OWNER_OR_OTHER if re.search(r"cobr", follow_up, re.IGNORECASE) else Disambiguation.CLARIFY_GENERIC
                )
            else:
                turn.say(replies.NOT_UNDERSTOOD)

    async def _apply_resolution(self, session: Session, resolution: Resolution, body: str, turn: FlowTurn) -> None:
        if resolution.qa_answer is not None:
            turn.say(resolution.qa_answer)
        elif resolution.intent is not None:
            if resolution.intent.intent == IntentType.OTHER and session.step == Step.INDEX_MENU:
                await self.dispatch(session, body, turn)
                return
            await self.handle_intent(session, resolution.intent, turn)
        else:
            await self.dispatch(session, body, turn)

    def _numeric_menu(self, session: Session, body: str, turn: FlowTurn) -> bool:
        step = session.step
        if step in (Step.START, Step.MAIN):
            choice = pick_menu_number(body, 3)
            if choice == 1:
                session.step = Step.RENTALS_MENU
                turn.say(replies.rentals_menu())
            elif choice == 2:
                session.step = Step.PROPERTIES_MENU
                turn.say(replies.PROPERTIES_PROMPT)
            elif choice == 3:
                self.general.start(session, turn)
            return choice is not None
        if step == Step.RENTALS_MENU:
            choice = pick_menu_number(body, 5)
            if choice == 1:
                self.issue.start(session, turn)
            elif choice == 2:
                self.index.start(session, turn)
            elif choice == 3:
                turn.say(replies.TENANT_INFO, replies.rentals_menu())
            elif choice == 4:
                turn.say(replies.OWNER_INFO, replies.rentals_menu())
            elif choice == 5:
                turn.say(replies.OPERATOR_HANDOFF)
                turn.escalate(EscalationPayload(reason="Pedido de operador (número)"))
            return choice is not None
        if step == Step.PROPERTIES_MENU:
            choice = pick_menu_number(body, 4)
            if choice in _PROPERTIES_MENU:
                self.search.start(session, turn, _PROPERTIES_MENU[choice])
            elif choice == 4:
                self.sale.start(session, turn)
            return choice is not None
        return False

    def _pending_disambiguation(self, session: Session, lowered: str, turn: FlowTurn) -> bool:
        awaiting = session.data.awaiting
        if awaiting == Disambiguation.OWNER_OR_OTHER:
            if re.search(r"\balquiler\b", lowered):
                session.data = NavigationData()
                session.step = Step.RENTALS_MENU
                turn.say(replies.OWNER_INFO, replies.rentals_menu())
                return True
            if re.search(r"\b(otra cosa|otra|no|n)\b", lowered):
                session.data.awaiting = None
                turn.say(replies.TELL_ME_MORE)
                return True
            turn.say(replies.OWNER_OR_OTHER_PROMPT)
            return True
        if awaiting == Disambiguation.CLARIFY_GENERIC:
            if len(lowered.split()) < 3:
                turn.say(replies.MORE_DETAIL)
                return True
            session.data.awaiting = None
        return False

    def _main_menu(self, session: Session, turn: FlowTurn) -> None:
        session.step = Step.MAIN
        session.data.awaiting = None
        turn.say(replies.main_menu())
