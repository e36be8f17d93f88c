from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from agents.replies import HANDOFF_DONE, YES_NO_PROMPT
from agents.text_utils import parse_yes_no
from compliance.audit_logger import AuditLogger
from models.schemas import AgentDecisionLog, EscalationPayload, Listing, Session, Step


@dataclass
class FlowTurn:
    """Everything one inbound event produced, in emission order."""

    replies: List[str] = field(default_factory=list)
    cards: List[Listing] = field(default_factory=list)
    escalation: Optional[EscalationPayload] = None
    reset: bool = False

    def say(self, *texts: str) -> None:
        self.replies.extend(t for t in texts if t)

    def escalate(self, payload: EscalationPayload, reset: bool = False) -> None:
        self.escalation = payload
        self.reset = self.reset or reset


class BaseFlowAgent(ABC):
    steps: FrozenSet[Step] = frozenset()

    def __init__(self, name: str, audit_logger: AuditLogger | None = None) -> None:
        self.name = name
        self.audit_logger = audit_logger or AuditLogger()

    def handles(self, step: Step) -> bool:
        return step in self.steps

    @abstractmethod
    async def handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        raise NotImplementedError

    def build_decision_log(
        self,
        conversation_id: str,
        action: str,
        reasoning: str,
        step: Step | None = None,
        outcome: str = "ok",
    ) -> AgentDecisionLog:
        record = AgentDecisionLog(
            conversation_id=conversation_id,
            agent=self.name,
            action=action,
            reasoning=reasoning,
            step=step.value if step is not None else None,
            outcome=outcome,
        )
        self.audit_logger.log_decision(record)
        return record

    def derivation(self, session: Session, text: str, turn: FlowTurn, payload: EscalationPayload, declined: str) -> bool:
        """Final yes/no question of a flow; any recognised answer ends the flow."""
        answer = parse_yes_no(text)
        if answer == "yes":
            turn.say(HANDOFF_DONE)
            turn.escalate(payload, reset=True)
            self.build_decision_log(session.conversation_id, "escalation_requested", payload.topic(), session.step)
            return True
        if answer == "no":
            turn.say(declined)
            turn.reset = True
            self.build_decision_log(session.conversation_id, "escalation_declined", payload.topic(), session.step)
            return True
        turn.say(YES_NO_PROMPT)
        return False
