from __future__ import annotations

import re

from agents import replies
from agents.base import BaseFlowAgent, FlowTurn
from agents.text_utils import capitalize, normalize
from compliance.audit_logger import AuditLogger
from models.schemas import SALE_STEPS, EscalationPayload, PropertyOperation, SaleData, Session, Step

_SKIP = re.compile(r"^(listo|lista|nada|no|ninguno)$")


class PropertySaleAgent(BaseFlowAgent):
    steps = SALE_STEPS

    def __init__(self, audit_logger: AuditLogger | None = None) -> None:
        super().__init__(name="property_sale_agent", audit_logger=audit_logger)

    def start(self, session: Session, turn: FlowTurn) -> None:
        session.data = SaleData()
        session.step = Step.SALE_TYPE
        turn.say(replies.SALE_TYPE_PROMPT)

    async def handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        data = session.data if isinstance(session.data, SaleData) else SaleData()
        session.data = data
        body = text.strip()
        step = session.step

        if step == Step.SALE_HANDOFF:
            self.derivation(session, body, turn, self.payload(data), replies.BACK_TO_MENU)
            return
        if step == Step.SALE_COMMENTS:
            data.comments = None if _SKIP.match(normalize(body)) else body or None
            session.step = Step.SALE_HANDOFF
            turn.say(f"{self.summary(data)}\n\n{replies.APPRAISAL_QUESTION}")
            return
        prompts = {
            Step.SALE_TYPE: replies.SALE_TYPE_PROMPT,
            Step.SALE_ADDRESS: replies.SALE_ADDRESS_PROMPT,
            Step.SALE_CONDITION: replies.SALE_CONDITION_PROMPT,
        }
        if not body:
            turn.say(prompts.get(step, replies.SALE_TYPE_PROMPT))
            return
        if step == Step.SALE_TYPE:
            data.property_type = body
            session.step = Step.SALE_ADDRESS
            turn.say(replies.SALE_ADDRESS_PROMPT)
        elif step == Step.SALE_ADDRESS:
            data.address = body
            session.step = Step.SALE_CONDITION
            turn.say(replies.SALE_CONDITION_PROMPT)
        elif step == Step.SALE_CONDITION:
            data.condition = capitalize(body)
            session.step = Step.SALE_COMMENTS
            turn.say(replies.SALE_COMMENTS_PROMPT)

    def summary(self, data: SaleData) -> str:
        return "\n".join(
            [
                "📄 Datos para vender:",
                f"• Tipo: {data.property_type or '-'}",
                f"• Dirección/Zona: {data.address or '-'}",
                f"• Estado: {data.condition or '-'}",
                f"• Comentarios: {data.comments or '-'}",
            ]
        )

    def payload(self, data: SaleData) -> EscalationPayload:
        return EscalationPayload(
            reason="Vender propiedad",
            property_form={
                "operation": PropertyOperation.SELL.value,
                "property_type": data.property_type,
                "address": data.address,
                "condition": data.condition,
                "comments": data.comments,
            },
        )
