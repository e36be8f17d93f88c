from __future__ import annotations

import re
from typing import Optional, Sequence

from agents import replies
from agents.base import BaseFlowAgent, FlowTurn
from agents.text_utils import normalize, normalize_issue_category, parse_yes_no, pick_menu_number
from compliance.audit_logger import AuditLogger
from models.schemas import REPORT_STEPS, EscalationPayload, IssueCategory, IssueReportData, Photo, Session, Step

_DONE = re.compile(r"^(listo|lista|ya|ok|de una|dale|termine)$")


class IssueReportAgent(BaseFlowAgent):
    steps = REPORT_STEPS

    def __init__(self, audit_logger: AuditLogger | None = None) -> None:
        super().__init__(name="issue_report_agent", audit_logger=audit_logger)

    def start(self, session: Session, turn: FlowTurn, category_hint: object = None, history: Sequence[str] = ()) -> None:
        category = normalize_issue_category(category_hint)
        if category is None or category == IssueCategory.OTHER:
            latest = history[-1] if history else ""
            category = normalize_issue_category(latest) or category
        session.data = IssueReportData(category=category)
        if category is not None and category != IssueCategory.OTHER:
            session.step = Step.REPORT_ADDRESS
            turn.say(replies.ADDRESS_PROMPT)
        else:
            session.step = Step.REPORT_CATEGORY
            turn.say(replies.CATEGORY_PROMPT)

    def defer_operator(self, session: Session, turn: FlowTurn) -> None:
        self._data(session)
        session.step = Step.REPORT_PHOTOS_ASK
        turn.say(replies.OPERATOR_DEFERRED)

    def add_photo(self, session: Session, photo: Photo, turn: FlowTurn) -> bool:
        if session.step not in REPORT_STEPS:
            return False
        self._data(session).photos.append(photo)
        session.step = Step.REPORT_PHOTOS_UPLOAD
        turn.say(replies.PHOTO_RECEIVED)
        return True

    async def handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        data = self._data(session)
        body = text.strip()
        step = session.step

        if step == Step.REPORT_CATEGORY:
            choice = pick_menu_number(body, 5)
            if choice is not None:
                data.category = replies.CATEGORY_MENU[choice]
            else:
                data.category = normalize_issue_category(body) or IssueCategory.OTHER
            session.step = Step.REPORT_ADDRESS
            turn.say(replies.ADDRESS_PROMPT)
        elif step == Step.REPORT_ADDRESS:
            if not body:
                turn.say(replies.ADDRESS_PROMPT)
                return
            data.address = body
            session.step = Step.REPORT_DESCRIPTION
            turn.say(replies.DESCRIPTION_PROMPT)
        elif step == Step.REPORT_DESCRIPTION:
            if not body:
                turn.say(replies.DESCRIPTION_PROMPT)
                return
            if data.category is None or data.category == IssueCategory.OTHER:
                data.category = normalize_issue_category(body) or data.category
            data.description = body
            session.step = Step.REPORT_PHOTOS_ASK
            turn.say(replies.PHOTOS_QUESTION)
        elif step == Step.REPORT_PHOTOS_ASK:
            answer = parse_yes_no(body)
            if answer == "yes":
                session.step = Step.REPORT_PHOTOS_UPLOAD
                turn.say(replies.PHOTOS_UPLOAD_PROMPT)
            elif answer == "no":
                self._ask_handoff(session, data, turn)
            else:
                turn.say(replies.YES_NO_PROMPT)
        elif step == Step.REPORT_PHOTOS_UPLOAD:
            if _DONE.match(normalize(body)):
                self._ask_handoff(session, data, turn)
            else:
                turn.say(replies.PHOTOS_WAITING)
        elif step == Step.REPORT_HANDOFF:
            self.derivation(session, body, turn, self.payload(data), replies.REPORT_DECLINED)

    def payload(self, data: IssueReportData) -> EscalationPayload:
        return EscalationPayload(
            reason="Reporte de problema",
            category=data.category.value if data.category else IssueCategory.OTHER.value,
            address=data.address,
            description=data.description,
            photos=[p.url for p in data.photos],
        )

    def summary(self, data: IssueReportData) -> str:
        photos = f"• Fotos: {len(data.photos)}" if data.photos else "• Fotos: no enviadas"
        category: Optional[str] = data.category.value if data.category else None
        return "\n".join(
            [
                "✅ ¡Gracias! Registré:",
                f"• Categoría: {category or '-'}",
                f"• Dirección: {data.address or '-'}",
                f"• Descripción: {data.description or '-'}",
                photos,
            ]
        )

    def _ask_handoff(self, session: Session, data: IssueReportData, turn: FlowTurn) -> None:
        session.step = Step.REPORT_HANDOFF
        turn.say(f"{self.summary(data)}\n\n{replies.HANDOFF_QUESTION}")

    def _data(self, session: Session) -> IssueReportData:
        if not isinstance(session.data, IssueReportData):
            session.data = IssueReportData()
        return session.data
