from __future__ import annotations

import logging
from typing import Any, Dict, List

from agents import replies
from agents.base import BaseFlowAgent, FlowTurn
from agents.pattern_layer import detect_budget
from agents.replies import format_currency
from agents.text_utils import is_skip_token, parse_amount, parse_count, parse_currency, parse_yes_no
from compliance.audit_logger import AuditLogger
from models.schemas import (
    SEARCH_STEPS,
    Currency,
    EscalationPayload,
    Listing,
    ListingQuery,
    PropertyOperation,
    PropertySearchData,
    Session,
    Step,
)
from settings import SETTINGS
from tools.listing_tools import ListingProvider, ListingProviderError, MockListingProvider

logger = logging.getLogger(__name__)


class PropertySearchAgent(BaseFlowAgent):
    steps = SEARCH_STEPS

    def __init__(
        self,
        provider: ListingProvider | None = None,
        audit_logger: AuditLogger | None = None,
        tolerance_percent: float | None = None,
        max_results: int | None = None,
    ) -> None:
        super().__init__(name="property_search_agent", audit_logger=audit_logger)
        self.provider = provider or MockListingProvider()
        self.tolerance_percent = SETTINGS.listing_tolerance_percent if tolerance_percent is None else tolerance_percent
        self.max_results = max_results or SETTINGS.listing_max_results

    def start(self, session: Session, turn: FlowTurn, operation: PropertyOperation) -> None:
        session.data = PropertySearchData(operation=operation)
        session.step = Step.SEARCH_TYPE
        turn.say(replies.OPERATION_PROMPTS.get(operation.value, replies.OPERATION_PROMPTS["alquilar"]))

    async def handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        data = session.data if isinstance(session.data, PropertySearchData) else PropertySearchData()
        session.data = data
        body = text.strip()
        step = session.step

        if step == Step.SEARCH_TYPE:
            if not body:
                turn.say(replies.OPERATION_PROMPTS.get(data.operation.value, replies.PROPERTIES_PROMPT))
                return
            data.property_type = body
            session.step = Step.SEARCH_CURRENCY
            turn.say(replies.CURRENCY_PROMPT)
        elif step == Step.SEARCH_CURRENCY:
            currency = parse_currency(body)
            if currency is None:
                turn.say(replies.CURRENCY_INVALID)
                return
            data.currency = currency
            session.step = Step.SEARCH_BUDGET
            turn.say(replies.BUDGET_PROMPT)
        elif step == Step.SEARCH_BUDGET:
            if data.currency is None:
                session.step = Step.SEARCH_CURRENCY
                turn.say(replies.CURRENCY_PROMPT)
                return
            budget = parse_amount(body)
            hinted = False
            if budget is None:
                budget = detect_budget(body)
                hinted = budget is not None
            if budget is None or budget <= 0:
                turn.say(replies.AMOUNT_INVALID)
                return
            data.budget = budget
            session.step = Step.SEARCH_ZONE
            if hinted:
                turn.say(f"💰 Tomé tu presupuesto: {format_currency(budget, data.currency)}")
            turn.say(replies.ZONE_PROMPT)
        elif step == Step.SEARCH_ZONE:
            data.zone = None if (not body or is_skip_token(body)) else body
            session.step = Step.SEARCH_BEDROOMS
            turn.say(replies.BEDROOMS_PROMPT)
        elif step == Step.SEARCH_BEDROOMS:
            count = parse_count(body)
            if count is None:
                turn.say(replies.BEDROOMS_INVALID)
                return
            data.bedrooms = count
            session.step = Step.SEARCH_BATHROOMS
            turn.say(replies.BATHROOMS_PROMPT)
        elif step == Step.SEARCH_BATHROOMS:
            count = parse_count(body)
            if count is None:
                turn.say(replies.BATHROOMS_INVALID)
                return
            data.bathrooms = count
            session.step = Step.SEARCH_GARAGE
            turn.say(replies.GARAGE_PROMPT)
        elif step == Step.SEARCH_GARAGE:
            answer = parse_yes_no(body)
            if answer is None:
                turn.say(replies.YES_NO_PROMPT)
                return
            data.garage = answer == "yes"
            session.step = Step.SEARCH_AMENITIES
            turn.say(replies.AMENITIES_PROMPT)
        elif step == Step.SEARCH_AMENITIES:
            data.amenities = None if (not body or is_skip_token(body)) else body
            await self.run_search(session, data, turn)
        elif step == Step.SEARCH_HANDOFF:
            self.derivation(session, body, turn, self.payload(data), replies.SEARCH_SAVED)

    async def run_search(self, session: Session, data: PropertySearchData, turn: FlowTurn) -> List[Listing]:
        query = ListingQuery(
            operation=data.operation,
            property_type=data.property_type or "",
            zone=data.zone,
            budget=data.budget or 0.0,
            currency=data.currency or Currency.ARS,
            tolerance_percent=self.tolerance_percent,
        )
        results = await self._query(session.conversation_id, query)
        if not results and query.zone:
            results = await self._query(session.conversation_id, query.model_copy(update={"zone": None}))
            data.zone_relaxed = True
        data.results = results[: self.max_results]
        session.step = Step.SEARCH_HANDOFF
        self.build_decision_log(
            session.conversation_id,
            "listing_search",
            f"results={len(data.results)} zone_relaxed={data.zone_relaxed}",
            Step.SEARCH_AMENITIES,
        )

        turn.say(self.summary(data))
        if data.results:
            if data.zone_relaxed:
                turn.say(f"No encontré opciones en *{data.zone}*; te muestro otras zonas:")
            lines = [
                f"{pos}) {item.title} – {format_currency(item.price, item.currency)}"
                for pos, item in enumerate(data.results, start=1)
            ]
            turn.say("📄 Resultados:\n" + "\n".join(lines))
            turn.cards.extend(data.results)
        else:
            turn.say(
                "😕 No encontré propiedades con esos criterios"
                + (" (probé también sin filtrar por zona)." if data.zone_relaxed else ".")
                + " Un asesor puede buscarte opciones similares."
            )
        turn.say(replies.ADVISOR_QUESTION)
        return data.results

    async def _query(self, conversation_id: str, query: ListingQuery) -> List[Listing]:
        try:
            return list(await self.provider.search(query))
        except ListingProviderError as exc:
            logger.warning("listing_search_failed", extra={"conversation_id": conversation_id, "error": repr(exc)})
            return []

    def summary(self, data: PropertySearchData) -> str:
        garage = "-" if data.garage is None else ("Sí" if data.garage else "No")
        return "\n".join(
            [
                f"🔎 Búsqueda *{data.operation.value}* – *{data.property_type or '-'}*",
                f"• Presupuesto: {format_currency(data.budget, data.currency)}",
                f"• Zona: {data.zone or 'indiferente'}",
                f"• Dorm: {data.bedrooms if data.bedrooms is not None else '-'} | "
                f"Baños: {data.bathrooms if data.bathrooms is not None else '-'} | Cochera: {garage}",
                f"• Comodidades: {data.amenities or '-'}",
            ]
        )

    def payload(self, data: PropertySearchData) -> EscalationPayload:
        form: Dict[str, Any] = {
            "operation": data.operation.value,
            "property_type": data.property_type,
            "currency": data.currency.value if data.currency else None,
            "budget": data.budget,
            "zone": data.zone,
            "bedrooms": data.bedrooms,
            "bathrooms": data.bathrooms,
            "garage": data.garage,
            "amenities": data.amenities,
            "results": [item.id for item in data.results],
        }
        return EscalationPayload(reason="Consulta de propiedades", property_form=form)
