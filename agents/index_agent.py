from __future__ import annotations

from agents import replies
from agents.base import BaseFlowAgent, FlowTurn
from agents.replies import format_currency
from agents.text_utils import coerce_index_code, parse_amount, parse_currency
from compliance.audit_logger import AuditLogger
from models.schemas import INDEX_STEPS, Currency, EscalationPayload, IndexCalcData, IndexCalculation, Session, Step


def calculate(amount: float, initial_value: float, final_value: float) -> IndexCalculation:
    """Apply the ratio between two published index values to a rent amount."""
    if initial_value <= 0 or final_value <= 0:
        raise ValueError("index values must be positive")
    factor = final_value / initial_value
    return IndexCalculation(factor=factor, variation_percent=(factor - 1) * 100, new_amount=amount * factor)


def describe(calc: IndexCalculation, currency: Currency | None) -> str:
    return (
        f"Factor: {calc.factor:.6f} ({calc.variation_percent:.2f} %), "
        f"Nuevo: {format_currency(calc.new_amount, currency)}"
    )


class IndexUpdateAgent(BaseFlowAgent):
    steps = INDEX_STEPS

    def __init__(self, audit_logger: AuditLogger | None = None) -> None:
        super().__init__(name="index_agent", audit_logger=audit_logger)

    def start(self, session: Session, turn: FlowTurn, index_hint: object = None) -> None:
        code = coerce_index_code(index_hint)
        session.data = IndexCalcData(index_code=code)
        if code is None:
            session.step = Step.INDEX_MENU
            turn.say(replies.index_menu())
            return
        session.step = Step.INDEX_CURRENCY
        turn.say(f"Perfecto, *{code.label}*.", replies.CURRENCY_PROMPT)

    async def handle(self, session: Session, text: str, turn: FlowTurn) -> None:
        data = session.data if isinstance(session.data, IndexCalcData) else IndexCalcData()
        session.data = data
        step = session.step

        if step == Step.INDEX_MENU:
            code = coerce_index_code(text)
            if code is None:
                turn.say(replies.index_menu())
            else:
                self.start(session, turn, code)
        elif step == Step.INDEX_CURRENCY:
            currency = parse_currency(text)
            if currency is None:
                turn.say(replies.CURRENCY_INVALID)
                return
            data.currency = currency
            session.step = Step.INDEX_AMOUNT
            label = "pesos" if currency == Currency.ARS else "dólares"
            turn.say(f"Ingresá el *alquiler actual* en {label}:")
        elif step == Step.INDEX_AMOUNT:
            if data.currency is None:
                session.step = Step.INDEX_CURRENCY
                turn.say(replies.CURRENCY_PROMPT)
                return
            amount = parse_amount(text)
            if amount is None or amount <= 0:
                turn.say(replies.AMOUNT_INVALID)
                return
            data.current_amount = amount
            session.step = Step.INDEX_INITIAL
            turn.say(replies.INDEX_INITIAL_PROMPT)
        elif step == Step.INDEX_INITIAL:
            value = parse_amount(text)
            if value is None or value <= 0:
                turn.say(replies.INDEX_VALUE_INVALID)
                return
            data.initial_value = value
            session.step = Step.INDEX_FINAL
            turn.say(replies.INDEX_FINAL_PROMPT)
        elif step == Step.INDEX_FINAL:
            value = parse_amount(text)
            if value is None or value <= 0:
                turn.say(replies.INDEX_VALUE_INVALID)
                return
            data.final_value = value
            data.result = calculate(data.current_amount or 0.0, data.initial_value or value, value)
            session.step = Step.INDEX_HANDOFF
            turn.say(self._result_text(data))
        elif step == Step.INDEX_HANDOFF:
            self.derivation(session, text, turn, self.payload(data), replies.BACK_TO_MENU)

    def payload(self, data: IndexCalcData) -> EscalationPayload:
        return EscalationPayload(
            reason="Actualización por índice",
            index_name=data.index_code.label if data.index_code else None,
            calculation=describe(data.result, data.currency) if data.result else None,
        )

    def _result_text(self, data: IndexCalcData) -> str:
        calc = data.result
        label = data.index_code.label if data.index_code else "Índice seleccionado"
        return (
            f"🧮 Resultado para *{label}*:\n"
            f"• Alquiler actual: {format_currency(data.current_amount, data.currency)}\n"
            f"• Factor: {calc.factor:.6f} ({calc.variation_percent:.2f} %)\n"
            f"• Nuevo alquiler: {format_currency(calc.new_amount, data.currency)}\n\n"
            f"{replies.HANDOFF_QUESTION}"
        )
