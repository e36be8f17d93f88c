from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from agents.text_utils import detect_index_code, normalize, normalize_issue_category
from models.schemas import IntentHint, IntentSlots, IntentType, NLUResult

PatternMatch = Union[NLUResult, IntentHint]


@dataclass(frozen=True)
class PatternRule:
    """One tier entry: ``predicate`` sees normalized text, ``factory`` builds the match.

    A factory may still return ``None`` to let evaluation fall through to the
    next rule (used for guards that only a full look at the text can decide).
    """

    name: str
    predicate: Callable[[str], bool]
    factory: Callable[[str, str], Optional[PatternMatch]]


def evaluate(rules: Sequence[PatternRule], text: str) -> Optional[Tuple[str, PatternMatch]]:
    normalized = normalize(text)
    if not normalized:
        return None
    for rule in rules:
        if not rule.predicate(normalized):
            continue
        match = rule.factory(normalized, text)
        if match is not None:
            return rule.name, match
    return None


def _has(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern)
    return lambda t: bool(compiled.search(t))


def _intent(intent: IntentType) -> Callable[[str, str], PatternMatch]:
    return lambda _t, _raw: NLUResult(intent=intent)


_RENT_INTENT = re.compile(r"\b(quiero alquilar|busco alquiler|necesito alquilar|alquilar)\b")
_ISSUE_WORDS = re.compile(
    r"(romp|gote|\bfuga|perdida|\bcorto\b|chispa|no funciona|no anda|canilla|inund|\bgas\b|enchufe|\bluz\b|artefacto)"
)
_AMOUNT = re.compile(r"(?:\$|\bars\b|\busd\b|u\$s)?\s*(\d{1,3}(?:\.\d{3})+|\d{4,})(?:,\d{1,2})?")
_THOUSANDS = re.compile(r"\b(\d{1,4})\s*(mil|k)\b")


def detect_budget(text: str) -> Optional[float]:
    """Find a monetary amount with at least four digits (or ``N mil``)."""
    normalized = normalize(text)
    thousands = _THOUSANDS.search(normalized)
    if thousands:
        return float(int(thousands.group(1)) * 1000)
    match = _AMOUNT.search(normalized)
    if not match:
        return None
    value = float(match.group(1).replace(".", ""))
    return value if value > 0 else None


def _owner_collection(t: str, _raw: str) -> Optional[PatternMatch]:
    if _RENT_INTENT.search(t):
        return None
    return NLUResult(intent=IntentType.OWNER_INFO)


def _report_issue(t: str, _raw: str) -> PatternMatch:
    category = normalize_issue_category(t)
    return NLUResult(
        intent=IntentType.REPORT_ISSUE,
        slots=IntentSlots(category=category.value if category else None),
    )


def _index_update(t: str, _raw: str) -> PatternMatch:
    code = detect_index_code(t)
    return NLUResult(intent=IntentType.INDEX_UPDATE, slots=IntentSlots(index=code.value if code else None))


def _budget_hint(_t: str, raw: str) -> Optional[PatternMatch]:
    budget = detect_budget(raw)
    return IntentHint(budget=budget) if budget else None


PATTERN_RULES: List[PatternRule] = [
    PatternRule("thanks", _has(r"\b(gracias|genial|perfecto)\b"), _intent(IntentType.THANKS)),
    PatternRule("goodbye", _has(r"\b(chau|adios|hasta luego)\b"), _intent(IntentType.GOODBYE)),
    PatternRule("operator", _has(r"\b(operador|humano|asesor)\b"), _intent(IntentType.OPERATOR)),
    PatternRule("greeting", _has(r"\b(hola|buen dia|buenas|menu|inicio|start)\b"), _intent(IntentType.GREETING)),
    PatternRule("owner_collection", _has(r"\b(como cobro|cobrar|cobro|liquidacion|rendicion)\b"), _owner_collection),
    PatternRule("report_issue", lambda t: bool(_ISSUE_WORDS.search(t)), _report_issue),
    PatternRule(
        "index_update",
        lambda t: detect_index_code(t) is not None or bool(re.search(r"\b(indice|actualizar alquiler|ajuste)\b", t)),
        _index_update,
    ),
    PatternRule("properties_rent", lambda t: bool(_RENT_INTENT.search(t)), _intent(IntentType.PROPERTIES_RENT)),
    PatternRule("properties_buy", _has(r"\b(quiero comprar|busco comprar|comprar)\b"), _intent(IntentType.PROPERTIES_BUY)),
    PatternRule("properties_temp", _has(r"\b(temporario|por dia|por semana)\b"), _intent(IntentType.PROPERTIES_TEMP)),
    PatternRule("properties_sell", _has(r"\b(vender|venta|tasaci)"), _intent(IntentType.PROPERTIES_SELL)),
    PatternRule("budget_hint", lambda t: bool(re.search(r"\d", t)), _budget_hint),
]
