from __future__ import annotations

import re
from typing import List, Optional

from agents.pattern_layer import PatternMatch, PatternRule, evaluate
from agents.text_utils import detect_index_code, normalize_issue_category
from models.schemas import IntentSlots, IntentType, IssueCategory, NLUResult

# Questions about these terms mention tenants/owners without being about them.
_TERM_QUESTION_GUARD = re.compile(r"\b(sellado|sellos|impuesto de sellos|escribania|garantia propietaria|deposito en garantia)\b")
_RENT_WANTED = re.compile(r"(quiero|busco|necesito|me interesa).{0,12}alquil")
_ISSUE_VERBS = re.compile(
    r"(romp|gote|\bfuga|perdida|\bcorto\b|chispa|no anda|no funciona|descompuest|perdi la llave|canilla|inund|no prende|no enciende)"
)
_INDEX_WORDS = re.compile(r"\b(icl|cac|uva|uvi|cer|ipc)\b|casa propia|\bactualiz|\bindice")


def _intent(intent: IntentType):
    return lambda _t, _raw: NLUResult(intent=intent)


def _guarded(intent: IntentType):
    def factory(t: str, _raw: str) -> Optional[PatternMatch]:
        if _TERM_QUESTION_GUARD.search(t):
            return None
        return NLUResult(intent=intent)

    return factory


def _collection(t: str, _raw: str) -> Optional[PatternMatch]:
    if _RENT_WANTED.search(t):
        return None
    return NLUResult(intent=IntentType.OWNER_INFO)


def _bare_category(t: str, _raw: str) -> Optional[PatternMatch]:
    category = normalize_issue_category(t)
    if category is None or category == IssueCategory.OTHER:
        return None
    return NLUResult(intent=IntentType.REPORT_ISSUE, slots=IntentSlots(category=category.value))


def _issue_verbs(t: str, _raw: str) -> PatternMatch:
    category: Optional[str] = None
    if re.search(r"(canilla|agua|gote)", t):
        category = IssueCategory.PLUMBING.value
    elif re.search(r"\bgas\b", t):
        category = IssueCategory.GAS.value
    elif re.search(r"(electric|corto|chispa|enchufe|\bluz\b)", t):
        category = IssueCategory.ELECTRICAL.value
    elif re.search(r"(artefacto|termotan|calefon|heladera|cocina|horno)", t):
        category = IssueCategory.APPLIANCE.value
    return NLUResult(intent=IntentType.REPORT_ISSUE, slots=IntentSlots(category=category))


def _index(t: str, _raw: str) -> PatternMatch:
    code = detect_index_code(t)
    return NLUResult(intent=IntentType.INDEX_UPDATE, slots=IntentSlots(index=code.value if code else None))


def _search(pattern: str):
    compiled = re.compile(pattern)
    return lambda t: bool(compiled.search(t))


HEURISTIC_RULES: List[PatternRule] = [
    PatternRule(
        "thanks",
        _search(r"\b(gracias|muchas gracias|mil gracias|genial|barbaro|perfecto|de nada)\b"),
        _intent(IntentType.THANKS),
    ),
    PatternRule(
        "goodbye",
        _search(r"\b(chau|adios|hasta luego|nos vemos|buenas noches|buenas tardes|buen dia)\b"),
        _intent(IntentType.GOODBYE),
    ),
    PatternRule("operator", _search(r"(humano|operador|agente|asesor)"), _intent(IntentType.OPERATOR)),
    PatternRule("greeting", _search(r"(^|\s)(hola|buenas|menu|inicio|start)(\s|$)"), _intent(IntentType.GREETING)),
    PatternRule("tenant_info", _search(r"inquilin"), _guarded(IntentType.TENANT_INFO)),
    PatternRule("owner_info", _search(r"(propietari|duen)"), _guarded(IntentType.OWNER_INFO)),
    PatternRule("owner_collection", _search(r"\b(cobro|cobrar|liquidacion|rendicion)\b"), _collection),
    PatternRule("bare_category", lambda t: normalize_issue_category(t) is not None, _bare_category),
    PatternRule("report_issue", lambda t: bool(_ISSUE_VERBS.search(t)), _issue_verbs),
    PatternRule("index_update", lambda t: bool(_INDEX_WORDS.search(t)), _index),
    PatternRule(
        "properties_rent",
        _search(r"(alquil(ar|o|e|emos|en)\b|quiero\s+alquil|busco\s+alquiler|necesito\s+alquil)"),
        _intent(IntentType.PROPERTIES_RENT),
    ),
    PatternRule("properties_buy", _search(r"(\bcomprar\b|\bcompra\b|quiero\s+comprar|busco\s+comprar)"), _intent(IntentType.PROPERTIES_BUY)),
    PatternRule("properties_temp", _search(r"(temporari|por dia|por semana)"), _intent(IntentType.PROPERTIES_TEMP)),
    PatternRule("properties_sell", _search(r"(vender|venta|tasaci)"), _intent(IntentType.PROPERTIES_SELL)),
]
