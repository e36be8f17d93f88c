from __future__ import annotations

import math
import re
import unicodedata
from typing import Optional

from models.schemas import Currency, IndexCode, IssueCategory


def strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", str(text or ""))
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def normalize(text: str) -> str:
    return re.sub(r"\s+", " ", strip_accents(str(text or "")).lower()).strip()


_DECIMAL_POINT = re.compile(r"^\d+\.\d{1,2}$")


def parse_amount(raw: object) -> Optional[float]:
    """Parse a regional amount: ``.`` groups thousands and ``,`` marks decimals.

    A lone ``.`` followed by one or two digits is read as a decimal point so
    ``"1234.56"`` and ``"1.234,56"`` agree. Currency symbols are ignored.
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
        return value if math.isfinite(value) else None
    text = re.sub(r"\s+", "", str(raw or ""))
    text = re.sub(r"^(?:u\$s|us\$|usd|ars|\$)", "", text, flags=re.IGNORECASE)
    if not text:
        return None
    if "," not in text and _DECIMAL_POINT.match(text):
        candidate = text
    else:
        candidate = text.replace(".", "").replace(",", ".", 1)
    if not re.fullmatch(r"[+-]?\d+(?:\.\d+)?", candidate):
        return None
    value = float(candidate)
    if not math.isfinite(value):
        return None
    return value


def parse_currency(text: str) -> Optional[Currency]:
    t = normalize(text)
    if re.fullmatch(r"(?:op(?:cion)?\s*)?1[\).:]?", t) or re.search(r"\b(pesos?|ars)\b", t) or t == "$":
        return Currency.ARS
    if re.fullmatch(r"(?:op(?:cion)?\s*)?2[\).:]?", t) or re.search(r"\b(dolar|dolares|usd|u\$s|us\$)", t):
        return Currency.USD
    return None


def parse_count(raw: str) -> Optional[int]:
    match = re.match(r"^\s*(\d{1,2})\b", str(raw or ""))
    if not match:
        return None
    return int(match.group(1))


_MENU_PICK = re.compile(r"^(?:op(?:cion)?\s*)?([1-9])(?:\s*[\).:]?)?$")


def pick_menu_number(text: str, max_option: int = 9) -> Optional[int]:
    match = _MENU_PICK.match(normalize(text))
    if not match:
        return None
    value = int(match.group(1))
    return value if 1 <= value <= max_option else None


def parse_yes_no(text: str) -> Optional[str]:
    t = normalize(text)
    if re.fullmatch(r"(si|s)", t):
        return "yes"
    if re.fullmatch(r"(n|no|nop|noo|nah)", t):
        return "no"
    if re.search(
        r"\b(no\s+gracias|gracias\s+pero\s+no|estoy\s+bien|por\s+ahora\s+no|no\s+hace\s+falta|prefiero\s+que\s+no|mas\s+tarde|despues)\b",
        t,
    ):
        return "no"
    if re.match(r"^no\b", t):
        return "no"
    if re.search(r"\b(dale|ok(ay)?|claro|por supuesto|de una|va|listo|perfecto)\b", t):
        return "yes"
    if re.search(r"\b(quiero|necesito|me\s+contactan|contactame|llamame|llamenme|hablenme)\b", t):
        return "yes"
    return None


def is_repair(text: str) -> bool:
    t = normalize(text)
    return bool(
        re.search(r"no me entend(iste|es)|no era eso|eso no|te confund(iste|es)|me exprese mal|perdon.*(no|me|entend)", t)
    )


def is_interrogative(text: str) -> bool:
    raw = str(text or "").strip()
    if "?" in raw or "¿" in raw:
        return True
    return bool(re.match(r"^(que|como|cuando|donde|cual|cuales|cuanto|cuanta|cuantos|por que|quien|puedo|se puede)\b", normalize(raw)))


def normalize_issue_category(value: object) -> Optional[IssueCategory]:
    """Map a free-text phrase or a classifier slot to an incident category."""
    if value is None:
        return None
    if isinstance(value, IssueCategory):
        return value
    t = normalize(str(value))
    if not t:
        return None
    if re.search(r"\bgas\b|metrogas|cano de gas", t):
        return IssueCategory.GAS
    if re.search(r"(electric|corto|enchufe|tablero|\bluz\b)", t):
        return IssueCategory.ELECTRICAL
    if re.search(r"(plomer|canilla|agua|gote|fuga|perdida|cano|inund)", t):
        return IssueCategory.PLUMBING
    if re.search(r"(artefacto|termotan|calefon|calefactor|heladera|cocina|horno)", t):
        return IssueCategory.APPLIANCE
    if t in {"otro", "otros", "otra"}:
        return IssueCategory.OTHER
    return None


def detect_index_code(text: str) -> Optional[IndexCode]:
    t = normalize(text)
    if re.search(r"\bicl\b", t):
        return IndexCode.ICL
    if re.search(r"\bcac\b", t):
        return IndexCode.CAC
    if re.search(r"\buva\b", t):
        return IndexCode.UVA
    if re.search(r"\buvi\b", t):
        return IndexCode.UVI
    if re.search(r"\bcer\b", t):
        return IndexCode.CER
    if "casa propia" in t:
        return IndexCode.CASA_PROPIA
    if re.search(r"ipc.*indec.*2", t):
        return IndexCode.IPC_INDEC_2M
    if re.search(r"ipc.*indec.*1", t):
        return IndexCode.IPC_INDEC_1M
    if re.search(r"ipc.*creebba.*2", t):
        return IndexCode.IPC_CREEBBA_2M
    if re.search(r"ipc.*creebba.*1", t):
        return IndexCode.IPC_CREEBBA_1M
    return None


def coerce_index_code(value: object) -> Optional[IndexCode]:
    if value is None:
        return None
    if isinstance(value, IndexCode):
        return value
    try:
        return IndexCode(str(value).strip().upper())
    except ValueError:
        return detect_index_code(str(value))


def capitalize(text: str) -> str:
    text = str(text or "").strip()
    return text[:1].upper() + text[1:] if text else text


_SKIP_TOKENS = {
    "indiferente",
    "ninguna",
    "ninguno",
    "cualquiera",
    "cualquier",
    "da igual",
    "no importa",
    "sin preferencia",
    "no",
    "-",
    "todas",
    "todos",
}


def is_skip_token(text: str) -> bool:
    return normalize(text) in _SKIP_TOKENS
