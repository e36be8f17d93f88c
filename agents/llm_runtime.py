from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import httpx
from pydantic import ValidationError

from models.schemas import IntentSlots, IntentType, NLUResult
from settings import SETTINGS

logger = logging.getLogger(__name__)

CLARIFY_QUESTION = "¿Podés contarme un poco más?"
QA_FALLBACK = (
    "Por ahora no puedo responderte eso con seguridad. "
    "Si querés, escribí *operador* y alguien del equipo te contacta."
)

CLASSIFIER_INSTRUCTIONS = " ".join(
    [
        "Eres un NLU para una inmobiliaria en español (Argentina).",
        "Devuelve SIEMPRE JSON válido (sin texto adicional) con las claves: intent, slots, confidence, followup_question.",
        "intent es una de: " + ", ".join(i.value for i in IntentType) + ".",
        "slots tiene: category (plomeria/gas/electricidad/artefacto/otro), index (ICL, CAC, UVA, UVI, CER, CASA_PROPIA, "
        "IPC_INDEC_2M, IPC_INDEC_1M, IPC_CREEBBA_2M, IPC_CREEBBA_1M), zone, budget, bedrooms, bathrooms, garage, description; null si no aplica.",
        "Si menciona roturas/averías => report_issue. Si pide actualizar alquiler por índice => index_update.",
        "Si pregunta como inquilino => tenant_info; propietario => owner_info.",
        "Si habla de alquilar/comprar/temporario/vender => properties_*.",
        "Si pide humano => operator. Saludo simple => greeting. Agradece => thanks. Se despide => goodbye.",
        "Si no alcanza, devuelve 'other' y una followup_question corta para desambiguar.",
    ]
)

QA_INSTRUCTIONS = (
    "Sos el asistente virtual de una inmobiliaria en Argentina. Respondé en español rioplatense, "
    "breve y claro (máximo 5 oraciones). Si la pregunta requiere datos de un contrato o de una propiedad puntual, "
    "explicá el criterio general y sugerí escribir *operador* para hablar con el equipo. No inventes montos ni plazos."
)


class LLMUnavailableError(RuntimeError):
    pass


@dataclass
class LLMResult:
    text: str
    provider: str
    model: str
    raw: Dict[str, Any]


class LLMRuntime:
    """Remote intent classifier and generative QA responder.

    Neither public call raises: classification falls back to ``other`` with a
    clarifying question, answers fall back to a canned reply.
    """

    def __init__(self, provider: str | None = None, model: str | None = None) -> None:
        self.provider = (provider or SETTINGS.default_llm_provider or "openai").lower()
        self.model = model or SETTINGS.default_model

    def available(self) -> bool:
        if self.provider == "openai":
            return bool(SETTINGS.openai_api_key)
        if self.provider == "anthropic":
            return bool(SETTINGS.anthropic_api_key)
        return False

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        context: Dict[str, Any] | None = None,
        response_format: str = "text",
    ) -> LLMResult:
        if not self.available():
            raise LLMUnavailableError(f"provider_not_configured:{self.provider}")
        context = context or {}
        if self.provider == "anthropic":
            return await self._generate_anthropic(system_prompt, user_prompt, context, response_format)
        return await self._generate_openai(system_prompt, user_prompt, context, response_format)

    async def classify_intent(self, text: str, history: Sequence[str] = (), step: str = "any") -> NLUResult:
        payload = json.dumps({"text": text, "history": list(history)[-SETTINGS.history_limit:], "step": step}, ensure_ascii=False)
        try:
            result = await self.generate(CLASSIFIER_INSTRUCTIONS, payload, response_format="json")
            return self._parse_classification(result.text)
        except LLMUnavailableError:
            return self.default_classification()
        except Exception as exc:  # pragma: no cover - network/provider variability
            logger.warning("classifier_failed", extra={"provider": self.provider, "error": repr(exc)})
            return self.default_classification()

    async def answer_question(self, text: str, history: Sequence[str] = (), step: str = "any") -> str:
        context = {"history": list(history)[-SETTINGS.history_limit:], "step": step}
        try:
            result = await self.generate(QA_INSTRUCTIONS, text, context=context)
        except LLMUnavailableError:
            return QA_FALLBACK
        except Exception as exc:  # pragma: no cover - network/provider variability
            logger.warning("qa_responder_failed", extra={"provider": self.provider, "error": repr(exc)})
            return QA_FALLBACK
        answer = result.text.strip()
        return answer or QA_FALLBACK

    @staticmethod
    def default_classification() -> NLUResult:
        return NLUResult(intent=IntentType.OTHER, slots=IntentSlots(), confidence=0.0, follow_up_question=CLARIFY_QUESTION)

    def _parse_classification(self, text: str) -> NLUResult:
        data = json.loads(self._extract_json_blob(text))
        if not isinstance(data, dict):
            raise ValueError("classification_not_object")
        try:
            intent = IntentType(str(data.get("intent") or IntentType.OTHER.value))
        except ValueError:
            intent = IntentType.OTHER
        try:
            slots = IntentSlots.model_validate(data.get("slots") or {})
        except ValidationError:
            slots = IntentSlots()
        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        follow_up = data.get("followup_question") or data.get("follow_up_question")
        return NLUResult(
            intent=intent,
            slots=slots,
            confidence=max(0.0, min(1.0, confidence)),
            follow_up_question=str(follow_up).strip() if follow_up else None,
        )

    def _extract_json_blob(self, text: str) -> str:
        cleaned = (text or "").replace("﻿", "").strip()
        fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", cleaned, re.DOTALL)
        if fenced:
            return fenced.group(1)
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            return cleaned[start : end + 1]
        return cleaned

    async def _generate_openai(self, system_prompt: str, user_prompt: str, context: Dict[str, Any], response_format: str) -> LLMResult:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": self._compose_user_content(user_prompt, context, response_format)},
            ],
            "temperature": 0.2,
        }
        if response_format == "json":
            body["response_format"] = {"type": "json_object"}
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds) as client:
            resp = await client.post(
                f"{SETTINGS.openai_base_url.rstrip('/')}/chat/completions",
                headers={"Authorization": f"Bearer {SETTINGS.openai_api_key}"},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()
        return LLMResult(text=self._extract_chat_completion_text(data), provider="openai", model=self.model, raw=data)

    async def _generate_anthropic(self, system_prompt: str, user_prompt: str, context: Dict[str, Any], response_format: str) -> LLMResult:
        content = self._compose_user_content(user_prompt, context, response_format)
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds) as client:
            resp = await client.post(
                f"{SETTINGS.anthropic_base_url.rstrip('/')}/messages",
                headers={
                    "x-api-key": SETTINGS.anthropic_api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": 600,
                    "temperature": 0.2,
                    "system": system_prompt,
                    "messages": [{"role": "user", "content": content}],
                },
            )
            resp.raise_for_status()
            data = resp.json()
        text_parts: List[str] = []
        for block in data.get("content", []):
            if isinstance(block, dict) and block.get("type") == "text":
                text_parts.append(str(block.get("text", "")))
        return LLMResult(text="\n".join(t for t in text_parts if t).strip(), provider="anthropic", model=self.model, raw=data)

    def _compose_user_content(self, user_prompt: str, context: Dict[str, Any], response_format: str) -> str:
        suffix = "\nDevolvé solo JSON válido." if response_format == "json" else ""
        if not context:
            return f"{user_prompt}{suffix}"
        blob = json.dumps(context, ensure_ascii=False, default=str)[:4000]
        return f"{user_prompt}\n\nContexto JSON:\n{blob}{suffix}"

    def _extract_chat_completion_text(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else {}
        content = message.get("content", "") if isinstance(message, dict) else ""
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            out = [str(part.get("text", "")) for part in content if isinstance(part, dict) and "text" in part]
            return "\n".join(t for t in out if t).strip()
        return str(content).strip()
