from __future__ import annotations

import os
from dataclasses import dataclass


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    default_llm_provider: str = os.getenv("DEFAULT_LLM_PROVIDER", "openai")
    default_model: str = os.getenv("DEFAULT_MODEL", "gpt-4o-mini")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    anthropic_base_url: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
    llm_timeout_seconds: int = _int("LLM_TIMEOUT_SECONDS", 25)

    listing_provider: str = os.getenv("LISTING_PROVIDER", "mock")
    wp_base_url: str = os.getenv("WP_BASE", "https://lginmobiliaria.com.ar")
    wp_timeout_seconds: float = _float("WP_TIMEOUT_SECONDS", 9.0)
    listing_tolerance_percent: float = _float("LISTING_TOLERANCE_PERCENT", 15.0)
    listing_max_results: int = _int("LISTING_MAX_RESULTS", 3)

    redis_url: str = os.getenv("REDIS_URL", "")

    history_limit: int = _int("HISTORY_LIMIT", 6)
    ai_assist_ttl_seconds: int = _int("AI_ASSIST_TTL_SECONDS", 180)
    qa_escalation_cooldown_seconds: float = _float("QA_ESCALATION_COOLDOWN_SECONDS", 15.0)
    qa_escalation_streak: int = _int("QA_ESCALATION_STREAK", 2)
    handoff_inactivity_seconds: int = _int("HANDOFF_INACTIVITY_SECONDS", 5 * 60)
    handoff_sweep_interval_seconds: int = _int("HANDOFF_SWEEP_INTERVAL_SECONDS", 60)

    company_name: str = os.getenv("COMPANY_NAME", "BR-Group")
    office_address: str = os.getenv("OFFICE_ADDRESS", "[Dirección ficticia]")
    office_phone: str = os.getenv("OFFICE_PHONE", "[Número ficticio]")

    session_store_path: str = os.getenv("SESSION_STORE_PATH", "")
    ticket_store_path: str = os.getenv("TICKET_STORE_PATH", "./data/tickets.json")
    audit_log_path: str = os.getenv("AUDIT_LOG_PATH", "./data/audit.log.jsonl")
    analytics_log_path: str = os.getenv("ANALYTICS_LOG_PATH", "./data/analytics.log.jsonl")
    rate_limit_per_minute: int = _int("RATE_LIMIT_PER_MINUTE", 60)

    debug: bool = _bool("DEBUG", True)


SETTINGS = Settings()
