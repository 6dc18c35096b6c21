"""Environment-driven settings and credential loading."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values, load_dotenv

from app.utils.llm_client import DEFAULT_BASE_URL

DEFAULT_MODEL = "llama-3.1-8b-instant"
DEFAULT_BACKFILL_AFTER = "2025/06/01"
_EXTRA_KEY_RE = re.compile(r"^GROQ_API_KEY_(\d+)$")


class ConfigError(ValueError):
    """Required configuration is missing or malformed."""


@dataclass(slots=True)
class Settings:
    database_path: str
    groq_api_keys: list[str]
    env_path: Path = field(default_factory=lambda: Path(".env"))
    groq_model: str = DEFAULT_MODEL
    groq_base_url: str = DEFAULT_BASE_URL
    requests_per_minute: int = 30
    llm_timeout_sec: int = 60
    max_body_chars: int = 2000
    uncertain_threshold: float = 0.6
    skip_other_confidence: float = 0.8
    ghost_after_days: int = 21
    backfill_after_date: str = DEFAULT_BACKFILL_AFTER
    sync_lookback_days: int = 7
    page_size: int = 100
    sync_status_path: str = "logs/sync-status.json"
    gmail_credentials_path: str = "credentials.json"
    gmail_token_path: str = ".tokens/gmail_token.json"
    log_level: str = "INFO"
    log_dir: str = "logs"


def _credentials_from_mapping(values: dict[str, str | None]) -> list[str]:
    keys: list[str] = []
    primary = (values.get("GROQ_API_KEY") or "").strip()
    if primary:
        keys.append(primary)
    numbered: list[tuple[int, str]] = []
    for name, raw in values.items():
        m = _EXTRA_KEY_RE.match(name)
        if m and raw and raw.strip():
            numbered.append((int(m.group(1)), raw.strip()))
    for _, value in sorted(numbered):
        if value not in keys:
            keys.append(value)
    return keys


def load_credentials(env_path: str | Path | None = None) -> list[str]:
    """Read the ordered credential list, re-reading the .env file on every call."""
    merged: dict[str, str | None] = dict(os.environ)
    path = Path(env_path) if env_path else Path(".env")
    if path.exists():
        merged.update(dotenv_values(path))
    return _credentials_from_mapping(merged)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _require(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def load_settings(env_path: str | Path | None = None, *, require_credentials: bool = True) -> Settings:
    path = Path(env_path) if env_path else Path(".env")
    if path.exists():
        load_dotenv(path, override=False)

    database_path = _require("DATABASE_PATH")
    keys = load_credentials(path)
    if require_credentials and not keys:
        raise ConfigError("Missing required environment variable: GROQ_API_KEY")

    threshold = _env_float("UNCERTAIN_CONFIDENCE_THRESHOLD", 0.6)
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError("UNCERTAIN_CONFIDENCE_THRESHOLD must be within 0..1")

    return Settings(
        database_path=database_path,
        groq_api_keys=keys,
        env_path=path,
        groq_model=os.environ.get("GROQ_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
        groq_base_url=os.environ.get("GROQ_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
        requests_per_minute=_env_int("GROQ_RPM", 30),
        llm_timeout_sec=_env_int("GROQ_TIMEOUT_SEC", 60),
        uncertain_threshold=threshold,
        skip_other_confidence=_env_float("SKIP_OTHER_CONFIDENCE", 0.8),
        ghost_after_days=_env_int("GHOST_AFTER_DAYS", 21),
        backfill_after_date=os.environ.get("BACKFILL_AFTER_DATE", DEFAULT_BACKFILL_AFTER).strip() or DEFAULT_BACKFILL_AFTER,
        sync_lookback_days=_env_int("SYNC_LOOKBACK_DAYS", 7),
        sync_status_path=os.environ.get("SYNC_STATUS_PATH", "logs/sync-status.json").strip(),
        gmail_credentials_path=os.environ.get("GMAIL_CREDENTIALS_PATH", "credentials.json").strip(),
        gmail_token_path=os.environ.get("GMAIL_TOKEN_PATH", ".tokens/gmail_token.json").strip(),
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_dir=os.environ.get("LOG_DIR", "logs").strip(),
    )
