"""Chat-completions client for OpenAI-compatible endpoints with operational logging."""

from __future__ import annotations

import json
import os
import time
import urllib.error
import urllib.request
import uuid
from typing import Any

from app.utils.log import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"


class LLMRequestError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class LLMRateLimitError(LLMRequestError):
    """Provider refused the call because the credential's quota is spent."""


def _prompt_chars(messages: Any) -> int:
    if not isinstance(messages, list):
        return 0
    return sum(len(str(m.get("content", ""))) for m in messages if isinstance(m, dict))


def extract_usage(data: dict[str, Any]) -> tuple[int | None, int | None]:
    """(prompt_tokens, completion_tokens) from a chat-completions reply, if reported."""
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict):
        return None, None
    prompt = usage.get("prompt_tokens")
    completion = usage.get("completion_tokens")
    if isinstance(prompt, int) and isinstance(completion, int):
        return prompt, completion
    return None, None


def _post_json(url: str, body: dict[str, Any], *, api_key: str, timeout_sec: int) -> dict[str, Any]:
    request = urllib.request.Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(request, timeout=timeout_sec) as resp:
        return json.loads(resp.read().decode("utf-8"))


def llm_call(feature: str, **kwargs: Any) -> dict[str, Any]:
    """POST ``kwargs`` to ``{base_url}/chat/completions``.

    ``api_key``, ``base_url`` and ``timeout_sec`` are consumed here; every
    other keyword is sent as the request body. HTTP 429 raises
    ``LLMRateLimitError``; any other failure raises ``LLMRequestError``.
    """
    request_id = uuid.uuid4().hex[:8]
    prompt_chars = _prompt_chars(kwargs.get("messages"))

    if os.getenv("DISABLE_LLM", "").strip() == "1":
        logger.warning("[LLM BLOCKED] feature=%s request_id=%s prompt_chars=%d", feature, request_id, prompt_chars)
        raise LLMRequestError("LLM call blocked by DISABLE_LLM=1")

    api_key = str(kwargs.pop("api_key", "") or "").strip()
    if not api_key:
        raise LLMRequestError("Missing LLM API key")
    base_url = str(kwargs.pop("base_url", "") or DEFAULT_BASE_URL).rstrip("/")
    timeout_sec = int(kwargs.pop("timeout_sec", 60))

    logger.debug("[LLM START] feature=%s request_id=%s model=%s", feature, request_id, kwargs.get("model"))
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        data = _post_json(f"{base_url}/chat/completions", kwargs, api_key=api_key, timeout_sec=timeout_sec)
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore")[:300]
        logger.warning(
            "[LLM ERROR] feature=%s request_id=%s latency_ms=%d status=%s", feature, request_id, elapsed_ms(), exc.code
        )
        if exc.code == 429:
            raise LLMRateLimitError(f"rate limited: {detail}", status=429) from exc
        raise LLMRequestError(f"HTTP {exc.code}: {detail}", status=exc.code) from exc
    except (urllib.error.URLError, TimeoutError) as exc:
        logger.warning(
            "[LLM ERROR] feature=%s request_id=%s latency_ms=%d reason=%s", feature, request_id, elapsed_ms(), exc
        )
        raise LLMRequestError(f"transport failure: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise LLMRequestError(f"reply was not JSON: {exc}") from exc

    prompt_tokens, completion_tokens = extract_usage(data)
    logger.debug(
        "[LLM END] feature=%s request_id=%s latency_ms=%d prompt_chars=%d prompt_tokens=%s completion_tokens=%s",
        feature,
        request_id,
        elapsed_ms(),
        prompt_chars,
        prompt_tokens,
        completion_tokens,
    )
    return data
