import io
import urllib.error

import pytest

import app.utils.llm_client as llm_client
from app.utils.llm_client import LLMRateLimitError, LLMRequestError, extract_usage, llm_call


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://llm.local", code, "error", {}, io.BytesIO(b"slow down"))


def test_llm_call_posts_body_without_transport_options(monkeypatch):
    captured = {}

    def fake_post(url, body, *, api_key, timeout_sec):
        captured.update(url=url, body=body, api_key=api_key, timeout_sec=timeout_sec)
        return {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2}}

    monkeypatch.delenv("DISABLE_LLM", raising=False)
    monkeypatch.setattr(llm_client, "_post_json", fake_post)

    data = llm_call("test", api_key="k1", base_url="http://llm.local/v1/", timeout_sec=5, model="m", messages=[])

    assert captured["url"] == "http://llm.local/v1/chat/completions"
    assert captured["body"] == {"model": "m", "messages": []}
    assert captured["api_key"] == "k1"
    assert captured["timeout_sec"] == 5
    assert extract_usage(data) == (3, 2)


def test_llm_call_maps_429_to_rate_limit(monkeypatch):
    monkeypatch.delenv("DISABLE_LLM", raising=False)
    monkeypatch.setattr(llm_client, "_post_json", lambda *a, **k: (_ for _ in ()).throw(_http_error(429)))

    with pytest.raises(LLMRateLimitError) as info:
        llm_call("test", api_key="k1", messages=[])
    assert info.value.status == 429


def test_llm_call_maps_other_http_errors(monkeypatch):
    monkeypatch.delenv("DISABLE_LLM", raising=False)
    monkeypatch.setattr(llm_client, "_post_json", lambda *a, **k: (_ for _ in ()).throw(_http_error(503)))

    with pytest.raises(LLMRequestError) as info:
        llm_call("test", api_key="k1", messages=[])
    assert not isinstance(info.value, LLMRateLimitError)
    assert info.value.status == 503


def test_llm_call_can_be_disabled(monkeypatch):
    monkeypatch.setenv("DISABLE_LLM", "1")
    with pytest.raises(LLMRequestError):
        llm_call("test", api_key="k1", messages=[])


def test_llm_call_requires_api_key(monkeypatch):
    monkeypatch.delenv("DISABLE_LLM", raising=False)
    with pytest.raises(LLMRequestError):
        llm_call("test", messages=[])


def test_extract_usage_ignores_missing_counts():
    assert extract_usage({}) == (None, None)
    assert extract_usage({"usage": {"prompt_tokens": 1}}) == (None, None)
