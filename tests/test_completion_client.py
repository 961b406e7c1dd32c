"""Tests for the completion client — mocked HTTP calls, no real API needed.

Covers: complete_text, retry logic, unconfigured key, JSON parsing edge
        cases (fences, preamble), token logging, error handling.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autorfp.config import settings
from autorfp.services.completion_client import (
    MAX_RETRIES,
    _call_llm,
    complete_text,
    safe_json_parse,
)


@pytest.fixture(autouse=True)
def _api_key(monkeypatch):
    monkeypatch.setattr(settings, "llm_api_key", "test-key-for-testing")


# ── Fixtures ──────────────────────────────────────────────────────────


def _mock_response(status_code=200, json_data=None, text=""):
    """Create a mock httpx response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text or json.dumps(json_data or {})
    resp.json.return_value = json_data or {}
    return resp


def _chat_response(content, prompt_tokens=50, completion_tokens=20):
    """Build a standard chat completion response dict."""
    return {
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


# ── complete_text ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_complete_text_basic():
    with patch("autorfp.services.completion_client.http") as mock_http:
        mock_http.post = AsyncMock(return_value=_mock_response(200, _chat_response("Hello there")))
        result = await complete_text("Say hello", system="Be brief", temperature=0.1, max_tokens=64)

    assert result == "Hello there"
    mock_http.post.assert_called_once()
    body = mock_http.post.call_args.kwargs["json"]
    assert body["temperature"] == 0.1
    assert body["max_tokens"] == 64
    assert body["messages"][0] == {"role": "system", "content": "Be brief"}
    assert body["messages"][1] == {"role": "user", "content": "Say hello"}
    headers = mock_http.post.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer test-key-for-testing"


@pytest.mark.asyncio
async def test_url_uses_configured_base(monkeypatch):
    monkeypatch.setattr(settings, "llm_base_url", "https://llm.example.com/v1/")
    with patch("autorfp.services.completion_client.http") as mock_http:
        mock_http.post = AsyncMock(return_value=_mock_response(200, _chat_response("ok")))
        await complete_text("hi")
    assert mock_http.post.call_args.args[0] == "https://llm.example.com/v1/chat/completions"


@pytest.mark.asyncio
async def test_no_system_prompt_sends_only_user_message():
    with patch("autorfp.services.completion_client.http") as mock_http:
        mock_http.post = AsyncMock(return_value=_mock_response(200, _chat_response("ok")))
        await complete_text("hi")
    messages = mock_http.post.call_args.kwargs["json"]["messages"]
    assert [m["role"] for m in messages] == ["user"]


@pytest.mark.asyncio
async def test_missing_api_key_returns_none(monkeypatch):
    monkeypatch.setattr(settings, "llm_api_key", "")
    with patch("autorfp.services.completion_client.http") as mock_http:
        mock_http.post = AsyncMock()
        assert await complete_text("hi") is None
    mock_http.post.assert_not_called()


@pytest.mark.asyncio
async def test_retries_on_429_then_succeeds():
    responses = [
        _mock_response(429, text="rate limited"),
        _mock_response(200, _chat_response("after retry")),
    ]
    with patch("autorfp.services.completion_client.http") as mock_http, \
         patch("autorfp.services.completion_client.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        mock_http.post = AsyncMock(side_effect=responses)
        result = await complete_text("hi")

    assert result == "after retry"
    assert mock_http.post.call_count == 2
    mock_sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_gives_up_after_max_retries_on_5xx():
    with patch("autorfp.services.completion_client.http") as mock_http, \
         patch("autorfp.services.completion_client.asyncio.sleep", new=AsyncMock()):
        mock_http.post = AsyncMock(return_value=_mock_response(503, text="unavailable"))
        result = await complete_text("hi")

    assert result is None
    assert mock_http.post.call_count == MAX_RETRIES


@pytest.mark.asyncio
async def test_non_retryable_status_returns_none_immediately():
    with patch("autorfp.services.completion_client.http") as mock_http:
        mock_http.post = AsyncMock(return_value=_mock_response(401, text="bad key"))
        assert await complete_text("hi") is None
    assert mock_http.post.call_count == 1


@pytest.mark.asyncio
async def test_network_exception_retried_then_none():
    with patch("autorfp.services.completion_client.http") as mock_http, \
         patch("autorfp.services.completion_client.asyncio.sleep", new=AsyncMock()):
        mock_http.post = AsyncMock(side_effect=ConnectionError("reset"))
        data = await _call_llm([{"role": "user", "content": "x"}], max_tokens=10, temperature=0, timeout=5)

    assert data is None
    assert mock_http.post.call_count == MAX_RETRIES


@pytest.mark.asyncio
async def test_empty_choices_returns_none():
    with patch("autorfp.services.completion_client.http") as mock_http:
        mock_http.post = AsyncMock(return_value=_mock_response(200, {"choices": []}))
        assert await complete_text("hi") is None


# ── safe_json_parse ───────────────────────────────────────────────────


def test_parse_direct_json():
    assert safe_json_parse('{"a": 1}') == {"a": 1}


def test_parse_fenced_block():
    text = 'Here you go:\n```json\n{"total_price": 1200}\n```\nThanks'
    assert safe_json_parse(text) == {"total_price": 1200}


def test_parse_outermost_object_with_preamble():
    text = 'Sure! The offer is {"items": [{"label": "Laptop"}]} as requested.'
    assert safe_json_parse(text) == {"items": [{"label": "Laptop"}]}


def test_parse_failure_returns_none():
    assert safe_json_parse("no json here") is None
    assert safe_json_parse("") is None
    assert safe_json_parse(None) is None
    assert safe_json_parse("{broken: json") is None
