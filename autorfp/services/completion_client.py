"""Completion client — OpenAI-compatible chat/completions over the shared httpx client.

Purpose:
  Foundation layer for offer extraction. Wraps the configured inference
  endpoint with retry logic, structured JSON parsing and token usage logging.

Design rules:
  - Every call returns a result or None (callers decide what None means)
  - All failures are logged but never raised
  - Token usage logged for cost tracking
  - Retries with exponential backoff on transient errors (429, 500, 502, 503, 504)

Called by: services/offer_extraction.py
Depends on: http_client, config
"""

import asyncio
import json
import re
import time
from typing import Any

from loguru import logger

from ..config import settings
from ..http_client import http

# HTTP status codes worth retrying
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _headers() -> dict:
    return {
        "Authorization": f"Bearer {settings.llm_api_key}",
        "Content-Type": "application/json",
    }


def _api_url() -> str:
    return settings.llm_base_url.rstrip("/") + "/chat/completions"


async def _call_llm(
    messages: list[dict],
    *,
    max_tokens: int,
    temperature: float,
    timeout: int,
) -> dict | None:
    """Low-level call with retries and token logging.

    Returns the full API response dict, or None on failure.
    """
    if not settings.llm_api_key:
        logger.warning("LLM_API_KEY not set — skipping completion call")
        return None

    body = {
        "model": settings.llm_model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }

    for attempt in range(MAX_RETRIES):
        try:
            start = time.monotonic()
            resp = await http.post(_api_url(), headers=_headers(), json=body, timeout=timeout)
            elapsed = time.monotonic() - start

            if resp.status_code == 200:
                data = resp.json()
                usage = data.get("usage", {})
                logger.info(
                    "Completion OK | model={} | in={} | out={} | {:.1f}s",
                    settings.llm_model,
                    usage.get("prompt_tokens", "?"),
                    usage.get("completion_tokens", "?"),
                    elapsed,
                )
                return data

            if resp.status_code in RETRYABLE_STATUSES and attempt < MAX_RETRIES - 1:
                delay = BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Completion {} (attempt {}/{}), retry in {:.1f}s: {}",
                    resp.status_code, attempt + 1, MAX_RETRIES, delay,
                    resp.text[:200],
                )
                await asyncio.sleep(delay)
                continue

            logger.warning("Completion API {}: {}", resp.status_code, resp.text[:200])
            return None

        except Exception as e:
            if attempt < MAX_RETRIES - 1:
                delay = BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Completion call failed (attempt {}/{}), retry in {:.1f}s: {}",
                    attempt + 1, MAX_RETRIES, delay, e,
                )
                await asyncio.sleep(delay)
                continue
            logger.warning("Completion call failed after {} attempts: {}", MAX_RETRIES, e)
            return None

    return None


def _extract_text(data: dict) -> str | None:
    choices = data.get("choices", [])
    if not choices:
        return None
    return choices[0].get("message", {}).get("content")


async def complete_text(
    prompt: str,
    *,
    system: str = "",
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: int | None = None,
) -> str | None:
    """Call the completion service for a free-form text response.

    Args:
        prompt: User message content.
        system: System prompt.
        temperature: Defaults to settings.llm_temperature.
        max_tokens: Defaults to settings.llm_max_tokens.
        timeout: Request timeout seconds, defaults to settings.llm_timeout.

    Returns:
        Text response or None on failure.
    """
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    data = await _call_llm(
        messages,
        max_tokens=max_tokens or settings.llm_max_tokens,
        temperature=settings.llm_temperature if temperature is None else temperature,
        timeout=timeout or settings.llm_timeout,
    )
    if not data:
        return None
    return _extract_text(data)


def safe_json_parse(text: str | None) -> dict | list | None:
    """Parse JSON from model output that may carry markdown fences or preamble.

    Tries, in order: the whole text, a fenced ```json block, the outermost
    {...} substring.
    """
    if not text:
        return None

    cleaned = text.strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    m = _FENCE_RE.search(cleaned)
    if m:
        try:
            return json.loads(m.group(1).strip())
        except json.JSONDecodeError:
            pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            pass

    logger.debug("JSON parse failed: {}...", text[:100])
    return None
