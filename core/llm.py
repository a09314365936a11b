"""
OpenAI chat-completions client for document analysis.

PROVIDER: OpenAI (vision-capable model, ``DOCUMENT_ANALYSIS_MODEL``)
REQUIRES: OPENAI_API_KEY

Both entry points return the raw message content and raise ``LLMCallError``
with a short reason on any failure, so callers can record why analysis failed.
"""
from __future__ import annotations

import logging

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class LLMCallError(Exception):
    pass


def is_configured() -> bool:
    return bool(getattr(settings, "OPENAI_API_KEY", ""))


def configured_model() -> str:
    return getattr(settings, "DOCUMENT_ANALYSIS_MODEL", "gpt-4o-mini")


def call_openai_vision(
    prompt: str,
    image_base64: str,
    image_type: str = "image/jpeg",
    *,
    temperature: float = 0.1,
    max_tokens: int | None = None,
) -> str:
    """Send one image plus instructions; return the model's text reply."""
    content = [
        {
            "type": "image_url",
            "image_url": {"url": f"data:{image_type};base64,{image_base64}"},
        },
        {"type": "text", "text": prompt},
    ]
    return _chat([{"role": "user", "content": content}], temperature=temperature, max_tokens=max_tokens)


def call_openai_text(
    prompt: str,
    *,
    temperature: float = 0.1,
    max_tokens: int | None = None,
) -> str:
    """Send a text-only prompt; return the model's text reply."""
    return _chat([{"role": "user", "content": prompt}], temperature=temperature, max_tokens=max_tokens)


def _chat(messages: list[dict], *, temperature: float, max_tokens: int | None) -> str:
    api_key = getattr(settings, "OPENAI_API_KEY", "")
    if not api_key:
        raise LLMCallError("OPENAI_API_KEY not set")

    api_base = getattr(settings, "OPENAI_API_BASE", "https://api.openai.com/v1").rstrip("/")
    model = configured_model()
    timeout = getattr(settings, "DOCUMENT_ANALYSIS_TIMEOUT_SECONDS", 45)
    if max_tokens is None:
        max_tokens = getattr(settings, "DOCUMENT_ANALYSIS_MAX_TOKENS", 1024)

    logger.info("[PROVIDER: OpenAI] Calling %s for document analysis", model)
    try:
        response = requests.post(
            f"{api_base}/chat/completions",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "response_format": {"type": "json_object"},
            },
            timeout=timeout,
        )
    except requests.exceptions.Timeout as exc:
        logger.warning("[PROVIDER: OpenAI] Request timed out after %ds (model=%s)", timeout, model)
        raise LLMCallError(f"timed out after {timeout}s") from exc
    except requests.exceptions.RequestException as exc:
        logger.warning("[PROVIDER: OpenAI] Request failed: %s", exc)
        raise LLMCallError(f"request failed: {exc}") from exc

    if response.status_code != 200:
        body_snippet = response.text[:400] if response.text else "(empty)"
        logger.warning(
            "[PROVIDER: OpenAI] API error: status=%s body=%s",
            response.status_code,
            body_snippet,
        )
        raise LLMCallError(f"HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as exc:
        raise LLMCallError("response was not JSON") from exc

    choices = data.get("choices") or []
    content = choices[0].get("message", {}).get("content") if choices else None
    if not content:
        logger.warning("[PROVIDER: OpenAI] API returned empty choices")
        raise LLMCallError("empty response")

    logger.info("[PROVIDER: OpenAI] Document analysis call succeeded")
    return content
