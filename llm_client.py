"""LLM client: OpenAI-compatible chat completions with primary/fallback chaining.

Fallback chain: primary provider (local Ollama by default) → fallback
provider (LiteLLM proxy by default) → ``content=None``.

Key design decisions:
  - Uses httpx directly (same pattern as the triage/reasoning tools)
  - Every attempt is bounded by ``asyncio.wait_for`` so a call can never
    outlive its deadline, whatever the transport does
  - Both providers get the same prompts and the same deadline
  - Failures are never raised to callers: they get ``content=None`` and a
    human-readable ``error``
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from config import LlmConfig, LlmProviderConfig
from utils import track_latency

log = logging.getLogger(__name__)

TEMPERATURE = 0.1
MAX_TOKENS = 2048


@dataclass
class LlmResponse:
    content: str | None
    model: str
    tokens: int = 0
    duration_ms: float = 0.0
    error: str | None = None


class ProviderError(RuntimeError):
    """A single provider attempt failed."""


def chat_completions_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/v1"):
        return f"{base}/chat/completions"
    return f"{base}/v1/chat/completions"


def build_request_body(model: str, system_prompt: str, user_prompt: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": TEMPERATURE,
        "max_tokens": MAX_TOKENS,
        "response_format": {"type": "json_object"},
    }


def parse_completion(payload: Any) -> tuple[str, int]:
    """Pull ``(content, total_tokens)`` out of a chat-completions envelope."""
    if not isinstance(payload, dict):
        raise ProviderError("Invalid response structure")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ProviderError("Invalid response structure")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise ProviderError("Missing message content")
    usage = payload.get("usage")
    tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
    if isinstance(tokens, bool) or not isinstance(tokens, (int, float)):
        tokens = 0
    return content, int(tokens)


async def call_chat_completion(
    provider: LlmProviderConfig,
    system_prompt: str,
    user_prompt: str,
    timeout: float,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[str, int]:
    """Call one provider. Returns ``(content, tokens)`` or raises ProviderError."""
    headers = {"Content-Type": "application/json"}
    if provider.api_key:
        headers["Authorization"] = f"Bearer {provider.api_key}"
    body = build_request_body(provider.model, system_prompt, user_prompt)
    url = chat_completions_url(provider.base_url)

    async def _post() -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            return await client.post(url, headers=headers, json=body)

    start = time.monotonic()
    try:
        resp = await asyncio.wait_for(_post(), timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        elapsed = (time.monotonic() - start) * 1000
        log.debug("%s timed out after %.0fms", provider.model_id, elapsed)
        raise ProviderError(f"Timeout after {elapsed:.0f}ms") from exc
    except httpx.HTTPStatusError as exc:
        raise ProviderError(f"HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        log.debug("%s request error: %s", provider.model_id, exc)
        raise ProviderError(str(exc) or type(exc).__name__) from exc
    except ValueError as exc:
        raise ProviderError("Failed to parse LLM response JSON") from exc

    return parse_completion(payload)


class LlmClient:
    """Two-provider client. ``generate`` never raises."""

    def __init__(
        self,
        primary: LlmProviderConfig,
        fallback: LlmProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.primary = primary
        self.fallback = fallback
        self._transport = transport

    @classmethod
    def from_config(cls, llm: LlmConfig, **kwargs: Any) -> LlmClient:
        return cls(llm.primary, llm.fallback, **kwargs)

    @property
    def model_id(self) -> str:
        return self.primary.model_id

    async def _attempt(
        self,
        provider: LlmProviderConfig,
        system_prompt: str,
        user_prompt: str,
        timeout: float,
    ) -> tuple[str | None, int, str]:
        try:
            content, tokens = await call_chat_completion(
                provider, system_prompt, user_prompt, timeout, transport=self._transport,
            )
            return content, tokens, ""
        except ProviderError as exc:
            return None, 0, str(exc) or "unknown"
        except Exception as exc:
            log.debug("%s unexpected failure", provider.model_id, exc_info=True)
            return None, 0, str(exc) or type(exc).__name__

    @track_latency("llm")
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        timeout_ms: int,
    ) -> LlmResponse:
        start = time.monotonic()
        timeout = max(0.001, timeout_ms / 1000)

        content, tokens, primary_error = await self._attempt(
            self.primary, system_prompt, user_prompt, timeout,
        )
        if content is not None:
            return LlmResponse(
                content=content,
                model=self.primary.model_id,
                tokens=tokens,
                duration_ms=(time.monotonic() - start) * 1000,
            )

        log.warning(
            "Primary LLM (%s) failed: %s; trying fallback",
            self.primary.model_id, primary_error,
        )

        content, tokens, fallback_error = await self._attempt(
            self.fallback, system_prompt, user_prompt, timeout,
        )
        if content is not None:
            return LlmResponse(
                content=content,
                model=self.fallback.model_id,
                tokens=tokens,
                duration_ms=(time.monotonic() - start) * 1000,
            )

        log.warning(
            "Fallback LLM (%s) also failed: %s",
            self.fallback.model_id, fallback_error,
        )
        return LlmResponse(
            content=None,
            model=self.primary.model_id,
            tokens=0,
            duration_ms=(time.monotonic() - start) * 1000,
            error=f"Both providers failed. Primary: {primary_error}; Fallback: {fallback_error}",
        )
