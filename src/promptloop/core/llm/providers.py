# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of PromptLoop.
#
# PromptLoop is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
PromptLoop -- Text Generation Providers

Unified async call_provider() entry point over httpx. Failures surface as
GenerationFailed; callers decide whether that aborts a cycle or fails a gate.

Supports: OpenAI, Anthropic, Google, Ollama, Groq, OpenRouter, Mistral,
          Together AI.
"""

import asyncio
import logging
import os
import time
from typing import Callable, Optional, Protocol

import httpx

from promptloop.core.errors import GenerationFailed
from promptloop.core.llm.config import RoleConfig

logger = logging.getLogger("promptloop.llm.providers")

# ── Retry configuration ──────────────────────────────────────────────────

API_MAX_RETRIES = 3
API_RETRY_DELAY_SECONDS = 2
REQUEST_TIMEOUT = 120

_RETRYABLE_STATUS = (429, 500, 502, 503)

# ── OpenAI-compatible providers ──────────────────────────────────────────

_OPENAI_COMPATIBLE = {
    "openai": {"base_url": "https://api.openai.com/v1", "display": "OpenAI"},
    "groq": {"base_url": "https://api.groq.com/openai/v1", "display": "Groq"},
    "openrouter": {"base_url": "https://openrouter.ai/api/v1", "display": "OpenRouter"},
    "mistral": {"base_url": "https://api.mistral.ai/v1", "display": "Mistral AI"},
    "together": {"base_url": "https://api.together.xyz/v1", "display": "Together AI"},
}

OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_TIMEOUT = 300


def _get_key(provider: str) -> Optional[str]:
    """API key from PROMPTLOOP_<PROVIDER>_API_KEY, then <PROVIDER>_API_KEY."""
    name = provider.upper()
    return os.environ.get(f"PROMPTLOOP_{name}_API_KEY") or os.environ.get(f"{name}_API_KEY")


# ── Async retry wrapper ──────────────────────────────────────────────────


async def retry_api_call(
    func: Callable,
    max_retries: int = API_MAX_RETRIES,
    delay_seconds: float = API_RETRY_DELAY_SECONDS,
    component: str = "api",
) -> str:
    """Retry an async API call with exponential backoff.

    Auth errors and other 4xx responses fail immediately; 429/5xx and
    transport errors are retried.
    """
    last_error: Optional[Exception] = None

    for attempt in range(max_retries):
        attempts_made = attempt + 1
        try:
            return await func()
        except httpx.HTTPStatusError as e:
            last_error = e
            status = e.response.status_code

            if status in (401, 403):
                logger.error("[%s] Auth error %d (not retrying)", component, status)
                raise GenerationFailed(
                    f"API key rejected (HTTP {status}). Check the provider key in the environment."
                ) from e

            if status in _RETRYABLE_STATUS and attempt < max_retries - 1:
                wait_time = delay_seconds * (2**attempt)
                logger.warning(
                    "[%s] Retrying in %.1fs (HTTP %d, attempt %d/%d)",
                    component,
                    wait_time,
                    status,
                    attempts_made,
                    max_retries,
                )
                await asyncio.sleep(wait_time)
                continue

            logger.error(
                "[%s] HTTP %d after %d attempt(s): %s", component, status, attempts_made, str(e)[:200]
            )
            raise GenerationFailed(f"HTTP {status} after {attempts_made} attempt(s)") from e

        except httpx.TransportError as e:
            last_error = e
            if attempt >= max_retries - 1:
                break
            wait_time = delay_seconds * (2**attempt)
            logger.warning(
                "[%s] Retrying in %.1fs (attempt %d/%d): %s",
                component,
                wait_time,
                attempts_made,
                max_retries,
                str(e)[:100],
            )
            await asyncio.sleep(wait_time)

        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("[%s] Malformed provider response: %s", component, e)
            raise GenerationFailed(f"Malformed provider response: {e}") from e

    raise GenerationFailed(
        f"API error after {max_retries} attempt(s): {last_error}"
    ) from last_error


# ── Provider-specific callers ────────────────────────────────────────────


async def _call_ollama(
    model: str,
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "stream": False,
        "options": {"num_predict": max_tokens, "temperature": temperature},
    }
    async with httpx.AsyncClient(timeout=OLLAMA_TIMEOUT, transport=transport) as client:
        resp = await client.post(f"{OLLAMA_BASE_URL}/api/chat", json=payload)
        resp.raise_for_status()
        return resp.json()["message"]["content"]


async def _call_openai(
    model: str,
    system_prompt: str,
    user_prompt: str,
    api_key: str,
    max_tokens: int,
    temperature: float,
    base_url: str = "https://api.openai.com/v1",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Call OpenAI or any OpenAI-compatible provider."""
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=transport) as client:
        resp = await client.post(f"{base_url}/chat/completions", headers=headers, json=payload)
        resp.raise_for_status()
        return resp.json()["choices"][0]["message"]["content"]


async def _call_anthropic(
    model: str,
    system_prompt: str,
    user_prompt: str,
    api_key: str,
    max_tokens: int,
    temperature: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    headers = {
        "x-api-key": api_key,
        "anthropic-version": "2023-06-01",
        "Content-Type": "application/json",
    }
    payload = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "system": system_prompt,
        "messages": [{"role": "user", "content": user_prompt}],
    }
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=transport) as client:
        resp = await client.post(
            "https://api.anthropic.com/v1/messages", headers=headers, json=payload
        )
        resp.raise_for_status()
        return resp.json()["content"][0]["text"]


async def _call_google(
    model: str,
    system_prompt: str,
    user_prompt: str,
    api_key: str,
    max_tokens: int,
    temperature: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    url = (
        f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
        f"?key={api_key}"
    )
    payload = {
        "contents": [{"parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]}],
        "generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
    }
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=transport) as client:
        resp = await client.post(url, json=payload)
        resp.raise_for_status()
        return resp.json()["candidates"][0]["content"]["parts"][0]["text"]


# ── Unified call_provider ────────────────────────────────────────────────


async def call_provider(
    role_config: RoleConfig,
    system_prompt: str,
    user_prompt: str,
    component: str = "provider",
    transport: Optional[httpx.AsyncBaseTransport] = None,
    max_retries: int = API_MAX_RETRIES,
    delay_seconds: float = API_RETRY_DELAY_SECONDS,
) -> str:
    """
    Async unified entry point for every text-generation call.

    Args:
        role_config: Provider, model, temperature and token limit
        system_prompt: System message
        user_prompt: User message
        component: Component name for logging
        transport: Optional httpx transport (tests pass httpx.MockTransport)

    Returns:
        str: Model response text

    Raises:
        GenerationFailed: missing key, unknown provider, HTTP or parse failure
    """
    provider = role_config.provider
    model = role_config.model
    max_tokens = role_config.max_tokens
    temperature = role_config.temperature

    logger.info("[%s] Calling %s/%s (prompt=%d chars)", component, provider, model, len(user_prompt))

    if provider == "ollama":

        async def _do():
            return await _call_ollama(
                model, system_prompt, user_prompt, max_tokens, temperature, transport
            )

    elif provider == "anthropic":
        api_key = _get_key("anthropic")
        if not api_key:
            raise GenerationFailed("Anthropic API key not configured. Set ANTHROPIC_API_KEY.")

        async def _do():
            return await _call_anthropic(
                model, system_prompt, user_prompt, api_key, max_tokens, temperature, transport
            )

    elif provider == "google":
        api_key = _get_key("google")
        if not api_key:
            raise GenerationFailed("Google API key not configured. Set GOOGLE_API_KEY.")

        async def _do():
            return await _call_google(
                model, system_prompt, user_prompt, api_key, max_tokens, temperature, transport
            )

    elif provider in _OPENAI_COMPATIBLE:
        cfg = _OPENAI_COMPATIBLE[provider]
        api_key = _get_key(provider)
        if not api_key:
            raise GenerationFailed(
                f"{cfg['display']} API key not configured. Set {provider.upper()}_API_KEY."
            )

        async def _do():
            return await _call_openai(
                model,
                system_prompt,
                user_prompt,
                api_key,
                max_tokens,
                temperature,
                cfg["base_url"],
                transport,
            )

    else:
        raise GenerationFailed(f"Unknown provider: {provider}")

    text = await retry_api_call(
        _do, max_retries=max_retries, delay_seconds=delay_seconds, component=component
    )
    if not text or not text.strip():
        raise GenerationFailed(f"{provider}/{model} returned an empty response")
    return text


# ── Text generator seam ──────────────────────────────────────────────────


class TextGenerator(Protocol):
    """Anything that turns a (system, user) message pair into text."""

    async def generate(self, system_prompt: str, user_prompt: str) -> str: ...


class ProviderTextGenerator:
    """TextGenerator backed by call_provider() for one configured role."""

    def __init__(
        self,
        role_config: RoleConfig,
        component: str = "provider",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.role_config = role_config
        self.component = component
        self._transport = transport

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        from promptloop.core.logging import get_logger

        start = time.monotonic()
        try:
            text = await call_provider(
                self.role_config,
                system_prompt,
                user_prompt,
                component=self.component,
                transport=self._transport,
            )
        except GenerationFailed as e:
            get_logger().llm(
                self.component,
                model=self.role_config.model,
                latency_ms=int((time.monotonic() - start) * 1000),
                success=False,
                error=str(e)[:200],
            )
            raise
        get_logger().llm(
            self.component,
            model=self.role_config.model,
            latency_ms=int((time.monotonic() - start) * 1000),
            chars=len(text),
        )
        return text
