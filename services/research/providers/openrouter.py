"""
OpenRouter providers (fallback for both roles).

OpenRouter exposes an OpenAI-compatible chat completions API in front of
many models, so one transport serves as research fallback (a Perplexity
model behind OpenRouter) and synthesis fallback (a Claude model behind
OpenRouter). Synthesis through OpenRouter has no structured mode: the JSON
object is recovered from free text.
"""
import logging
import time
from typing import Any, Optional

import httpx

from services.research.config import Settings, is_configured_key, settings as default_settings
from services.research.providers.base import (
    ProviderError,
    ProviderNotConfiguredError,
    ResearchProvider,
    SynthesisProvider,
    chat_completion_text,
    log_llm_call,
)
from services.research.providers.json_extract import extract_json_object

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
CHAT_COMPLETIONS_URL = f"{OPENROUTER_BASE_URL}/chat/completions"

RESEARCH_SYSTEM_PROMPT = (
    "You are a cultural research assistant specializing in urban fashion "
    "and city-specific elements."
)


class _OpenRouterTransport:
    """Shared request plumbing for the OpenRouter providers."""

    name = "openrouter"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or default_settings
        self._api_key = api_key if api_key is not None else self._config.openrouter_api_key
        self._client = client

    @property
    def is_configured(self) -> bool:
        return is_configured_key(self._api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "HTTP-Referer": self._config.app_url,
            "X-Title": self._config.app_name,
            "Content-Type": "application/json",
        }

    async def _chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        context: str,
    ) -> Optional[str]:
        """POST a chat completion. Raises ProviderError on any failure."""
        if not self.is_configured:
            raise ProviderNotConfiguredError(self.name, "OPENROUTER_API_KEY is not set")

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        t0 = time.monotonic()
        try:
            if self._client is not None:
                resp = await self._client.post(
                    CHAT_COMPLETIONS_URL, json=payload, headers=self._headers(),
                    timeout=self._config.provider_timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self._config.provider_timeout_s) as client:
                    resp = await client.post(CHAT_COMPLETIONS_URL, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderError(self.name, f"API {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderError(self.name, "non-JSON response body") from exc

        if not isinstance(body, dict):
            raise ProviderError(self.name, f"non-object response body: {type(body).__name__}")

        if "error" in body:
            raise ProviderError(self.name, f"error payload: {body['error']}")

        usage = body.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        log_llm_call(
            self.name, model, time.monotonic() - t0,
            usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0),
            context=context)
        return chat_completion_text(body)


class OpenRouterResearchProvider(_OpenRouterTransport, ResearchProvider):

    async def search(
        self,
        query: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Optional[str]:
        if not self.is_configured:
            logger.debug("OpenRouter not configured, skipping research fallback")
            return None
        try:
            return await self._chat(
                [
                    {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                    {"role": "user", "content": query},
                ],
                model=model or self._config.research_fallback_model,
                temperature=self._config.research_temperature if temperature is None else temperature,
                max_tokens=max_tokens or self._config.research_max_tokens,
                context="research",
            )
        except ProviderError as exc:
            logger.error("OpenRouter research failed: %s", exc)
            return None


class OpenRouterSynthesisProvider(_OpenRouterTransport, SynthesisProvider):

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        text = await self._chat(
            messages,
            model=model or self._config.synthesis_fallback_model,
            temperature=self._config.synthesis_temperature if temperature is None else temperature,
            max_tokens=max_tokens or self._config.synthesis_max_tokens,
            context="synthesis",
        )
        return text or ""

    async def generate_json(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        raw = await self.generate(
            prompt,
            system_prompt=system_prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return extract_json_object(raw, "OpenRouter")
