"""Perplexity research provider (primary)."""
import logging
import time
from typing import Any, Optional

import httpx

from services.research.config import Settings, is_configured_key, settings as default_settings
from services.research.providers.base import (
    ResearchProvider,
    chat_completion_text,
    log_llm_call,
)

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"

SYSTEM_PROMPT = (
    "You are a helpful assistant that provides accurate and detailed information "
    "about cities, neighborhoods, and local trends."
)


class PerplexityResearchProvider(ResearchProvider):
    name = "perplexity"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or default_settings
        self._api_key = api_key if api_key is not None else self._config.perplexity_api_key
        self._client = client

    @property
    def is_configured(self) -> bool:
        return is_configured_key(self._api_key)

    def _payload(self, query: str, model: str, temperature: float, max_tokens: int) -> dict[str, Any]:
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }

    async def search(
        self,
        query: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Optional[str]:
        if not self.is_configured:
            logger.debug("Perplexity not configured, skipping")
            return None

        model = model or self._config.research_model
        payload = self._payload(
            query,
            model,
            self._config.research_temperature if temperature is None else temperature,
            max_tokens or self._config.research_max_tokens,
        )
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        t0 = time.monotonic()
        try:
            if self._client is not None:
                resp = await self._client.post(
                    PERPLEXITY_URL, json=payload, headers=headers,
                    timeout=self._config.provider_timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self._config.provider_timeout_s) as client:
                    resp = await client.post(PERPLEXITY_URL, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Perplexity request failed: %s", exc)
            return None

        if resp.status_code >= 400:
            logger.error("Perplexity API %d: %s", resp.status_code, _error_message(resp))
            return None

        try:
            body = resp.json()
        except ValueError:
            logger.error("Perplexity returned a non-JSON body")
            return None

        if not isinstance(body, dict):
            logger.error("Perplexity returned a non-object body: %s", type(body).__name__)
            return None

        if "error" in body:
            logger.error("Perplexity error payload: %s", body["error"])
            return None

        usage = body.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        log_llm_call(
            self.name, model, time.monotonic() - t0,
            usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0),
            context="research")
        return chat_completion_text(body)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return str(error or body)[:200]
