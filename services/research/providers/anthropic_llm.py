"""
Anthropic synthesis provider (primary).

Uses anthropic.AsyncAnthropic. Structured mode asks for JSON-only output
and parses it strictly; anything that is not a JSON object raises
SynthesisParseError.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import anthropic

from services.research.config import Settings, is_configured_key, settings as default_settings
from services.research.providers.base import (
    ProviderError,
    ProviderNotConfiguredError,
    SynthesisProvider,
    log_llm_call,
)
from services.research.providers.json_extract import parse_json_object

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
JSON_ONLY_SUFFIX = " Always respond with valid JSON only, no additional text or markdown formatting."


class AnthropicSynthesisProvider(SynthesisProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[Settings] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self._config = config or default_settings
        self._api_key = api_key if api_key is not None else self._config.anthropic_api_key
        self._client = client

    @property
    def is_configured(self) -> bool:
        return is_configured_key(self._api_key)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self._config.provider_timeout_s,
                max_retries=0,
            )
        return self._client

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        if not self.is_configured:
            raise ProviderNotConfiguredError(self.name, "ANTHROPIC_API_KEY is not set")

        model = model or self._config.synthesis_model
        t0 = time.monotonic()
        try:
            message = await self._get_client().messages.create(
                model=model,
                max_tokens=max_tokens or self._config.synthesis_max_tokens,
                temperature=self._config.synthesis_temperature if temperature is None else temperature,
                system=system_prompt or DEFAULT_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as exc:
            raise ProviderError(self.name, f"Claude API error: {exc.message} (status {exc.status_code})") from exc
        except anthropic.APIError as exc:
            raise ProviderError(self.name, f"Claude request failed: {exc}") from exc

        usage = getattr(message, "usage", None)
        log_llm_call(
            self.name, model, time.monotonic() - t0,
            getattr(usage, "input_tokens", 0) or 0,
            getattr(usage, "output_tokens", 0) or 0,
            context="synthesis")

        return "\n".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )

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
            system_prompt=(system_prompt or DEFAULT_SYSTEM_PROMPT) + JSON_ONLY_SUFFIX,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return parse_json_object(raw, "Claude")
