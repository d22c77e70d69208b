"""
Provider contracts for the city research pipeline.

Two roles, each with interchangeable implementations tried in order:

  ResearchProvider   query -> prose text, or None when it has nothing to give
  SynthesisProvider  prompt -> free text, or a parsed JSON object

Research providers never raise for provider-side failures: unconfigured,
error payloads, transport failures and empty content all come back as None
so the caller can move on to the next provider. Synthesis providers raise,
because a run has exactly one synthesis step and the caller must be able to
tell an outage (try the next provider) from unparseable output (fatal).

No provider retries. One attempt per call.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Truncation for raw model text carried on parse errors
_RAW_TEXT_PREVIEW_CHARS = 500


class ResearchPipelineError(Exception):
    """Base class for errors raised out of the research pipeline."""


class ConfigurationError(ResearchPipelineError):
    """No usable provider is configured for a required role."""


class ProviderError(ResearchPipelineError):
    """A provider call failed (HTTP error, API error, transport failure)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderNotConfiguredError(ProviderError):
    """The provider has no credential."""


class SynthesisParseError(ResearchPipelineError):
    """Synthesis output could not be parsed as a JSON object."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text[:_RAW_TEXT_PREVIEW_CHARS]


class ResearchProvider(ABC):
    """Turns a natural-language query into prose."""

    name: str = "research"

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def search(
        self,
        query: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Optional[str]:
        """Return prose for `query`, or None if this provider has nothing."""


class SynthesisProvider(ABC):
    """Turns prose plus instructions into text or structured data."""

    name: str = "synthesis"

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        ...

    @abstractmethod
    async def generate_json(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        ...


def log_llm_call(
    provider: str,
    model: str,
    latency_s: float,
    input_tokens: int,
    output_tokens: int,
    context: str = "",
) -> None:
    logger.info(
        "llm_call provider=%s model=%s latency_s=%.3f "
        "input_tokens=%d output_tokens=%d context=%s",
        provider,
        model,
        latency_s,
        input_tokens,
        output_tokens,
        context,
    )


def chat_completion_text(body: Any) -> Optional[str]:
    """First choice's message content from an OpenAI-style chat completion body, or None."""
    if not isinstance(body, dict):
        return None
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str) and content.strip():
        return content
    return None
