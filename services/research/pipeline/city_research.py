"""City research orchestrator.

Turns a city name into stored CityElements:

  NOT_STARTED -> RESEARCHING -> SYNTHESIZING -> PERSISTING -> COMPLETED

Any failure before COMPLETED is FAILED: the city goes back to draft and
the exception propagates.

Research providers and synthesis providers are ordered lists; each step
walks its list until a provider produces something. Coverage shortfalls
are logged, never raised. Individual upsert failures are counted, never
raised.

Usage:
    async with standalone_pool() as pool:
        result = await run_city_research(pool, city_id, "Detroit", ["slang", "sport"])
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from services.research.config import Settings, settings as default_settings
from services.research.pipeline.categories import (
    DEFAULT_CATEGORIES,
    Category,
    build_research_query,
    resolve_categories,
)
from services.research.pipeline.element_store import CityElementStore
from services.research.pipeline.element_validator import ElementCounts, count_and_validate
from services.research.pipeline.elements import CityElement, SynthesisResult
from services.research.pipeline.synthesis_prompt import (
    PROMPT_VERSION,
    SYNTHESIS_SYSTEM_PROMPT,
    ResearchQuery,
    build_synthesis_prompt,
    join_raw_research,
)
from services.research.providers.anthropic_llm import AnthropicSynthesisProvider
from services.research.providers.base import (
    ConfigurationError,
    ProviderError,
    ResearchProvider,
    SynthesisProvider,
)
from services.research.providers.openrouter import (
    OpenRouterResearchProvider,
    OpenRouterSynthesisProvider,
)
from services.research.providers.perplexity import PerplexityResearchProvider

logger = logging.getLogger(__name__)

STAGE_NOT_STARTED = "NOT_STARTED"
STAGE_RESEARCHING = "RESEARCHING"
STAGE_SYNTHESIZING = "SYNTHESIZING"
STAGE_PERSISTING = "PERSISTING"
STAGE_COMPLETED = "COMPLETED"
STAGE_FAILED = "FAILED"

CITY_STATUS_ACTIVE = "active"
CITY_STATUS_DRAFT = "draft"


@dataclass
class ResearchResult:
    city_id: str
    city_name: str
    elements: list[CityElement]
    raw_research: str
    synthesis: str
    timestamp: str
    confidence_scores: dict[str, float] = field(default_factory=dict)
    stored_count: int = 0
    failed_keys: list[str] = field(default_factory=list)
    stored_counts: Optional[ElementCounts] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cityId": self.city_id,
            "cityName": self.city_name,
            "elements": [element.to_record() for element in self.elements],
            "raw_research": self.raw_research,
            "synthesis": self.synthesis,
            "timestamp": self.timestamp,
            "confidence_scores": self.confidence_scores,
            "stored_count": self.stored_count,
            "failed_keys": self.failed_keys,
            "stored_counts": self.stored_counts.as_dict() if self.stored_counts else None,
        }


def default_research_providers(config: Optional[Settings] = None) -> list[ResearchProvider]:
    return [PerplexityResearchProvider(config=config), OpenRouterResearchProvider(config=config)]


def default_synthesis_providers(config: Optional[Settings] = None) -> list[SynthesisProvider]:
    return [AnthropicSynthesisProvider(config=config), OpenRouterSynthesisProvider(config=config)]


def derive_storage_status(element: CityElement) -> str:
    """The model's "approved" only stands when it also produced a value; everything else is pending."""
    if element.status == "approved" and element.has_value:
        return "approved"
    return "pending"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def research_category(
    providers: list[ResearchProvider],
    category: Category,
    city_name: str,
    custom_prompt: Optional[str] = None,
) -> Optional[ResearchQuery]:
    """Query providers in order until one returns text. None if all come back empty."""
    query = build_research_query(category, city_name, custom_prompt)
    for provider in providers:
        if not provider.is_configured:
            continue
        text = await provider.search(query)
        if text:
            return ResearchQuery(category=category.id, query_text=query,
                                 response_text=text, provider=provider.name)
        logger.warning("%s returned nothing for %s/%s, trying next provider",
                       provider.name, city_name, category.id)
    return None


async def synthesize(
    providers: list[SynthesisProvider],
    prompt: str,
    system_prompt: str = SYNTHESIS_SYSTEM_PROMPT,
) -> dict[str, Any]:
    """
    Structured synthesis through the first configured provider that answers.

    ProviderError falls through to the next provider. SynthesisParseError
    propagates: unparseable output is fatal for the run.
    """
    configured = [p for p in providers if p.is_configured]
    if not configured:
        raise ConfigurationError("No synthesis provider configured (ANTHROPIC_API_KEY or OPENROUTER_API_KEY)")

    last_error: Optional[ProviderError] = None
    for provider in configured:
        try:
            return await provider.generate_json(prompt, system_prompt=system_prompt)
        except ProviderError as exc:
            logger.error("Synthesis provider %s failed: %s", provider.name, exc)
            last_error = exc
    raise last_error


async def persist_elements(
    store: CityElementStore,
    city_id: str,
    city_name: str,
    elements: list[CityElement],
) -> tuple[int, list[str]]:
    """
    Upsert every element. Returns (stored_count, failed_keys) where failed keys
    read "<element_type>/<element_key>". One failure never stops the batch.
    """
    stored = 0
    failed: list[str] = []
    for element in elements:
        try:
            await store.upsert_element(
                city_id,
                element.element_type,
                element.element_key,
                element.element_value.to_dict(),
                derive_storage_status(element),
                element.notes or f"Auto-generated from {city_name} research",
            )
            stored += 1
        except Exception as exc:
            logger.error("Failed to store element %s/%s: %s",
                         element.element_type, element.element_key, exc)
            failed.append(f"{element.element_type}/{element.element_key}")
    return stored, failed


async def run_city_research(
    pool: asyncpg.Pool,
    city_id: str,
    city_name: str,
    categories: Optional[list[str]] = None,
    custom_prompt: Optional[str] = None,
    *,
    research_providers: Optional[list[ResearchProvider]] = None,
    synthesis_providers: Optional[list[SynthesisProvider]] = None,
    config: Optional[Settings] = None,
) -> ResearchResult:
    """Research a city end to end. Raises on configuration and parse errors (city -> draft)."""
    config = config or default_settings
    categories = list(categories) if categories is not None else list(DEFAULT_CATEGORIES)
    research_providers = research_providers if research_providers is not None else default_research_providers(config)
    synthesis_providers = synthesis_providers if synthesis_providers is not None else default_synthesis_providers(config)
    store = CityElementStore(pool)

    stage = STAGE_NOT_STARTED
    logger.info("Starting research for %s (%s)", city_name, city_id)

    try:
        await store.set_city_status(city_id, CITY_STATUS_ACTIVE)

        # Research
        stage = STAGE_RESEARCHING
        if not any(p.is_configured for p in research_providers):
            raise ConfigurationError("No research provider configured (PERPLEXITY_API_KEY or OPENROUTER_API_KEY)")
        if not any(p.is_configured for p in synthesis_providers):
            raise ConfigurationError("No synthesis provider configured (ANTHROPIC_API_KEY or OPENROUTER_API_KEY)")

        queries: list[ResearchQuery] = []
        for category in resolve_categories(categories):
            logger.info("Researching %s for %s...", category.id, city_name)
            result = await research_category(research_providers, category, city_name, custom_prompt)
            if result is None:
                logger.warning("No research text for %s/%s from any provider, skipping", city_name, category.id)
                continue
            queries.append(result)
        if not queries:
            logger.warning("No research text gathered for %s; synthesizing without source data", city_name)

        # Synthesis
        stage = STAGE_SYNTHESIZING
        logger.info("Synthesizing research for %s (%d categories, prompt_version=%s)...",
                    city_name, len(queries), PROMPT_VERSION)
        payload = await synthesize(synthesis_providers, build_synthesis_prompt(city_name, queries))
        synthesis = SynthesisResult.from_payload(payload)

        synthesized_counts = count_and_validate(synthesis.elements)
        if not synthesized_counts.is_valid:
            logger.warning("Insufficient elements synthesized for %s: %s",
                           city_name, ", ".join(synthesized_counts.shortfalls()))

        # Persistence
        stage = STAGE_PERSISTING
        logger.info("Storing %d elements for %s...", len(synthesis.elements), city_name)
        stored_count, failed_keys = await persist_elements(store, city_id, city_name, synthesis.elements)
        logger.info("Stored %d/%d elements for %s", stored_count, len(synthesis.elements), city_name)
        if failed_keys:
            logger.warning("Failed to store elements: %s", ", ".join(failed_keys))

    except Exception:
        logger.exception("Research failed for %s: %s -> %s", city_name, stage, STAGE_FAILED)
        await store.set_city_status(city_id, CITY_STATUS_DRAFT)
        raise

    # Completion: authoritative re-check against what the store actually holds
    stored_elements = await store.read_elements(city_id)
    stored_counts = count_and_validate(stored_elements)
    if not stored_counts.is_valid:
        logger.warning("Stored elements do not meet minimum requirements for %s: %s",
                       city_name, ", ".join(stored_counts.shortfalls()))
    else:
        logger.info("Minimum requirements met for %s: %s", city_name, stored_counts.as_dict())

    await store.set_city_status(city_id, CITY_STATUS_ACTIVE)
    await store.record_analytics(city_id, city_name, stored_count, categories)

    logger.info("Research finished for %s: %s -> %s, %d elements generated, %d stored",
                city_name, stage, STAGE_COMPLETED, len(synthesis.elements), stored_count)

    return ResearchResult(
        city_id=city_id,
        city_name=city_name,
        elements=synthesis.elements,
        raw_research=join_raw_research(queries),
        synthesis=synthesis.summary,
        timestamp=_timestamp(),
        confidence_scores=synthesis.confidence_scores,
        stored_count=stored_count,
        failed_keys=failed_keys,
        stored_counts=stored_counts,
    )
