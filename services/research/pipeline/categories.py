"""
Research category catalog.

Each category defines a display name and the seed keywords used to build
its research query. Category ids double as CityElement.element_type values.
"""
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Category:
    """One research category."""
    id: str
    name: str
    keywords: tuple[str, ...]


CATEGORIES: dict[str, Category] = {
    "slang": Category(
        id="slang",
        name="Local Slang & Expressions",
        keywords=("local slang", "colloquialisms", "street language", "common phrases", "nicknames"),
    ),
    "landmark": Category(
        id="landmark",
        name="Landmarks & Notable Places",
        keywords=("famous landmarks", "iconic buildings", "historic sites", "tourist attractions", "monuments"),
    ),
    "sport": Category(
        id="sport",
        name="Sports Teams & Culture",
        keywords=("professional sports teams", "local teams", "sports venues", "fan culture", "sports history"),
    ),
    "cultural": Category(
        id="cultural",
        name="Cultural Elements",
        keywords=("music scene", "art movements", "food culture", "festivals", "traditions", "local cuisine"),
    ),
}

DEFAULT_CATEGORIES: tuple[str, ...] = ("slang", "landmark", "sport", "cultural")


def get_category(category_id: str) -> Optional[Category]:
    return CATEGORIES.get(category_id)


def resolve_categories(category_ids: list[str]) -> list[Category]:
    """Known categories in request order. Unknown ids are skipped with a warning."""
    resolved = []
    for category_id in category_ids:
        category = get_category(category_id)
        if category is None:
            logger.warning("Unknown category: %s, skipping", category_id)
            continue
        resolved.append(category)
    return resolved


def build_research_query(
    category: Category,
    city_name: str,
    custom_prompt: Optional[str] = None,
) -> str:
    """Research query text for one category. A custom prompt replaces the keyword template."""
    if custom_prompt:
        return f"{custom_prompt} Focus on {category.name} in {city_name}."
    return (
        f"Research {category.name} in {city_name}. "
        f"Include specific examples of {', '.join(category.keywords)}. "
        "Provide detailed information with context and significance."
    )
