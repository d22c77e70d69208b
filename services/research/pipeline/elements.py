"""
City element models.

A CityElement is one atomic fact about a city. `element_value` is a tagged
union keyed by `element_type`: each variant names the fields the synthesis
prompt asks for and keeps any extra fields the model returns.

SynthesisResult parses the synthesis provider's JSON leniently: one bad
element is logged and dropped, the rest survive.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)

ELEMENT_TYPES: tuple[str, ...] = ("slang", "landmark", "sport", "cultural")
ELEMENT_STATUSES: tuple[str, ...] = ("approved", "pending", "rejected")

ElementType = Literal["slang", "landmark", "sport", "cultural"]
ElementStatus = Literal["approved", "pending", "rejected"]

ELEMENT_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")

# Plural / display spellings models sometimes return for element_type
_TYPE_ALIASES = {
    "slangs": "slang",
    "landmarks": "landmark",
    "sports": "sport",
    "culture": "cultural",
    "culturals": "cultural",
}


def normalize_element_key(raw: Any) -> str:
    """
    Normalize a key to lowercase a-z0-9 with single underscores.

    "Joe Louis Arena" -> "joe_louis_arena", "What's Good" -> "whats_good".
    """
    text = unicodedata.normalize("NFKD", str(raw or ""))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = re.sub(r"['’`]", "", text)
    text = re.sub(r"[^a-z0-9]+", "_", text)
    return text.strip("_")


def normalize_element_type(raw: Any) -> str:
    value = str(raw or "").strip().lower()
    return _TYPE_ALIASES.get(value, value)


# ---------------------------------------------------------------------------
# element_value variants
# ---------------------------------------------------------------------------

class ElementValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        """True when no field carries a non-blank value."""
        for value in self.to_dict().values():
            if isinstance(value, str) and not value.strip():
                continue
            if value in ({}, []):
                continue
            return False
        return True


class SlangValue(ElementValue):
    term: Optional[str] = None
    meaning: Optional[str] = None
    usage: Optional[str] = None
    popularity: Optional[Any] = None


class LandmarkValue(ElementValue):
    name: Optional[str] = None
    type: Optional[str] = None
    significance: Optional[str] = None
    year_built: Optional[Any] = None


class SportValue(ElementValue):
    team: Optional[str] = None
    sport: Optional[str] = None
    league: Optional[str] = None
    venue: Optional[str] = None
    achievements: Optional[Any] = None


class CulturalValue(ElementValue):
    name: Optional[str] = None
    type: Optional[str] = None
    significance: Optional[str] = None
    details: Optional[Any] = None


# ---------------------------------------------------------------------------
# CityElement tagged union
# ---------------------------------------------------------------------------

class _CityElementBase(BaseModel):
    element_key: str
    status: ElementStatus = "pending"
    notes: Optional[str] = None

    @field_validator("element_key", mode="before")
    @classmethod
    def _normalize_key(cls, value: Any) -> str:
        key = normalize_element_key(value)
        if not key:
            raise ValueError(f"element_key {value!r} is empty after normalization")
        return key

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> str:
        status = str(value or "").strip().lower()
        return status if status in ELEMENT_STATUSES else "pending"

    @field_validator("element_value", mode="before", check_fields=False)
    @classmethod
    def _default_value(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def has_value(self) -> bool:
        return not self.element_value.is_empty()

    def to_record(self) -> dict[str, Any]:
        return {
            "element_type": self.element_type,
            "element_key": self.element_key,
            "element_value": self.element_value.to_dict(),
            "status": self.status,
            "notes": self.notes,
        }


class SlangElement(_CityElementBase):
    element_type: Literal["slang"]
    element_value: SlangValue = Field(default_factory=SlangValue)


class LandmarkElement(_CityElementBase):
    element_type: Literal["landmark"]
    element_value: LandmarkValue = Field(default_factory=LandmarkValue)


class SportElement(_CityElementBase):
    element_type: Literal["sport"]
    element_value: SportValue = Field(default_factory=SportValue)


class CulturalElement(_CityElementBase):
    element_type: Literal["cultural"]
    element_value: CulturalValue = Field(default_factory=CulturalValue)


CityElement = Annotated[
    Union[SlangElement, LandmarkElement, SportElement, CulturalElement],
    Field(discriminator="element_type"),
]

_CITY_ELEMENT_ADAPTER: TypeAdapter = TypeAdapter(CityElement)


def parse_element(raw: Any) -> Optional[CityElement]:
    """Parse one raw element dict. Returns None (and logs) if it is unusable."""
    if not isinstance(raw, dict):
        logger.warning("Dropping non-object element: %r", raw)
        return None
    data = dict(raw)
    data["element_type"] = normalize_element_type(data.get("element_type"))
    try:
        return _CITY_ELEMENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        logger.warning(
            "Dropping invalid element %s/%s: %s",
            data.get("element_type"), data.get("element_key"), exc.errors()[0].get("msg"))
        return None


class SynthesisResult(BaseModel):
    elements: list[CityElement] = Field(default_factory=list)
    summary: str = ""
    confidence_scores: dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SynthesisResult":
        raw_elements = payload.get("elements") or []
        if not isinstance(raw_elements, list):
            logger.warning("Synthesis 'elements' is not a list, treating as empty")
            raw_elements = []
        elements = [el for el in (parse_element(r) for r in raw_elements) if el is not None]

        scores: dict[str, float] = {}
        raw_scores = payload.get("confidence_scores") or {}
        if isinstance(raw_scores, dict):
            for category, score in raw_scores.items():
                try:
                    scores[str(category)] = max(0.0, min(1.0, float(score)))
                except (TypeError, ValueError):
                    logger.debug("Ignoring non-numeric confidence score %s=%r", category, score)

        summary = payload.get("summary")
        return cls(
            elements=elements,
            summary=summary if isinstance(summary, str) else "",
            confidence_scores=scores,
        )
