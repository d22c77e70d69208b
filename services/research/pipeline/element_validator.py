"""Minimum-coverage check for city elements. Pure; callers decide how loudly to log."""
from dataclasses import dataclass
from typing import Any, Iterable

MIN_SLANG = 5
MIN_LANDMARK = 5
MIN_SPORT = 3

_FLOORS = (("slang", MIN_SLANG), ("landmark", MIN_LANDMARK), ("sport", MIN_SPORT))


@dataclass
class ElementCounts:
    slang: int = 0
    landmark: int = 0
    sport: int = 0
    cultural: int = 0

    @property
    def is_valid(self) -> bool:
        return self.slang >= MIN_SLANG and self.landmark >= MIN_LANDMARK and self.sport >= MIN_SPORT

    def shortfalls(self) -> list[str]:
        """Unmet floors, e.g. ["slang 2/5", "sport 0/3"]."""
        return [f"{name} {getattr(self, name)}/{floor}"
                for name, floor in _FLOORS if getattr(self, name) < floor]

    def as_dict(self) -> dict[str, Any]:
        return {"slang": self.slang, "landmark": self.landmark, "sport": self.sport,
                "cultural": self.cultural, "isValid": self.is_valid}


def _element_type(element: Any) -> str:
    if isinstance(element, dict):
        return element.get("element_type", "")
    return getattr(element, "element_type", "")


def count_and_validate(elements: Iterable[Any]) -> ElementCounts:
    """Count elements per type. Accepts CityElement models or row dicts; unknown types are ignored."""
    counts = ElementCounts()
    for element in elements:
        element_type = _element_type(element)
        if element_type in ("slang", "landmark", "sport", "cultural"):
            setattr(counts, element_type, getattr(counts, element_type) + 1)
    return counts
