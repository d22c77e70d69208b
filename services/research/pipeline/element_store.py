"""
Persistence gateway for city research results (asyncpg).

Tables (owned by the application schema, not migrated here):
  cities         id, name, status, updated_at
  city_elements  id, city_id, element_type, element_key, element_value jsonb,
                 status, notes, created_at, updated_at
                 UNIQUE (city_id, element_type, element_key)
  analytics      date, metric_type, metric_value, city_id, metadata jsonb

Element upserts raise so the caller can count failures. City status and
analytics writes are bookkeeping: they go through _best_effort, which logs
and discards errors so they can never fail a research run.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional

import asyncpg

from services.research.pipeline.elements import (
    ELEMENT_STATUSES,
    ELEMENT_TYPES,
    CityElement,
    parse_element,
)

logger = logging.getLogger(__name__)

CITY_STATUSES = frozenset({"draft", "active", "archived"})
METRIC_RESEARCH_COMPLETED = "research_completed"

_UPSERT_ELEMENT_SQL = """INSERT INTO city_elements
    (id, city_id, element_type, element_key, element_value, status, notes, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $8)
    ON CONFLICT (city_id, element_type, element_key) DO UPDATE SET
        element_value = EXCLUDED.element_value,
        status = EXCLUDED.status,
        notes = EXCLUDED.notes,
        updated_at = EXCLUDED.updated_at"""

_SELECT_ELEMENTS_SQL = """SELECT element_type, element_key, element_value, status, notes
    FROM city_elements WHERE city_id = $1 ORDER BY created_at DESC"""

_COUNT_ELEMENTS_SQL = """SELECT element_type, COUNT(*) AS n
    FROM city_elements WHERE city_id = $1 GROUP BY element_type"""

_UPDATE_CITY_STATUS_SQL = "UPDATE cities SET status = $2, updated_at = $3 WHERE id = $1"

_UPDATE_ELEMENT_STATUS_SQL = """UPDATE city_elements SET status = $4, notes = COALESCE($5, notes), updated_at = $6
    WHERE city_id = $1 AND element_type = $2 AND element_key = $3"""

_INSERT_ANALYTICS_SQL = """INSERT INTO analytics (date, metric_type, metric_value, city_id, metadata)
    VALUES ($1, $2, $3, $4, $5::jsonb)"""


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def _best_effort(label: str, operation: Awaitable[Any]) -> bool:
    """Await a bookkeeping write; log failures and report them as False instead of raising."""
    try:
        await operation
        return True
    except Exception as exc:
        logger.error("%s failed (ignored): %s", label, exc)
        return False


def _decode_json(value: Any) -> Any:
    # asyncpg hands jsonb back as str unless a codec is registered
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return {}
    return value


class CityElementStore:
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def upsert_element(
        self,
        city_id: str,
        element_type: str,
        element_key: str,
        element_value: dict[str, Any],
        status: str,
        notes: Optional[str],
    ) -> None:
        """Insert or overwrite one element keyed by (city_id, element_type, element_key)."""
        if element_type not in ELEMENT_TYPES:
            raise ValueError(f"Invalid element_type: {element_type}")
        if status not in ELEMENT_STATUSES:
            raise ValueError(f"Invalid element status: {status}")
        async with self._pool.acquire() as conn:
            await conn.execute(
                _UPSERT_ELEMENT_SQL,
                str(uuid.uuid4()), city_id, element_type, element_key,
                json.dumps(element_value), status, notes, _now())

    async def read_elements(self, city_id: str) -> list[CityElement]:
        """All stored elements for a city, newest first. Returns [] if the read fails."""
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(_SELECT_ELEMENTS_SQL, city_id)
        except Exception as exc:
            logger.error("Failed to read city elements for %s: %s", city_id, exc)
            return []

        elements = []
        for row in rows:
            element = parse_element({
                "element_type": row["element_type"],
                "element_key": row["element_key"],
                "element_value": _decode_json(row["element_value"]),
                "status": row["status"],
                "notes": row["notes"],
            })
            if element is not None:
                elements.append(element)
        return elements

    async def get_element_counts(self, city_id: str) -> dict[str, int]:
        """Per-type element counts, zero-filled. All zeros if the read fails."""
        counts = {element_type: 0 for element_type in ELEMENT_TYPES}
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(_COUNT_ELEMENTS_SQL, city_id)
        except Exception as exc:
            logger.error("Failed to count city elements for %s: %s", city_id, exc)
            return counts
        for row in rows:
            if row["element_type"] in counts:
                counts[row["element_type"]] = int(row["n"])
        return counts

    async def update_element_status(
        self,
        city_id: str,
        element_type: str,
        element_key: str,
        status: str,
        notes: Optional[str] = None,
    ) -> bool:
        """Reviewer hook: flip one element's status. Returns False on failure."""
        if status not in ELEMENT_STATUSES:
            raise ValueError(f"Invalid element status: {status}")
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    _UPDATE_ELEMENT_STATUS_SQL,
                    city_id, element_type, element_key, status, notes, _now())
        except Exception as exc:
            logger.error("Failed to update element status %s/%s: %s", element_type, element_key, exc)
            return False
        return True

    async def _write_city_status(self, city_id: str, status: str) -> None:
        async with self._pool.acquire() as conn:
            result = await conn.execute(_UPDATE_CITY_STATUS_SQL, city_id, status, _now())
        if result == "UPDATE 0":
            logger.warning("City %s not found while setting status=%s", city_id, status)

    async def set_city_status(self, city_id: str, status: str) -> bool:
        if status not in CITY_STATUSES:
            raise ValueError(f"Invalid city status: {status}")
        return await _best_effort(
            f"set_city_status({city_id}, {status})",
            self._write_city_status(city_id, status))

    async def _write_analytics(
        self,
        city_id: str,
        city_name: str,
        element_count: int,
        categories: list[str],
    ) -> None:
        now = _now()
        metadata = {
            "city_name": city_name,
            "categories": categories,
            "timestamp": now.isoformat() + "Z",
        }
        async with self._pool.acquire() as conn:
            await conn.execute(
                _INSERT_ANALYTICS_SQL,
                now.date(), METRIC_RESEARCH_COMPLETED, element_count, city_id, json.dumps(metadata))

    async def record_analytics(
        self,
        city_id: str,
        city_name: str,
        element_count: int,
        categories: list[str],
    ) -> bool:
        return await _best_effort(
            f"record_analytics({city_id})",
            self._write_analytics(city_id, city_name, element_count, categories))
