"""
Tests for CityElementStore against the in-memory fake pool.

Covers composite-key upserts, read-back, counts, reviewer status updates
and the best-effort bookkeeping writes.
"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from services.research.pipeline.element_store import CityElementStore, METRIC_RESEARCH_COMPLETED
from services.research.pipeline.elements import SlangElement

CITY_ID = "city-chi"


class TestUpsertElement:
    @pytest.mark.asyncio
    async def test_insert_then_overwrite(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "slang", "jagoff", {"term": "jagoff"}, "pending", "first")
        await store.upsert_element(CITY_ID, "slang", "jagoff", {"term": "jagoff", "meaning": "jerk"},
                                   "approved", "second")

        rows = fake_pool.rows_for(CITY_ID)
        assert len(rows) == 1
        row = rows[0]
        assert row["status"] == "approved"
        assert row["notes"] == "second"
        assert json.loads(row["element_value"]) == {"term": "jagoff", "meaning": "jerk"}

    @pytest.mark.asyncio
    async def test_same_key_different_type_is_distinct(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "sport", "bears", {"team": "Bears"}, "pending", None)
        await store.upsert_element(CITY_ID, "cultural", "bears", {"name": "Da Bears sketch"}, "pending", None)
        assert len(fake_pool.rows_for(CITY_ID)) == 2

    @pytest.mark.asyncio
    async def test_sql_uses_composite_conflict_target(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "slang", "x", {"term": "x"}, "pending", None)
        query, args = fake_pool.executed[0]
        assert "ON CONFLICT (city_id, element_type, element_key)" in query
        assert args[1:4] == (CITY_ID, "slang", "x")

    @pytest.mark.asyncio
    async def test_rejects_invalid_type_and_status(self, fake_pool):
        store = CityElementStore(fake_pool)
        with pytest.raises(ValueError):
            await store.upsert_element(CITY_ID, "weather", "rain", {}, "pending", None)
        with pytest.raises(ValueError):
            await store.upsert_element(CITY_ID, "slang", "x", {}, "maybe", None)
        assert fake_pool.executed == []

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, fake_pool):
        fake_pool.fail_element_keys = {"x"}
        store = CityElementStore(fake_pool)
        with pytest.raises(RuntimeError):
            await store.upsert_element(CITY_ID, "slang", "x", {"term": "x"}, "pending", None)


class TestReadElements:
    @pytest.mark.asyncio
    async def test_newest_first_as_models(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "slang", "older", {"term": "a"}, "pending", None)
        await store.upsert_element(CITY_ID, "slang", "newer", {"term": "b"}, "approved", "n")

        elements = await store.read_elements(CITY_ID)
        assert [e.element_key for e in elements] == ["newer", "older"]
        assert isinstance(elements[0], SlangElement)
        assert elements[0].element_value.term == "b"
        assert elements[0].status == "approved"

    @pytest.mark.asyncio
    async def test_other_cities_excluded(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element("other", "slang", "x", {"term": "x"}, "pending", None)
        assert await store.read_elements(CITY_ID) == []

    @pytest.mark.asyncio
    async def test_read_failure_returns_empty(self, fake_pool, caplog):
        fake_pool.fail_reads = True
        store = CityElementStore(fake_pool)
        with caplog.at_level(logging.ERROR):
            assert await store.read_elements(CITY_ID) == []
        assert "Failed to read city elements" in caplog.text


class TestElementCounts:
    @pytest.mark.asyncio
    async def test_zero_filled(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "slang", "a", {"term": "a"}, "pending", None)
        await store.upsert_element(CITY_ID, "slang", "b", {"term": "b"}, "pending", None)
        await store.upsert_element(CITY_ID, "sport", "c", {"team": "c"}, "pending", None)

        assert await store.get_element_counts(CITY_ID) == {
            "slang": 2, "landmark": 0, "sport": 1, "cultural": 0}

    @pytest.mark.asyncio
    async def test_failure_returns_zeros(self, fake_pool):
        fake_pool.fail_reads = True
        store = CityElementStore(fake_pool)
        counts = await store.get_element_counts(CITY_ID)
        assert set(counts.values()) == {0}


class TestUpdateElementStatus:
    @pytest.mark.asyncio
    async def test_updates_status_and_notes(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "slang", "x", {"term": "x"}, "pending", "auto")

        assert await store.update_element_status(CITY_ID, "slang", "x", "approved", "checked by editor")
        row = fake_pool.elements[(CITY_ID, "slang", "x")]
        assert row["status"] == "approved"
        assert row["notes"] == "checked by editor"

    @pytest.mark.asyncio
    async def test_keeps_notes_when_none(self, fake_pool):
        store = CityElementStore(fake_pool)
        await store.upsert_element(CITY_ID, "slang", "x", {"term": "x"}, "pending", "auto")
        await store.update_element_status(CITY_ID, "slang", "x", "rejected")
        assert fake_pool.elements[(CITY_ID, "slang", "x")]["notes"] == "auto"

    @pytest.mark.asyncio
    async def test_invalid_status_raises(self, fake_pool):
        store = CityElementStore(fake_pool)
        with pytest.raises(ValueError):
            await store.update_element_status(CITY_ID, "slang", "x", "done")

    @pytest.mark.asyncio
    async def test_db_failure_returns_false(self):
        pool = MagicMock()
        pool.acquire.side_effect = RuntimeError("pool closed")
        store = CityElementStore(pool)
        assert await store.update_element_status(CITY_ID, "slang", "x", "approved") is False


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_set_city_status(self, fake_pool):
        fake_pool.add_city(CITY_ID, "Chicago")
        store = CityElementStore(fake_pool)
        assert await store.set_city_status(CITY_ID, "active") is True
        assert fake_pool.cities[CITY_ID]["status"] == "active"

    @pytest.mark.asyncio
    async def test_set_city_status_missing_city_warns(self, fake_pool, caplog):
        store = CityElementStore(fake_pool)
        with caplog.at_level(logging.WARNING):
            assert await store.set_city_status(CITY_ID, "draft") is True
        assert "not found" in caplog.text

    @pytest.mark.asyncio
    async def test_set_city_status_failure_is_swallowed(self, fake_pool, caplog):
        fake_pool.fail_city_status = True
        store = CityElementStore(fake_pool)
        with caplog.at_level(logging.ERROR):
            assert await store.set_city_status(CITY_ID, "active") is False
        assert "failed (ignored)" in caplog.text

    @pytest.mark.asyncio
    async def test_set_city_status_rejects_unknown(self, fake_pool):
        store = CityElementStore(fake_pool)
        with pytest.raises(ValueError):
            await store.set_city_status(CITY_ID, "published")

    @pytest.mark.asyncio
    async def test_record_analytics(self, fake_pool):
        store = CityElementStore(fake_pool)
        assert await store.record_analytics(CITY_ID, "Chicago", 17, ["slang", "sport"]) is True

        event = fake_pool.analytics[0]
        assert event["metric_type"] == METRIC_RESEARCH_COMPLETED
        assert event["metric_value"] == 17
        assert event["city_id"] == CITY_ID
        assert event["metadata"]["city_name"] == "Chicago"
        assert event["metadata"]["categories"] == ["slang", "sport"]
        assert event["metadata"]["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_record_analytics_failure_is_swallowed(self, fake_pool):
        fake_pool.fail_analytics = True
        store = CityElementStore(fake_pool)
        assert await store.record_analytics(CITY_ID, "Chicago", 1, ["slang"]) is False
        assert fake_pool.analytics == []
