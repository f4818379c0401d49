"""
Cache Store Tests
=================
Round-trips, misses, degraded writes and per-store schema versioning.
"""

import asyncio

import pytest

from state.mappings_state import MappingsStateEngine
from state.models import CohortRow, InstanceView
from utils.cache_store import CacheStore
from utils.mapping_discovery import MappingDiscovery


class TestRoundTrip:

    def test_put_then_get_returns_equal_value(self, query_cache):
        value = {"rows": [{"a": 1, "b": "x"}], "count": 3, "ok": True}
        assert asyncio.run(query_cache.put("k1", value)) is True
        assert asyncio.run(query_cache.get("k1")) == value

    def test_get_returns_a_copy(self, query_cache):
        value = {"rows": [1, 2, 3]}
        asyncio.run(query_cache.put("k1", value))
        value["rows"].append(4)

        first = asyncio.run(query_cache.get("k1"))
        first["rows"].append(99)
        assert asyncio.run(query_cache.get("k1")) == {"rows": [1, 2, 3]}

    def test_put_overwrites(self, query_cache):
        asyncio.run(query_cache.put("k1", 1))
        asyncio.run(query_cache.put("k1", 2))
        assert asyncio.run(query_cache.get("k1")) == 2

    def test_tuples_come_back_as_lists(self, query_cache):
        asyncio.run(query_cache.put("k1", {"data": ({"a": 1},)}))
        assert asyncio.run(query_cache.get("k1")) == {"data": [{"a": 1}]}


class TestMissesAndFailures:

    def test_missing_key_is_none(self, query_cache):
        assert asyncio.run(query_cache.get("never-written")) is None

    def test_unserializable_value_is_skipped(self, query_cache):
        assert asyncio.run(query_cache.put("bad", {"obj": object()})) is False
        assert asyncio.run(query_cache.get("bad")) is None

    def test_circular_value_is_skipped(self, query_cache):
        value = {}
        value["self"] = value
        assert asyncio.run(query_cache.put("loop", value)) is False
        assert asyncio.run(query_cache.get("loop")) is None

    def test_close_without_open_is_safe(self, cache_path):
        store = CacheStore(cache_path, "unused")
        asyncio.run(store.close())
        asyncio.run(store.close())

    def test_store_reopens_after_close(self, query_cache):
        asyncio.run(query_cache.put("k1", "v"))
        asyncio.run(query_cache.close())
        assert asyncio.run(query_cache.get("k1")) == "v"


class TestStoresAndVersions:

    def test_delete_and_clear_are_scoped_to_the_store(self, query_cache, mapping_cache):
        asyncio.run(query_cache.put("k1", 1))
        asyncio.run(query_cache.put("k2", 2))
        asyncio.run(mapping_cache.put("k1", "other"))

        asyncio.run(query_cache.delete("k1"))
        assert asyncio.run(query_cache.get("k1")) is None
        assert asyncio.run(query_cache.get("k2")) == 2

        asyncio.run(query_cache.clear())
        assert asyncio.run(query_cache.get("k2")) is None
        assert asyncio.run(mapping_cache.get("k1")) == "other"

    def test_version_upgrade_drops_only_that_store(self, cache_path):
        old = CacheStore(cache_path, "query_cache", version=1)
        other = CacheStore(cache_path, "mapping_state", version=1)
        asyncio.run(old.put("k", "old"))
        asyncio.run(other.put("k", "kept"))
        asyncio.run(old.close())
        asyncio.run(other.close())

        upgraded = CacheStore(cache_path, "query_cache", version=2)
        other = CacheStore(cache_path, "mapping_state", version=1)
        try:
            assert asyncio.run(upgraded.get("k")) is None
            assert asyncio.run(other.get("k")) == "kept"
        finally:
            asyncio.run(upgraded.close())
            asyncio.run(other.close())

    def test_older_build_keeps_newer_entries(self, cache_path):
        newer = CacheStore(cache_path, "query_cache", version=3)
        asyncio.run(newer.put("k", "v3"))
        asyncio.run(newer.close())

        older = CacheStore(cache_path, "query_cache", version=2)
        try:
            assert asyncio.run(older.get("k")) == "v3"
        finally:
            asyncio.run(older.close())


class TestUnavailableCacheFile:

    @pytest.fixture
    def blocked_path(self, tmp_path):
        # The cache directory is taken by a regular file, so the store can never open
        (tmp_path / "blocked").write_text("not a directory")
        return str(tmp_path / "blocked" / "cascade_cache.duckdb")

    def test_operations_degrade_instead_of_raising(self, blocked_path):
        store = CacheStore(blocked_path, "query_cache")
        assert asyncio.run(store.put("k", {"rows": [1]})) is False
        assert asyncio.run(store.get("k")) is None
        asyncio.run(store.delete("k"))
        asyncio.run(store.clear())
        asyncio.run(store.close())

    def test_group_counts_are_recomputed(self, blocked_path, executor, claims):
        discovery = MappingDiscovery(executor, CacheStore(blocked_path, "query_cache"))
        assert asyncio.run(discovery.count_groups(claims, "Procedure")) == 3

    def test_refresh_still_commits_tabs(self, blocked_path, discovery, toasts, claims):
        engine = MappingsStateEngine(discovery, CacheStore(blocked_path, "mapping_state"), None, toasts)
        view = InstanceView(claims, (), (CohortRow("Procedure", 3),), {})

        asyncio.run(engine.refresh_mappings_state(view))

        assert [m.tab_name for m in engine.state.mappings] == ["Procedure"]
        assert engine.state.refreshing is False
