from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.query_cache import QueryCache  # noqa: E402
from services.rate_limit_service import InMemoryRateLimiter  # noqa: E402
from services.telemetry_context import (  # noqa: E402
    add_request_db_query,
    classify_request_group,
    clear_request_scope,
    consume_request_scope,
    start_request_scope,
)
from store import entity_registry  # noqa: E402


def test_get_or_load_calls_loader_once_per_params():
    cache = QueryCache()
    calls: list[int] = []

    def _loader():
        calls.append(1)
        return [{"id": 1}]

    assert cache.get_or_load("episodes", 1, _loader, params={"limit": 5}) == [{"id": 1}]
    assert cache.get_or_load("episodes", 1, _loader, params={"limit": 5}) == [{"id": 1}]
    assert cache.get_or_load("episodes", 1, _loader, params={"limit": 10}) == [{"id": 1}]
    assert len(calls) == 2


def test_cached_values_are_copies():
    cache = QueryCache()
    cache.set("episodes", 1, [{"id": 1}])
    _, value = cache.get("episodes", 1)
    value.append({"id": 2})
    assert cache.get("episodes", 1) == (True, [{"id": 1}])


def test_none_is_a_cacheable_value():
    cache = QueryCache()
    calls: list[int] = []

    def _loader():
        calls.append(1)
        return None

    assert cache.get_or_load("device_data", 1, _loader) is None
    assert cache.get_or_load("device_data", 1, _loader) is None
    assert len(calls) == 1


def test_invalidate_is_scoped_to_key_and_owner():
    cache = QueryCache()
    cache.set("episodes", 1, "a", params={"limit": 1})
    cache.set("episodes", 1, "b", params={"limit": 2})
    cache.set("episodes", 2, "c")
    cache.set("triggers", 1, "d")

    assert cache.invalidate("episodes", 1) == 2
    assert cache.get("episodes", 1, params={"limit": 1}) == (False, None)
    assert cache.get("episodes", 2) == (True, "c")
    assert cache.get("triggers", 1) == (True, "d")
    assert len(cache) == 2

    cache.clear()
    assert len(cache) == 0


def test_every_registered_kind_declares_invalidation_keys():
    names = {spec.name for spec in entity_registry.list_specs()}
    assert names == {"episode", "medication", "medication_log", "trigger", "device_reading", "medical_report"}
    for spec in entity_registry.list_specs():
        assert spec.invalidates, spec.name


def test_rate_limiter_blocks_after_limit_and_resets():
    limiter = InMemoryRateLimiter()
    assert limiter.check(key="login:a", limit=2, window_seconds=60)[0] is True
    assert limiter.check(key="login:a", limit=2, window_seconds=60)[0] is True
    allowed, retry_after, remaining = limiter.check(key="login:a", limit=2, window_seconds=60)
    assert allowed is False
    assert retry_after >= 1
    assert remaining == 0
    assert limiter.check(key="login:b", limit=2, window_seconds=60)[0] is True

    limiter.reset()
    assert limiter.check(key="login:a", limit=2, window_seconds=60)[0] is True


def test_request_scope_counts_db_queries():
    clear_request_scope()
    start_request_scope(path="/api/episodes", method="GET", request_group="episodes")
    add_request_db_query(1.5)
    add_request_db_query(2.5)
    scope = consume_request_scope()

    assert scope is not None
    assert scope.db_query_count == 2
    assert scope.db_query_time_ms == 4.0
    assert consume_request_scope() is None


def test_request_groups():
    assert classify_request_group("/api/episodes") == "episodes"
    assert classify_request_group("/api/medication-logs/3") == "medications"
    assert classify_request_group("/api/status/current") == "analytics"
    assert classify_request_group("/api/health") is None


def test_load_racing_an_invalidation_is_not_cached():
    cache = QueryCache()
    rows = ["old"]

    def _loader_with_concurrent_write():
        snapshot = list(rows)
        rows.append("new")
        cache.invalidate("episodes", 1)
        return snapshot

    assert cache.get_or_load("episodes", 1, _loader_with_concurrent_write) == ["old"]
    assert cache.get("episodes", 1) == (False, None)
    assert cache.get_or_load("episodes", 1, lambda: list(rows)) == ["old", "new"]


def test_load_racing_a_clear_is_not_cached():
    cache = QueryCache()

    def _loader():
        cache.clear()
        return "stale"

    cache.get_or_load("triggers", 1, _loader)
    assert len(cache) == 0


def test_invalidation_of_other_owner_does_not_block_caching():
    cache = QueryCache()

    def _loader():
        cache.invalidate("episodes", 2)
        return "mine"

    cache.get_or_load("episodes", 1, _loader)
    assert cache.get("episodes", 1) == (True, "mine")


def test_cache_size_is_bounded():
    cache = QueryCache(max_entries=3)
    for start in range(10):
        cache.set("episodes", 1, start, params={"start": start})

    assert len(cache) == 3
    assert cache.get("episodes", 1, params={"start": 9}) == (True, 9)
    assert cache.get("episodes", 1, params={"start": 0}) == (False, None)
