import sqlite3
from unittest.mock import patch

import pytest

from ordersnapr_offline.services import offline_cache
from ordersnapr_offline.services.local_db import ENTITY_TYPES


def test_cache_entity_round_trip(cache):
    data = {"name": "Acme", "tags": ["hvac", "priority"], "balance": 12.5}

    assert cache.cache_entity("customers", "c1", data) is True
    assert cache.get_cached_entity("customers", "c1") == data


def test_cache_entity_overwrites_previous_record(cache):
    cache.cache_entity("work_orders", "wo1", {"status": "open"})
    cache.cache_entity("work_orders", "wo1", {"status": "closed"})

    assert cache.get_cached_entity("work_orders", "wo1") == {"status": "closed"}
    assert cache.get_all_cached_entities("work_orders") == [{"status": "closed"}]


def test_falsy_data_is_returned_as_stored(cache):
    cache.cache_entity("invoices", "empty", {})
    assert cache.get_cached_entity("invoices", "empty") == {}


def test_partitions_are_independent(cache):
    cache.cache_entity("customers", "x", {"kind": "customer"})
    cache.cache_entity("properties", "x", {"kind": "property"})

    assert cache.get_cached_entity("customers", "x") == {"kind": "customer"}
    assert cache.get_cached_entity("properties", "x") == {"kind": "property"}


def test_missing_entity_returns_none(cache):
    assert cache.get_cached_entity("customers", "nope") is None


def test_cache_entities_returns_written_count_and_all_data(cache):
    items = [{"id": f"p{i}", "data": {"address": f"{i} Main St"}} for i in range(5)]

    assert cache.cache_entities("properties", items) == 5

    cached = cache.get_all_cached_entities("properties")
    assert sorted(cached, key=lambda d: d["address"]) == sorted(
        (i["data"] for i in items), key=lambda d: d["address"]
    )


def test_cache_entities_skips_bad_items(cache):
    items = [
        {"id": "ok1", "data": {"n": 1}},
        {"data": {"n": 2}},                      # no id
        {"id": None, "data": {"n": 4}},
        {"id": None, "data": {"n": 5}},
        {"id": "bad", "data": {"n": object()}},  # not JSON serializable
        {"id": "ok2", "data": {"n": 3}},
    ]

    assert cache.cache_entities("customers", items) == 2
    assert cache.get_cached_entity("customers", "ok2") == {"n": 3}
    assert cache.get_cached_entity("customers", "bad") is None
    assert len(cache.get_all_cached_entities("customers")) == 2


def test_null_id_is_rejected(cache, db):
    assert cache.cache_entity("customers", None, {"n": 1}) is False

    # the table itself refuses NULL keys too
    with pytest.raises(sqlite3.IntegrityError):
        with db.transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO customers (id, data, timestamp, last_modified) "
                "VALUES (NULL, '{}', 0, '2024-01-01T00:00:00Z')"
            )

    assert cache.get_all_cached_entities("customers") == []


def test_cache_entities_updates_metadata(cache, monkeypatch):
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 1_700_000_000_000)
    cache.cache_entities("invoices", [{"id": "i1", "data": {}}, {"id": "i2", "data": {}}])

    assert cache.get_cache_metadata("invoices") == {
        "entity_type": "invoices",
        "last_sync": 1_700_000_000_000,
        "count": 2,
    }


def test_last_modified_defaults_to_iso_timestamp(cache, db):
    cache.cache_entity("customers", "c1", {"name": "Acme"})
    cache.cache_entity("customers", "c2", {"name": "Beta"}, last_modified="2024-05-01T10:00:00Z")

    rows = {r["id"]: r["last_modified"] for r in db.fetch_all("SELECT id, last_modified FROM customers")}
    assert rows["c1"].endswith("Z") and "T" in rows["c1"]
    assert rows["c2"] == "2024-05-01T10:00:00Z"


def test_unknown_entity_type_is_swallowed(cache):
    assert cache.cache_entity("bogus", "1", {}) is False
    assert cache.cache_entities("bogus", [{"id": "1", "data": {}}]) == 0
    assert cache.get_cached_entity("bogus", "1") is None
    assert cache.get_all_cached_entities("bogus") == []
    assert cache.prune_old_cache_entries("bogus") == 0


def test_storage_errors_never_propagate(cache):
    with patch.object(cache.db, "transaction", side_effect=sqlite3.OperationalError("disk I/O error")):
        assert cache.cache_entity("customers", "c1", {"a": 1}) is False
        assert cache.cache_entities("customers", [{"id": "c1", "data": {}}]) == 0
        cache.clear_all_caches()

    with patch.object(cache.db, "fetch_one", side_effect=sqlite3.OperationalError("locked")):
        assert cache.get_cached_entity("customers", "c1") is None
        assert cache.get_cache_metadata("customers") is None
        assert cache.get_cache_stats() is None
        assert cache.is_cache_stale("customers") is True


def test_clear_entity_cache_removes_records_and_metadata(cache):
    cache.cache_entities("work_orders", [{"id": "w1", "data": {"a": 1}}])
    cache.cache_entities("customers", [{"id": "c1", "data": {"b": 2}}])

    cache.clear_entity_cache("work_orders")

    assert cache.get_all_cached_entities("work_orders") == []
    assert cache.get_cache_metadata("work_orders") is None
    assert cache.is_cache_stale("work_orders") is True
    assert cache.get_cached_entity("customers", "c1") == {"b": 2}


def test_clear_all_caches(cache):
    cache.cache_entity("customers", "c1", {"name": "Acme"})
    cache.cache_entities("invoices", [{"id": "i1", "data": {}}])

    cache.clear_all_caches()

    assert cache.get_cached_entity("customers", "c1") is None
    for entity_type in ENTITY_TYPES:
        assert cache.get_all_cached_entities(entity_type) == []
        assert cache.get_cache_metadata(entity_type) is None


def test_cache_stats(cache, monkeypatch):
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 5000)
    cache.cache_entities("customers", [{"id": "a", "data": 1}, {"id": "b", "data": 2}])
    cache.cache_entity("invoices", "i1", {"total": 10})

    stats = cache.get_cache_stats()

    assert set(stats) == set(ENTITY_TYPES)
    assert stats["customers"] == {"count": 2, "last_sync": 5000}
    assert stats["invoices"] == {"count": 1, "last_sync": None}
    assert stats["work_orders"] == {"count": 0, "last_sync": None}


# ==================== Staleness ====================

def test_cache_without_metadata_is_stale(cache):
    assert cache.is_cache_stale("customers") is True


def test_single_writes_do_not_mark_cache_fresh(cache):
    cache.cache_entity("customers", "c1", {})
    assert cache.is_cache_stale("customers") is True


@pytest.mark.parametrize("elapsed, stale", [
    (0, False),
    (5 * 60 * 1000, False),
    (5 * 60 * 1000 + 1, True),
])
def test_staleness_window(cache, monkeypatch, elapsed, stale):
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 1_000_000)
    cache.cache_entities("work_orders", [{"id": "w1", "data": {}}])

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 1_000_000 + elapsed)
    assert cache.is_cache_stale("work_orders") is stale


def test_staleness_custom_max_age(cache, monkeypatch):
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 0)
    cache.cache_entities("work_orders", [])

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 2000)
    assert cache.is_cache_stale("work_orders", max_age_ms=1000) is True
    assert cache.is_cache_stale("work_orders", max_age_ms=5000) is False


# ==================== Pruning ====================

def test_prune_removes_only_old_records(cache, monkeypatch):
    day = 24 * 60 * 60 * 1000
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 10 * day)
    cache.cache_entity("customers", "old", {"v": "old"})

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 11 * day)
    cache.cache_entity("customers", "edge", {"v": "edge"})

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 11 * day + 1000)
    cache.cache_entity("customers", "new", {"v": "new"})

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 12 * day)
    assert cache.prune_old_cache_entries("customers") == 1

    assert cache.get_cached_entity("customers", "old") is None
    assert cache.get_cached_entity("customers", "edge") == {"v": "edge"}
    assert cache.get_cached_entity("customers", "new") == {"v": "new"}


def test_prune_empty_store_returns_zero(cache):
    assert cache.prune_old_cache_entries("invoices") == 0


def test_prune_custom_max_age(cache, monkeypatch):
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 1000)
    cache.cache_entity("invoices", "i1", {})
    cache.cache_entity("invoices", "i2", {})

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 1500)
    assert cache.prune_old_cache_entries("invoices", max_age_ms=100) == 2
    assert cache.get_all_cached_entities("invoices") == []
