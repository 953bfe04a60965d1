import asyncio

import pytest

from ordersnapr_offline.services import offline_cache


def run(coro):
    return asyncio.run(coro)


# ==================== apply_or_queue ====================

def test_apply_or_queue_applies_when_online(manager, controller, queue, backend):
    controller.on_heartbeat_success()

    outcome = run(manager.apply_or_queue("op1", "submit", {"answers": {"a": 1}}))

    assert outcome == "applied"
    assert queue.get_pending_sync_count() == 0
    assert backend.calls == [("insert", "form_submissions", [{"answers": {"a": 1}}])]


def test_apply_or_queue_queues_when_offline(manager, controller, queue, backend):
    controller.on_connection_lost()

    outcome = run(manager.apply_or_queue("op1", "save", {"submissionId": "s1", "answers": {}}))

    assert outcome == "queued"
    assert backend.calls == []
    assert queue.get_pending_operations()[0]["id"] == "op1"


def test_apply_or_queue_queues_on_remote_failure(manager, controller, queue, backend):
    controller.on_heartbeat_success()
    backend.fail = True

    outcome = run(manager.apply_or_queue("op1", "submit", {"a": 1}))

    assert outcome == "queued"
    assert queue.get_pending_sync_count() == 1


# ==================== sync_now ====================

def test_sync_now_drains_both_queues(manager, queue, background, backend, db):
    queue.add_to_sync_queue({"id": "f1", "type": "submit", "data": {"x": 1}})
    background.queue_sync("customers", "insert", {"name": "Acme"}, sync_id="b1")

    result = run(manager.sync_now())

    assert result["status"] == "success"
    assert result["form_submissions"]["successful"] == 1
    assert result["entities"]["successful"] == 1
    assert manager.get_pending_count() == 0
    assert manager.last_sync_time is not None
    assert [log["event_type"] for log in db.get_recent_logs()] == ["sync_complete", "sync_start"]


def test_sync_now_with_nothing_pending_writes_no_logs(manager, db):
    result = run(manager.sync_now())

    assert result["form_submissions"] == {"successful": 0, "failed": 0, "errors": []}
    assert db.get_recent_logs() == []


def test_sync_now_skips_when_already_running(manager):
    manager.is_syncing = True
    assert run(manager.sync_now()) == {"status": "skipped", "reason": "sync_in_progress"}


def test_is_syncing_reset_after_error(manager, background, monkeypatch):
    async def broken(backend):
        raise RuntimeError("boom")

    monkeypatch.setattr(background, "process_all_pending_syncs", broken)

    with pytest.raises(RuntimeError):
        run(manager.sync_now())
    assert manager.is_syncing is False


# ==================== Scheduling ====================

def test_reconnect_triggers_sync(manager, controller, queue, backend):
    queue.add_to_sync_queue({"id": "f1", "type": "submit", "data": {"x": 1}})
    controller.on_connection_lost()

    async def scenario():
        controller.on_heartbeat_success()
        await asyncio.gather(*list(manager._tasks))

    run(scenario())

    assert queue.get_pending_sync_count() == 0
    assert len(backend.calls) == 1


def test_reconnect_without_loop_does_not_raise(manager, controller, queue):
    queue.add_to_sync_queue({"id": "f1", "type": "submit", "data": {}})
    controller.on_connection_lost()

    controller.on_heartbeat_success()

    assert queue.get_pending_sync_count() == 1


def test_periodic_check_syncs_only_when_online(manager, controller, queue, backend):
    queue.add_to_sync_queue({"id": "f1", "type": "submit", "data": {"x": 1}})
    controller.on_connection_lost()

    async def scenario():
        stop = manager.start_periodic_sync_check(interval=0.01)
        await asyncio.sleep(0.05)
        assert queue.get_pending_sync_count() == 1

        controller.on_heartbeat_success()
        for _ in range(50):
            if queue.get_pending_sync_count() == 0:
                break
            await asyncio.sleep(0.01)
        stop()
        await asyncio.sleep(0)

    run(scenario())

    assert queue.get_pending_sync_count() == 0
    assert len(backend.calls) == 1


# ==================== Cache refresh ====================

def test_refresh_entity_cache_fetches_when_stale(manager, controller, cache, backend):
    controller.on_heartbeat_success()
    backend.rows["customers"] = [
        {"id": "c1", "name": "Acme", "updated_at": "2024-01-02T00:00:00Z"},
        {"id": "c2", "name": "Beta", "created_at": "2024-01-01T00:00:00Z"},
        {"name": "no id"},
    ]

    assert run(manager.refresh_entity_cache("customers")) == 2
    assert cache.get_cached_entity("customers", "c1")["name"] == "Acme"
    assert cache.is_cache_stale("customers") is False

    # Fresh cache is not refetched unless forced
    assert run(manager.refresh_entity_cache("customers")) == 0
    assert run(manager.refresh_entity_cache("customers", force=True)) == 2
    assert [c[0] for c in backend.calls] == ["select", "select"]


def test_refresh_entity_cache_respects_max_age(manager, controller, cache, backend, monkeypatch):
    controller.on_heartbeat_success()
    backend.rows["invoices"] = [{"id": "i1"}]
    monkeypatch.setattr(offline_cache, "now_ms", lambda: 0)
    run(manager.refresh_entity_cache("invoices"))

    monkeypatch.setattr(offline_cache, "now_ms", lambda: 2000)
    assert run(manager.refresh_entity_cache("invoices", max_age_ms=1000)) == 1


def test_refresh_entity_cache_offline_or_failing_keeps_cache(manager, controller, cache, backend):
    cache.cache_entity("work_orders", "w1", {"status": "open"})

    assert run(manager.refresh_entity_cache("work_orders")) == 0
    assert backend.calls == []

    controller.on_heartbeat_success()
    backend.fail = True
    assert run(manager.refresh_entity_cache("work_orders")) == 0
    assert cache.get_cached_entity("work_orders", "w1") == {"status": "open"}


def test_refresh_entity_cache_rejects_unknown_type(manager):
    with pytest.raises(ValueError):
        run(manager.refresh_entity_cache("users"))


# ==================== Status ====================

def test_get_sync_status(manager, queue, background):
    queue.add_to_sync_queue({"id": "f1", "type": "submit", "data": {}})
    background.queue_sync("customers", "insert", {}, sync_id="b1")

    status = run(manager.get_sync_status())

    assert status["is_syncing"] is False
    assert status["pending_count"] == 1
    assert status["background_pending_count"] == 1
    assert status["last_sync_time"] is None
    assert status["last_sync_logs"] == []
