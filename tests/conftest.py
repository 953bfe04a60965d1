import pytest

from ordersnapr_offline.services import (
    background_sync,
    offline_cache,
    offline_mode,
    offline_storage,
    sync_manager,
    sync_queue,
)
from ordersnapr_offline.services.local_db import LocalDatabase
from ordersnapr_offline.services.backend_client import BackendError


class FakeBackend:
    """In-memory stand-in for BackendClient that records every call."""

    base_url = "https://backend.test"

    def __init__(self, fail=False, rows=None):
        self.fail = fail
        self.rows = rows or {}
        self.calls = []

    async def _call(self, *call):
        self.calls.append(call)
        if self.fail:
            raise BackendError("service unavailable", status=503)

    async def update(self, table, record_id, values):
        await self._call("update", table, record_id, values)

    async def insert(self, table, rows):
        await self._call("insert", table, rows)

    async def delete(self, table, record_id):
        await self._call("delete", table, record_id)

    async def select(self, table, columns="*"):
        await self._call("select", table)
        return self.rows.get(table, [])

    async def ping(self):
        return not self.fail


@pytest.fixture
def db(tmp_path):
    database = LocalDatabase(str(tmp_path / "offline.db"))
    yield database
    database.close()


@pytest.fixture
def cache(db):
    return offline_cache.OfflineCache(db)


@pytest.fixture
def queue(db):
    return sync_queue.SyncQueue(db)


@pytest.fixture
def background(db):
    return background_sync.BackgroundSyncQueue(db)


@pytest.fixture
def storage(db):
    return offline_storage.OfflineStorage(db)


@pytest.fixture
def controller():
    return offline_mode.OfflineModeController()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def manager(backend, queue, background, cache, controller, db):
    return sync_manager.SyncManager(
        backend, queue=queue, background=background, cache=cache,
        controller=controller, db=db
    )


@pytest.fixture
def singletons(monkeypatch, db, cache, queue, background, storage, controller, manager):
    """Point every module-level singleton at the per-test instances."""
    monkeypatch.setattr(offline_cache, "_cache_instance", cache)
    monkeypatch.setattr(sync_queue, "_queue_instance", queue)
    monkeypatch.setattr(background_sync, "_background_sync_instance", background)
    monkeypatch.setattr(offline_storage, "_storage_instance", storage)
    monkeypatch.setattr(offline_mode, "_controller_instance", controller)
    monkeypatch.setattr(sync_manager, "_sync_manager_instance", manager)
    return manager
