"""
sync_manager.py - Store-and-Forward Sync Manager

Replays queued form mutations and generic entity mutations against the
backend when the connection allows it, and refreshes the entity cache.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Set

from .backend_client import BackendClient, BackendError
from .background_sync import BackgroundSyncQueue, get_background_sync
from .local_db import LocalDatabase, get_local_db, now_ms, now_iso, ENTITY_TYPES
from .offline_cache import OfflineCache, get_offline_cache, DEFAULT_STALE_AFTER_MS
from .offline_mode import OfflineModeController, get_offline_controller
from .sync_queue import SyncQueue, get_sync_queue

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncManager")

FORM_SUBMISSIONS_TABLE = "form_submissions"


def _empty_results() -> Dict:
    return {"successful": 0, "failed": 0, "errors": []}


class SyncManager:
    """
    Manages synchronization of offline mutations to the backend.

    Implements store-and-forward: mutations are queued locally when they
    cannot be applied, then replayed whenever a sync is triggered. The
    queue processors never schedule themselves; reconnects, the periodic
    check and explicit requests do.
    """

    def __init__(self, backend: BackendClient,
                 queue: Optional[SyncQueue] = None,
                 background: Optional[BackgroundSyncQueue] = None,
                 cache: Optional[OfflineCache] = None,
                 controller: Optional[OfflineModeController] = None,
                 db: Optional[LocalDatabase] = None):
        self.backend = backend
        self.queue = queue or get_sync_queue()
        self.background = background or get_background_sync()
        self.cache = cache or get_offline_cache()
        self.controller = controller or get_offline_controller()
        self.db = db or get_local_db()

        self.is_syncing = False
        self.last_sync_time: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()

        # Register reconnect callback
        self.controller.on_reconnect(self._on_reconnect)

        logger.info(f"SyncManager initialized with backend: {backend.base_url}")

    def _on_reconnect(self):
        """Callback triggered when connection is restored."""
        logger.info("Reconnect detected - triggering sync")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, sync deferred to next trigger")
            return
        task = loop.create_task(self.sync_now())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ==================== Form Submission Queue ====================

    async def _apply_operation(self, operation: Dict):
        """Send one queued form mutation to the backend."""
        op_type = operation['type']
        data = operation['data']

        if op_type == 'save':
            await self.backend.update(FORM_SUBMISSIONS_TABLE, data['submissionId'], {
                "answers": data.get('answers'),
                "signature": data.get('signature'),
                "metadata": data.get('metadata'),
                "updated_at": now_iso(),
            })
        elif op_type == 'submit':
            await self.backend.insert(FORM_SUBMISSIONS_TABLE, [data])
        else:
            raise ValueError(f"Unknown operation type: {op_type}")

    async def process_sync_queue(self) -> Dict:
        """
        Drain a snapshot of the form submission queue once.

        Each operation is applied in queue order. On failure its retry
        count goes up; once it reaches max_retries the operation is
        dropped and reported in errors.

        Returns:
            Dict with successful, failed and errors [{id, error}]
        """
        results = _empty_results()
        try:
            pending = self.queue.get_pending_operations()

            for operation in pending:
                try:
                    await self._apply_operation(operation)
                except Exception as e:
                    operation['retry_count'] += 1
                    dropped = operation['retry_count'] >= operation['max_retries']

                    try:
                        if dropped:
                            self.queue.remove_operation(operation['id'])
                        else:
                            self.queue.update_operation(operation)
                    except Exception as store_error:
                        # Left as-is in the queue; the next run retries it
                        logger.error(f"Failed to record failure of {operation['id']}: {store_error}")
                        continue

                    if dropped:
                        results['failed'] += 1
                        results['errors'].append({'id': operation['id'], 'error': str(e)})
                        logger.error(
                            f"Dropping {operation['type']} {operation['id']} after "
                            f"{operation['retry_count']} attempts: {e}"
                        )
                    else:
                        logger.warning(
                            f"{operation['type']} {operation['id']} failed "
                            f"({operation['retry_count']}/{operation['max_retries']}): {e}"
                        )
                    continue

                results['successful'] += 1
                try:
                    self.queue.remove_operation(operation['id'])
                except Exception as store_error:
                    logger.error(f"Applied {operation['id']} but could not dequeue it: {store_error}")

        except Exception as e:
            logger.error(f"Failed to process sync queue: {e}")

        return results

    async def apply_or_queue(self, op_id: str, op_type: str, data: Dict) -> str:
        """
        Apply a form mutation now if online, otherwise queue it.

        Returns:
            "applied" or "queued"
        """
        if self.controller.is_online():
            try:
                await self._apply_operation({'type': op_type, 'data': data})
                return "applied"
            except BackendError as e:
                logger.warning(f"Direct {op_type} failed, queueing {op_id}: {e}")

        self.queue.add_to_sync_queue({'id': op_id, 'type': op_type, 'data': data})
        return "queued"

    # ==================== Sync Runs ====================

    def get_pending_count(self) -> int:
        return self.queue.get_pending_sync_count() + self.background.get_pending_sync_count()

    async def sync_now(self) -> Dict:
        """
        Replay both mutation queues once.

        Returns:
            Dict with status and the results of each queue
        """
        if self.is_syncing:
            logger.warning("Sync already in progress, skipping")
            return {"status": "skipped", "reason": "sync_in_progress"}

        self.is_syncing = True
        try:
            pending = self.get_pending_count()
            if pending:
                logger.info(f"Syncing {pending} pending operations...")
                self.db.log_activity('sync_start', 'pending', f"Syncing {pending} operations")

            form_results = await self.process_sync_queue()
            entity_results = await self.background.process_all_pending_syncs(self.backend)
            self.last_sync_time = now_ms()

            successful = form_results['successful'] + entity_results['successful']
            failed = form_results['failed'] + entity_results['failed']
            if pending:
                self.db.log_activity(
                    'sync_complete',
                    'completed' if not failed else 'partial',
                    f"Synced {successful}, dropped {failed}"
                )
                logger.info(f"Sync complete: {successful} synced, {failed} dropped")

            return {
                "status": "success",
                "form_submissions": form_results,
                "entities": entity_results,
            }
        finally:
            self.is_syncing = False

    async def _check_and_sync(self):
        if self.controller.is_online() and self.get_pending_count() > 0:
            await self.sync_now()

    def start_periodic_sync_check(self, interval: float = 30) -> Callable[[], None]:
        """
        Check for pending work now and then every interval seconds.

        Must be called from a running event loop.

        Returns:
            Callable that stops the periodic check
        """
        async def _periodic():
            while True:
                try:
                    await self._check_and_sync()
                except Exception as e:
                    logger.error(f"Periodic sync check failed: {e}")
                await asyncio.sleep(interval)

        task = asyncio.get_running_loop().create_task(_periodic())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Periodic sync check every {interval}s")

        def stop():
            task.cancel()

        return stop

    # ==================== Cache Refresh ====================

    async def refresh_entity_cache(self, entity_type: str, max_age_ms: Optional[int] = None,
                                   force: bool = False) -> int:
        """
        Refetch an entity table into the cache when it is stale.

        Returns:
            Number of entities written (0 when skipped or on fetch failure)
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity_type}")
        if not self.controller.is_online():
            return 0

        max_age = DEFAULT_STALE_AFTER_MS if max_age_ms is None else max_age_ms
        if not force and not self.cache.is_cache_stale(entity_type, max_age):
            return 0

        try:
            rows = await self.backend.select(entity_type)
        except BackendError as e:
            logger.warning(f"Failed to fetch {entity_type}, keeping cached data: {e}")
            return 0

        entities = [
            {
                'id': row['id'],
                'data': row,
                'last_modified': row.get('updated_at') or row.get('created_at'),
            }
            for row in rows
            if row.get('id') is not None
        ]
        cached = self.cache.cache_entities(entity_type, entities)
        logger.info(f"Refreshed {entity_type}: {cached} cached")
        return cached

    # ==================== Status ====================

    async def get_sync_status(self) -> Dict:
        """Get current sync status."""
        return {
            "is_syncing": self.is_syncing,
            "pending_count": self.queue.get_pending_sync_count(),
            "background_pending_count": self.background.get_pending_sync_count(),
            "last_sync_time": self.last_sync_time,
            "last_sync_logs": self.db.get_recent_logs(5)
        }


# Singleton instance
_sync_manager_instance: Optional[SyncManager] = None


def init_sync_manager(backend: BackendClient, **kwargs) -> SyncManager:
    """Initialize the singleton SyncManager with a backend client."""
    global _sync_manager_instance
    _sync_manager_instance = SyncManager(backend, **kwargs)
    return _sync_manager_instance


def get_sync_manager() -> Optional[SyncManager]:
    """Get the singleton SyncManager instance."""
    return _sync_manager_instance
