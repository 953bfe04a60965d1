"""
background_sync.py - Generic Entity Mutation Queue

Queues inserts, updates and deletes against any synced table while the
device is offline, and replays them with a bounded retry count.
"""

import json
import random
import string
import logging
from typing import Dict, List, Optional

from .local_db import LocalDatabase, get_local_db, now_ms
from .backend_client import BackendClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("BackgroundSync")

SYNC_ENTITIES = ("work_orders", "customers", "properties", "invoices", "form_submissions")
SYNC_OPERATIONS = ("insert", "update", "delete")
DEFAULT_MAX_RETRIES = 5

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_sync_id() -> str:
    suffix = ''.join(random.choices(_ID_ALPHABET, k=9))
    return f"sync-{now_ms()}-{suffix}"


def _row_to_sync(row) -> Dict:
    return {
        'id': row['id'],
        'entity': row['entity'],
        'operation': row['operation'],
        'data': json.loads(row['data']),
        'timestamp': row['timestamp'],
        'retry_count': row['retry_count'],
        'max_retries': row['max_retries'],
        'last_error': row['last_error'],
    }


class BackgroundSyncQueue:
    """Durable queue of PendingSync records."""

    def __init__(self, db: Optional[LocalDatabase] = None):
        self._db = db

    @property
    def db(self) -> LocalDatabase:
        if self._db is None:
            self._db = get_local_db()
        return self._db

    def queue_sync(self, entity: str, operation: str, data: Dict,
                   sync_id: Optional[str] = None) -> str:
        """
        Queue an operation for background sync.

        Raises:
            Whatever the store raised; the caller must know the mutation
            was not captured.
        """
        sync_id = sync_id or generate_sync_id()
        try:
            with self.db.transaction() as cursor:
                cursor.execute('''
                    INSERT OR REPLACE INTO pending_syncs
                    (id, entity, operation, data, timestamp, retry_count, max_retries, last_error)
                    VALUES (?, ?, ?, ?, ?, 0, ?, NULL)
                ''', (sync_id, entity, operation, json.dumps(data), now_ms(), DEFAULT_MAX_RETRIES))
        except Exception as e:
            logger.error(f"Failed to queue sync: {e}")
            raise
        logger.info(f"Queued {operation} on {entity} as {sync_id}")
        return sync_id

    async def _process_single_sync(self, backend: BackendClient, sync: Dict):
        entity = sync['entity']
        operation = sync['operation']
        data = sync['data']

        if entity not in SYNC_ENTITIES:
            raise ValueError(f"Unknown entity: {entity}")

        if operation == 'insert':
            await backend.insert(entity, [data])
        elif operation == 'update':
            if not data.get('id'):
                raise ValueError("Update operation requires an id")
            update_data = {k: v for k, v in data.items() if k != 'id'}
            await backend.update(entity, data['id'], update_data)
        elif operation == 'delete':
            if not data.get('id'):
                raise ValueError("Delete operation requires an id")
            await backend.delete(entity, data['id'])
        else:
            raise ValueError(f"Unknown operation: {operation}")

    async def process_all_pending_syncs(self, backend: BackendClient) -> Dict:
        """
        Replay every pending sync once.

        Returns:
            Dict with successful, failed and errors [{id, error}]
        """
        results = {"successful": 0, "failed": 0, "errors": []}
        try:
            pending = self.get_pending_syncs()
            for sync in pending:
                try:
                    await self._process_single_sync(backend, sync)
                except Exception as e:
                    logger.warning(f"Sync operation {sync['id']} failed: {e}")
                    sync['last_error'] = str(e) or 'Unknown error'
                    sync['retry_count'] += 1

                    if sync['retry_count'] >= sync['max_retries']:
                        self.remove_pending_sync(sync['id'])
                        results['failed'] += 1
                        results['errors'].append({
                            'id': sync['id'],
                            'error': sync['last_error'] or 'Max retries exceeded',
                        })
                    else:
                        try:
                            self._save_retry_state(sync)
                        except Exception as store_error:
                            logger.error(f"Failed to save retry state of {sync['id']}: {store_error}")
                    continue

                self.remove_pending_sync(sync['id'])
                results['successful'] += 1

        except Exception as e:
            logger.error(f"Failed to process pending syncs: {e}")
        return results

    def _save_retry_state(self, sync: Dict):
        with self.db.transaction() as cursor:
            cursor.execute('''
                UPDATE pending_syncs SET retry_count = ?, last_error = ?
                WHERE id = ?
            ''', (sync['retry_count'], sync['last_error'], sync['id']))

    def get_pending_syncs(self) -> List[Dict]:
        """All pending syncs, oldest first."""
        rows = self.db.fetch_all(
            "SELECT * FROM pending_syncs ORDER BY timestamp ASC, rowid ASC"
        )
        return [_row_to_sync(row) for row in rows]

    def get_pending_sync_count(self) -> int:
        try:
            return self.db.fetch_one("SELECT COUNT(*) FROM pending_syncs")[0]
        except Exception as e:
            logger.error(f"Failed to get pending sync count: {e}")
            return 0

    def get_pending_syncs_for_entity(self, entity: str) -> List[Dict]:
        """Pending syncs for one entity table."""
        try:
            rows = self.db.fetch_all(
                "SELECT * FROM pending_syncs WHERE entity = ? ORDER BY timestamp ASC, rowid ASC",
                (entity,)
            )
            return [_row_to_sync(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get pending syncs for {entity}: {e}")
            return []

    def remove_pending_sync(self, sync_id: str):
        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM pending_syncs WHERE id = ?", (sync_id,))
        except Exception as e:
            logger.error(f"Failed to remove pending sync {sync_id}: {e}")

    def clear_all_pending_syncs(self):
        """Drop every pending sync. Use with caution."""
        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM pending_syncs")
            logger.info("All pending syncs cleared")
        except Exception as e:
            logger.error(f"Failed to clear pending syncs: {e}")


# Singleton instance
_background_sync_instance: Optional[BackgroundSyncQueue] = None


def get_background_sync() -> BackgroundSyncQueue:
    """Get or create the singleton BackgroundSyncQueue instance."""
    global _background_sync_instance
    if _background_sync_instance is None:
        _background_sync_instance = BackgroundSyncQueue()
    return _background_sync_instance
