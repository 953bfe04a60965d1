"""
sync_queue.py - Queue of Form Submission Mutations

Holds form saves and submits that could not reach the backend until the
sync manager replays them.
"""

import json
import logging
from typing import Dict, List, Optional

from .local_db import LocalDatabase, get_local_db, now_ms

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncQueue")

OPERATION_TYPES = ("save", "submit")
DEFAULT_MAX_RETRIES = 3


def _row_to_operation(row) -> Dict:
    return {
        'id': row['id'],
        'type': row['type'],
        'data': json.loads(row['data']),
        'timestamp': row['timestamp'],
        'retry_count': row['retry_count'],
        'max_retries': row['max_retries'],
    }


class SyncQueue:
    """Durable store of QueuedOperation records keyed by id."""

    def __init__(self, db: Optional[LocalDatabase] = None):
        self._db = db

    @property
    def db(self) -> LocalDatabase:
        if self._db is None:
            self._db = get_local_db()
        return self._db

    def add_to_sync_queue(self, operation: Dict):
        """
        Queue a mutation for later replay.

        Args:
            operation: Dict with id, type ('save' or 'submit') and data
        """
        try:
            with self.db.transaction() as cursor:
                cursor.execute('''
                    INSERT OR REPLACE INTO sync_queue
                    (id, type, data, timestamp, retry_count, max_retries)
                    VALUES (?, ?, ?, ?, 0, ?)
                ''', (
                    operation['id'],
                    operation['type'],
                    json.dumps(operation.get('data')),
                    now_ms(),
                    DEFAULT_MAX_RETRIES
                ))
            logger.info(f"Queued {operation['type']} operation {operation['id']}")
        except Exception as e:
            logger.error(f"Failed to add to sync queue: {e}")

    def get_pending_operations(self) -> List[Dict]:
        """Get all queued operations in queue order."""
        try:
            rows = self.db.fetch_all(
                "SELECT * FROM sync_queue ORDER BY timestamp ASC, rowid ASC"
            )
            return [_row_to_operation(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to read sync queue: {e}")
            return []

    def update_operation(self, operation: Dict):
        """Persist a modified operation (retry state)."""
        with self.db.transaction() as cursor:
            cursor.execute('''
                UPDATE sync_queue SET retry_count = ?, max_retries = ?
                WHERE id = ?
            ''', (operation['retry_count'], operation['max_retries'], operation['id']))

    def remove_operation(self, operation_id: str):
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM sync_queue WHERE id = ?", (operation_id,))

    def get_pending_sync_count(self) -> int:
        """Get count of queued operations."""
        try:
            return self.db.fetch_one("SELECT COUNT(*) FROM sync_queue")[0]
        except Exception as e:
            logger.error(f"Failed to get pending sync count: {e}")
            return 0

    def clear_sync_queue(self):
        """Drop every queued operation."""
        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM sync_queue")
            logger.info("Sync queue cleared")
        except Exception as e:
            logger.error(f"Failed to clear sync queue: {e}")


# Singleton instance
_queue_instance: Optional[SyncQueue] = None


def get_sync_queue() -> SyncQueue:
    """Get or create the singleton SyncQueue instance."""
    global _queue_instance
    if _queue_instance is None:
        _queue_instance = SyncQueue()
    return _queue_instance
