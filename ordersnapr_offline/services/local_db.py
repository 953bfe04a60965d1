"""
local_db.py - SQLite Database Manager for the Offline Layer

This module owns the single on-device SQLite connection shared by the
entity cache, the sync queues and the offline form storage.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Optional
import logging

from ..config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalDB")

DB_FILENAME = "ordersnapr-offline.db"

# Entity partitions of the offline cache
ENTITY_TYPES = ("work_orders", "customers", "properties", "invoices")


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class LocalDatabase:
    """SQLite database manager shared by every offline store."""

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            data_dir = Path(get_settings().data_dir)
            data_dir.mkdir(parents=True, exist_ok=True)
            db_path = str(data_dir / DB_FILENAME)
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        """Open the connection on first use and create the schema."""
        with self._lock:
            if self._conn is None:
                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._init_db(conn)
                self._conn = conn
                logger.info(f"SQLite database opened at: {self.db_path}")
            return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def close(self):
        """Close the shared connection. The next access reopens it."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info(f"SQLite database closed: {self.db_path}")

    def _init_db(self, conn: sqlite3.Connection):
        """Initialize database schema if tables don't exist."""
        cursor = conn.cursor()

        # Entity cache, one table per entity type
        for entity_type in ENTITY_TYPES:
            cursor.execute(f'''
                CREATE TABLE IF NOT EXISTS {entity_type} (
                    id TEXT PRIMARY KEY NOT NULL,
                    data TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    last_modified TEXT NOT NULL
                )
            ''')
            cursor.execute(f'''
                CREATE INDEX IF NOT EXISTS idx_{entity_type}_timestamp
                ON {entity_type} (timestamp)
            ''')

        # Cache sync metadata
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS metadata (
                entity_type TEXT PRIMARY KEY NOT NULL,
                last_sync INTEGER NOT NULL,
                count INTEGER DEFAULT 0
            )
        ''')

        # Form submission mutation queue
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS sync_queue (
                id TEXT PRIMARY KEY NOT NULL,
                type TEXT NOT NULL,
                data TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                retry_count INTEGER DEFAULT 0,
                max_retries INTEGER DEFAULT 3
            )
        ''')

        # Generic entity mutation queue
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS pending_syncs (
                id TEXT PRIMARY KEY NOT NULL,
                entity TEXT NOT NULL,
                operation TEXT NOT NULL,
                data TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                retry_count INTEGER DEFAULT 0,
                max_retries INTEGER DEFAULT 5,
                last_error TEXT DEFAULT NULL
            )
        ''')
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_pending_syncs_timestamp
            ON pending_syncs (timestamp)
        ''')
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_pending_syncs_entity
            ON pending_syncs (entity)
        ''')

        # Offline form drafts and templates
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS form_data (
                id TEXT PRIMARY KEY NOT NULL,
                answers TEXT,
                signature TEXT DEFAULT NULL,
                metadata TEXT DEFAULT NULL,
                timestamp INTEGER NOT NULL,
                synced INTEGER DEFAULT 0,
                user_id TEXT,
                template_id TEXT
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS templates (
                id TEXT PRIMARY KEY NOT NULL,
                data TEXT NOT NULL,
                timestamp INTEGER NOT NULL
            )
        ''')

        # Sync Activity Logs Table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS sync_activity_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                status TEXT DEFAULT 'pending',
                details TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        conn.commit()

    # ==================== Access Helpers ====================

    @contextmanager
    def transaction(self):
        """
        Yield a cursor inside a single transaction.

        Commits when the block exits cleanly and rolls back (re-raising)
        otherwise.
        """
        with self._lock:
            conn = self.connection
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def fetch_all(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(query, params).fetchall()

    def fetch_one(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(query, params).fetchone()

    # ==================== Activity Logging ====================

    def log_activity(self, event_type: str, status: str = 'pending', details: str = None):
        """Log a sync activity event. Failures are logged, never raised."""
        try:
            with self.transaction() as cursor:
                cursor.execute('''
                    INSERT INTO sync_activity_logs (event_type, status, details)
                    VALUES (?, ?, ?)
                ''', (event_type, status, details))
        except sqlite3.Error as e:
            logger.error(f"Failed to log activity {event_type}: {e}")

    def get_recent_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent activity logs, newest first."""
        try:
            rows = self.fetch_all('''
                SELECT * FROM sync_activity_logs
                ORDER BY id DESC
                LIMIT ?
            ''', (limit,))
        except sqlite3.Error as e:
            logger.error(f"Failed to read activity logs: {e}")
            return []
        return [dict(row) for row in rows]


# Singleton instance
_db_instance: Optional[LocalDatabase] = None
_db_lock = threading.Lock()


def get_local_db() -> LocalDatabase:
    """Get or create the singleton LocalDatabase instance."""
    global _db_instance
    with _db_lock:
        if _db_instance is None:
            _db_instance = LocalDatabase()
        return _db_instance


def close_local_db():
    """Close and forget the singleton LocalDatabase instance."""
    global _db_instance
    with _db_lock:
        if _db_instance is not None:
            _db_instance.close()
            _db_instance = None
