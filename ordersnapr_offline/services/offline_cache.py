"""
offline_cache.py - Entity Cache for Offline Reads

Keeps a per-device copy of work orders, customers, properties and invoices
so the UI can render without the backend. The cache is best-effort: every
storage error is logged and turned into an empty result, never raised.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .local_db import LocalDatabase, get_local_db, ENTITY_TYPES, now_ms, now_iso

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineCache")

DEFAULT_STALE_AFTER_MS = 5 * 60 * 1000       # 5 minutes
DEFAULT_RETENTION_MS = 24 * 60 * 60 * 1000   # 24 hours


def _table(entity_type: str) -> str:
    """Map an entity type onto its cache table."""
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown entity type: {entity_type}")
    return entity_type


class OfflineCache:
    """SQLite-backed key-value cache partitioned by entity type."""

    def __init__(self, db: Optional[LocalDatabase] = None):
        self._db = db

    @property
    def db(self) -> LocalDatabase:
        if self._db is None:
            self._db = get_local_db()
        return self._db

    # ==================== Writes ====================

    def cache_entity(self, entity_type: str, entity_id: str, data: Any,
                     last_modified: Optional[str] = None) -> bool:
        """
        Cache a single entity, overwriting any previous record.

        Returns:
            True if written, False on any error
        """
        try:
            table = _table(entity_type)
            if entity_id is None:
                raise ValueError("entity id is required")
            with self.db.transaction() as cursor:
                cursor.execute(f'''
                    INSERT OR REPLACE INTO {table} (id, data, timestamp, last_modified)
                    VALUES (?, ?, ?, ?)
                ''', (entity_id, json.dumps(data), now_ms(), last_modified or now_iso()))
            return True
        except Exception as e:
            logger.error(f"Failed to cache {entity_type}: {e}")
            return False

    def cache_entities(self, entity_type: str, entities: List[Dict]) -> int:
        """
        Cache multiple entities in one transaction.

        Args:
            entity_type: Cache partition
            entities: List of dicts with id, data and optional last_modified

        Returns:
            Number of entities actually written
        """
        try:
            table = _table(entity_type)
            cached = 0
            with self.db.transaction() as cursor:
                for entity in entities:
                    try:
                        if entity.get('id') is None:
                            raise ValueError("entity id is required")
                        cursor.execute(f'''
                            INSERT OR REPLACE INTO {table} (id, data, timestamp, last_modified)
                            VALUES (?, ?, ?, ?)
                        ''', (
                            entity['id'],
                            json.dumps(entity['data']),
                            now_ms(),
                            entity.get('last_modified') or now_iso()
                        ))
                        cached += 1
                    except Exception as e:
                        logger.error(f"Failed to cache entity {entity.get('id')}: {e}")
        except Exception as e:
            logger.error(f"Failed to cache {entity_type} entities: {e}")
            return 0

        self._update_sync_metadata(entity_type, cached)
        return cached

    def _update_sync_metadata(self, entity_type: str, count: int):
        try:
            with self.db.transaction() as cursor:
                cursor.execute('''
                    INSERT OR REPLACE INTO metadata (entity_type, last_sync, count)
                    VALUES (?, ?, ?)
                ''', (entity_type, now_ms(), count))
        except Exception as e:
            logger.error(f"Failed to update sync metadata for {entity_type}: {e}")

    # ==================== Reads ====================

    def get_cached_entity(self, entity_type: str, entity_id: str) -> Optional[Any]:
        """Get a single cached entity's data, or None."""
        try:
            row = self.db.fetch_one(
                f"SELECT data FROM {_table(entity_type)} WHERE id = ?", (entity_id,)
            )
            return json.loads(row['data']) if row else None
        except Exception as e:
            logger.error(f"Failed to get cached {entity_type}: {e}")
            return None

    def get_all_cached_entities(self, entity_type: str) -> List[Any]:
        """Get the data of every cached entity of a type (unordered)."""
        try:
            rows = self.db.fetch_all(f"SELECT data FROM {_table(entity_type)}")
            return [json.loads(row['data']) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get all cached {entity_type}: {e}")
            return []

    def get_cache_metadata(self, entity_type: str) -> Optional[Dict]:
        """Get sync metadata for an entity type, or None."""
        try:
            row = self.db.fetch_one(
                "SELECT entity_type, last_sync, count FROM metadata WHERE entity_type = ?",
                (entity_type,)
            )
            return dict(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get cache metadata for {entity_type}: {e}")
            return None

    # ==================== Clearing ====================

    def clear_entity_cache(self, entity_type: str):
        """Remove every cached record and the metadata of one entity type."""
        try:
            table = _table(entity_type)
            with self.db.transaction() as cursor:
                cursor.execute(f"DELETE FROM {table}")
                cursor.execute("DELETE FROM metadata WHERE entity_type = ?", (entity_type,))
            logger.info(f"Cleared cache for {entity_type}")
        except Exception as e:
            logger.error(f"Failed to clear cache for {entity_type}: {e}")

    def clear_all_caches(self):
        """Remove every cached record and all metadata."""
        try:
            with self.db.transaction() as cursor:
                for entity_type in ENTITY_TYPES:
                    cursor.execute(f"DELETE FROM {entity_type}")
                cursor.execute("DELETE FROM metadata")
            logger.info("Cleared all caches")
        except Exception as e:
            logger.error(f"Failed to clear all caches: {e}")

    def get_cache_stats(self) -> Optional[Dict[str, Dict]]:
        """
        Get record count and last sync time for every entity type.

        Returns:
            {entity_type: {"count": int, "last_sync": int | None}}, or None
            if the store cannot be read
        """
        try:
            stats = {}
            for entity_type in ENTITY_TYPES:
                count = self.db.fetch_one(f"SELECT COUNT(*) FROM {entity_type}")[0]
                meta = self.db.fetch_one(
                    "SELECT last_sync FROM metadata WHERE entity_type = ?", (entity_type,)
                )
                stats[entity_type] = {
                    "count": count,
                    "last_sync": meta['last_sync'] if meta else None,
                }
            return stats
        except Exception as e:
            logger.error(f"Failed to get cache stats: {e}")
            return None

    # ==================== Staleness & Pruning ====================

    def is_cache_stale(self, entity_type: str, max_age_ms: int = DEFAULT_STALE_AFTER_MS) -> bool:
        """True if the entity type was never bulk-synced or last synced over max_age_ms ago."""
        metadata = self.get_cache_metadata(entity_type)
        if not metadata:
            return True
        return now_ms() - metadata['last_sync'] > max_age_ms

    def prune_old_cache_entries(self, entity_type: str, max_age_ms: int = DEFAULT_RETENTION_MS) -> int:
        """
        Delete records written more than max_age_ms ago.

        Returns:
            Number of records pruned
        """
        try:
            table = _table(entity_type)
            cutoff = now_ms() - max_age_ms
            with self.db.transaction() as cursor:
                cursor.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff,))
                pruned = cursor.rowcount
            if pruned:
                logger.info(f"Pruned {pruned} old {entity_type} entries")
            return pruned
        except Exception as e:
            logger.error(f"Failed to prune old cache entries for {entity_type}: {e}")
            return 0


# Singleton instance
_cache_instance: Optional[OfflineCache] = None


def get_offline_cache() -> OfflineCache:
    """Get or create the singleton OfflineCache instance."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = OfflineCache()
    return _cache_instance
