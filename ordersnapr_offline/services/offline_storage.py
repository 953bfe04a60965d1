"""
offline_storage.py - Local Form Drafts and Templates

Keeps in-progress form submissions and the templates they are filled from,
so forms can be opened and saved without a connection.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .local_db import LocalDatabase, get_local_db, now_ms

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineStorage")


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value is not None else None


def _row_to_form(row) -> Dict:
    return {
        'id': row['id'],
        'answers': _loads(row['answers']),
        'signature': row['signature'],
        'metadata': _loads(row['metadata']),
        'timestamp': row['timestamp'],
        'synced': bool(row['synced']),
        'user_id': row['user_id'],
        'template_id': row['template_id'],
    }


class OfflineStorage:
    """Store for form drafts and form templates."""

    def __init__(self, db: Optional[LocalDatabase] = None):
        self._db = db

    @property
    def db(self) -> LocalDatabase:
        if self._db is None:
            self._db = get_local_db()
        return self._db

    # ==================== Form Data ====================

    def save_form_data_locally(self, form: Dict) -> bool:
        """
        Save or overwrite a form draft.

        Args:
            form: Dict with id, answers, user_id, template_id and optional
                signature, metadata, synced
        """
        try:
            with self.db.transaction() as cursor:
                cursor.execute('''
                    INSERT OR REPLACE INTO form_data
                    (id, answers, signature, metadata, timestamp, synced, user_id, template_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    form['id'],
                    json.dumps(form.get('answers')),
                    form.get('signature'),
                    json.dumps(form['metadata']) if form.get('metadata') is not None else None,
                    now_ms(),
                    1 if form.get('synced') else 0,
                    form.get('user_id'),
                    form.get('template_id')
                ))
            return True
        except Exception as e:
            logger.error(f"Failed to save form data locally: {e}")
            return False

    def get_form_data_locally(self, form_id: str) -> Optional[Dict]:
        try:
            row = self.db.fetch_one("SELECT * FROM form_data WHERE id = ?", (form_id,))
            return _row_to_form(row) if row else None
        except Exception as e:
            logger.error(f"Failed to get form data locally: {e}")
            return None

    def delete_form_data_locally(self, form_id: str):
        try:
            with self.db.transaction() as cursor:
                cursor.execute("DELETE FROM form_data WHERE id = ?", (form_id,))
        except Exception as e:
            logger.error(f"Failed to delete form data locally: {e}")

    def mark_form_as_synced(self, form_id: str):
        try:
            with self.db.transaction() as cursor:
                cursor.execute("UPDATE form_data SET synced = 1 WHERE id = ?", (form_id,))
        except Exception as e:
            logger.error(f"Failed to mark form as synced: {e}")

    def get_all_unsynced_forms(self) -> List[Dict]:
        try:
            rows = self.db.fetch_all(
                "SELECT * FROM form_data WHERE synced = 0 ORDER BY timestamp ASC"
            )
            return [_row_to_form(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to get unsynced forms: {e}")
            return []

    # ==================== Templates ====================

    def store_template_locally(self, template_id: str, data: Any) -> bool:
        try:
            with self.db.transaction() as cursor:
                cursor.execute('''
                    INSERT OR REPLACE INTO templates (id, data, timestamp)
                    VALUES (?, ?, ?)
                ''', (template_id, json.dumps(data), now_ms()))
            return True
        except Exception as e:
            logger.error(f"Failed to store template locally: {e}")
            return False

    def get_template_locally(self, template_id: str) -> Optional[Dict]:
        try:
            row = self.db.fetch_one("SELECT * FROM templates WHERE id = ?", (template_id,))
            if not row:
                return None
            return {'id': row['id'], 'data': json.loads(row['data']), 'timestamp': row['timestamp']}
        except Exception as e:
            logger.error(f"Failed to get template locally: {e}")
            return None

    def get_all_templates_locally(self) -> List[Dict]:
        try:
            rows = self.db.fetch_all("SELECT * FROM templates")
            return [
                {'id': row['id'], 'data': json.loads(row['data']), 'timestamp': row['timestamp']}
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Failed to get templates locally: {e}")
            return []


# Singleton instance
_storage_instance: Optional[OfflineStorage] = None


def get_offline_storage() -> OfflineStorage:
    """Get or create the singleton OfflineStorage instance."""
    global _storage_instance
    if _storage_instance is None:
        _storage_instance = OfflineStorage()
    return _storage_instance
