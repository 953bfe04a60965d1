"""
Services module for the OrderSnapr offline layer.

Provides the entity cache, mutation sync queues, form storage and
connection state handling.
"""

from .local_db import LocalDatabase, get_local_db, close_local_db
from .offline_cache import OfflineCache, get_offline_cache
from .sync_queue import SyncQueue, get_sync_queue
from .background_sync import BackgroundSyncQueue, get_background_sync
from .offline_storage import OfflineStorage, get_offline_storage
from .offline_mode import OfflineModeController, get_offline_controller, ConnectionMode
from .backend_client import BackendClient, BackendError
from .sync_manager import SyncManager, init_sync_manager, get_sync_manager

__all__ = [
    'LocalDatabase',
    'get_local_db',
    'close_local_db',
    'OfflineCache',
    'get_offline_cache',
    'SyncQueue',
    'get_sync_queue',
    'BackgroundSyncQueue',
    'get_background_sync',
    'OfflineStorage',
    'get_offline_storage',
    'OfflineModeController',
    'get_offline_controller',
    'ConnectionMode',
    'BackendClient',
    'BackendError',
    'SyncManager',
    'init_sync_manager',
    'get_sync_manager',
]
