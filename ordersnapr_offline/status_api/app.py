"""
Status API - Local HTTP Surface for the UI

This FastAPI application runs on the device next to the UI. It reports
connection and sync state for the connection banner and exposes the
cache maintenance and sync triggers:
- Connection status and pending mutation counts
- Cache statistics, clearing and pruning
- Manual sync trigger

Serve on port 8001 (the local WebSocket bridge uses 8002)
"""

from fastapi import FastAPI, HTTPException
import logging

from ..services.local_db import ENTITY_TYPES
from ..services.offline_cache import get_offline_cache, DEFAULT_RETENTION_MS
from ..services.offline_mode import get_offline_controller
from ..services.sync_queue import get_sync_queue
from ..services.background_sync import get_background_sync
from ..services.sync_manager import get_sync_manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("StatusAPI")

app = FastAPI(title="OrderSnapr Offline Status")


def _check_entity_type(entity_type: str):
    if entity_type not in ENTITY_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown entity type: {entity_type}")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/status")
async def get_status():
    """Connection state and pending mutation counts."""
    controller = get_offline_controller()
    manager = get_sync_manager()

    return {
        **controller.get_status(),
        "pending_sync_count": get_sync_queue().get_pending_sync_count(),
        "background_pending_count": get_background_sync().get_pending_sync_count(),
        "is_syncing": manager.is_syncing if manager else False,
    }


# ==================== Cache ====================

@app.get("/api/cache/stats")
async def cache_stats():
    stats = get_offline_cache().get_cache_stats()
    if stats is None:
        raise HTTPException(status_code=503, detail="Cache unavailable")
    return stats


@app.delete("/api/cache")
async def clear_all_caches():
    get_offline_cache().clear_all_caches()
    return {"status": "cleared"}


@app.delete("/api/cache/{entity_type}")
async def clear_entity_cache(entity_type: str):
    _check_entity_type(entity_type)
    get_offline_cache().clear_entity_cache(entity_type)
    return {"status": "cleared", "entity_type": entity_type}


@app.post("/api/cache/{entity_type}/prune")
async def prune_cache(entity_type: str, max_age_ms: int = DEFAULT_RETENTION_MS):
    _check_entity_type(entity_type)
    pruned = get_offline_cache().prune_old_cache_entries(entity_type, max_age_ms)
    return {"entity_type": entity_type, "pruned": pruned}


# ==================== Sync ====================

@app.post("/api/sync")
async def trigger_sync():
    """Replay the mutation queues now."""
    manager = get_sync_manager()
    if manager is None:
        raise HTTPException(status_code=503, detail="Sync manager not initialized")
    return await manager.sync_now()


@app.get("/api/sync/status")
async def sync_status():
    manager = get_sync_manager()
    if manager is None:
        raise HTTPException(status_code=503, detail="Sync manager not initialized")
    return await manager.get_sync_status()


def start_status_api(port: int = 8001):
    """Start the status API server (blocking)."""
    import uvicorn
    logger.info(f"Starting Status API on http://127.0.0.1:{port}")
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="info")


if __name__ == "__main__":
    start_status_api()
