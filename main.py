import sys
import asyncio

import uvicorn

from ordersnapr_offline import __version__
from ordersnapr_offline.config import get_settings, DEFAULT_ENV_FILE
from ordersnapr_offline.services.local_db import get_local_db, close_local_db, ENTITY_TYPES
from ordersnapr_offline.services.backend_client import BackendClient
from ordersnapr_offline.services.offline_cache import get_offline_cache
from ordersnapr_offline.services.offline_mode import get_offline_controller
from ordersnapr_offline.services.sync_manager import init_sync_manager
from ordersnapr_offline.network.ws_local import start_local_bridge
from ordersnapr_offline.status_api.app import app as status_app


def prune_caches(retention_ms):
    """Drop cached records older than the retention window."""
    cache = get_offline_cache()
    for entity_type in ENTITY_TYPES:
        pruned = cache.prune_old_cache_entries(entity_type, retention_ms)
        if pruned:
            print(f"[.] Pruned {pruned} old {entity_type} entries")


async def heartbeat(backend, controller):
    """One connectivity check against the backend."""
    if await backend.ping():
        controller.on_heartbeat_success()
    else:
        controller.on_heartbeat_failure("Backend unreachable")


async def run(settings, once=False):
    db = get_local_db()
    print(f"[*] Local database: {db.db_path}")

    backend = BackendClient(
        base_url=settings.supabase_url,
        api_key=settings.supabase_anon_key,
        access_token=settings.supabase_access_token,
        timeout=settings.backend_timeout
    )
    controller = get_offline_controller()
    manager = init_sync_manager(backend)

    # 1. Storage housekeeping
    prune_caches(settings.cache_retention_ms)

    # 2. Local surfaces for the UI
    print(f"[*] Starting Local WebSocket Bridge on port {settings.local_bridge_port}...")
    bridge_task = asyncio.create_task(start_local_bridge(settings.local_bridge_port))

    print(f"[*] Starting Status API on port {settings.status_api_port}...")
    status_server = uvicorn.Server(uvicorn.Config(
        status_app,
        host="127.0.0.1",
        port=settings.status_api_port,
        log_level=settings.log_level.lower()
    ))
    status_task = asyncio.create_task(status_server.serve())

    # 3. Periodic replay of queued mutations
    stop_periodic_sync = manager.start_periodic_sync_check(settings.sync_interval)

    print("[*] Entering Main Loop...")
    try:
        while True:
            await heartbeat(backend, controller)

            if controller.is_online():
                for entity_type in ENTITY_TYPES:
                    await manager.refresh_entity_cache(entity_type, settings.cache_stale_after_ms)
            else:
                print(f"[.] Offline, {manager.get_pending_count()} changes waiting to sync")

            if once:
                print("[*] --once flag detected. Running final sync and exiting loop.")
                await manager.sync_now()
                break

            await asyncio.sleep(settings.heartbeat_interval)
    finally:
        stop_periodic_sync()
        bridge_task.cancel()
        status_server.should_exit = True
        await asyncio.gather(bridge_task, status_task, return_exceptions=True)
        close_local_db()


def main():
    print(f"=== OrderSnapr Offline Layer v{__version__} ===")

    settings = get_settings()
    if not settings.has_backend:
        print(f"[!] SUPABASE_URL and SUPABASE_ANON_KEY must be set (env or {DEFAULT_ENV_FILE}).")
        sys.exit(1)

    print(f"[*] Backend: {settings.supabase_url}")

    try:
        asyncio.run(run(settings, once="--once" in sys.argv))
    except KeyboardInterrupt:
        print("\n[!] Shutting down...")


if __name__ == "__main__":
    main()
