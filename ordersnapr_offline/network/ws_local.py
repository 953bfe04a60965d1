"""
ws_local.py - Local WebSocket Bridge for the UI

Pushes connection and sync status to connected UIs and accepts form
saves and submits, which are applied directly when online or queued
for later replay when not.
"""

import asyncio
import websockets
import json
import logging
from typing import Set

from ..services.background_sync import get_background_sync
from ..services.sync_queue import get_sync_queue
from ..services.offline_mode import get_offline_controller
from ..services.sync_manager import get_sync_manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalBridge")

# Connected clients
clients: Set = set()

FORM_MESSAGE_TYPES = {"form_save": "save", "form_submit": "submit"}


def pending_count() -> int:
    """Operations waiting in both the form queue and the entity queue."""
    manager = get_sync_manager()
    if manager is not None:
        return manager.get_pending_count()
    return get_sync_queue().get_pending_sync_count() + get_background_sync().get_pending_sync_count()


def build_status_message(message: str = "Connected to Local Bridge") -> str:
    controller = get_offline_controller()
    return json.dumps({
        "type": "status",
        "data": {
            "online": controller.is_online(),
            "mode": controller.get_current_mode().value,
            "pending_sync_count": pending_count(),
            "message": message
        }
    })


async def broadcast_status():
    """Broadcast current status to all connected clients."""
    if not clients:
        return

    status_msg = build_status_message()
    await asyncio.gather(
        *[client.send(status_msg) for client in clients],
        return_exceptions=True
    )


async def handle_message(data: dict) -> dict:
    """
    Handle one decoded UI message and build the reply.

    Supports:
    - form_save / form_submit (applied or stored locally)
    - sync_now, get_status, get_pending, ping
    """
    msg_type = data.get("type")
    manager = get_sync_manager()

    # ==================== Form Mutations ====================
    if msg_type in FORM_MESSAGE_TYPES:
        op_id = data.get("id")
        payload = data.get("data")
        if not op_id or not isinstance(payload, dict):
            return {"type": "form_error", "error": "id and data are required", "code": "INVALID"}
        if manager is None:
            return {"type": "form_error", "error": "Sync manager not initialized", "code": "NOT_READY"}

        try:
            outcome = await manager.apply_or_queue(op_id, FORM_MESSAGE_TYPES[msg_type], payload)
        except KeyError as e:
            return {"type": "form_error", "error": f"Missing field: {e}", "code": "INVALID"}
        return {
            "type": "form_ack",
            "id": op_id,
            "status": "applied" if outcome == "applied" else "stored_locally",
        }

    # ==================== Sync Trigger ====================
    elif msg_type == "sync_now":
        if manager is None:
            return {"type": "sync_error", "error": "Sync manager not initialized"}
        return {"type": "sync_result", "data": await manager.sync_now()}

    # ==================== Status Request ====================
    elif msg_type == "get_status":
        return {"type": "status", "data": get_offline_controller().get_status()}

    # ==================== Pending Count ====================
    elif msg_type == "get_pending":
        return {"type": "pending_info", "count": pending_count()}

    # ==================== Ping/Pong ====================
    elif msg_type == "ping":
        return {"type": "pong", "timestamp": data.get("timestamp")}

    logger.warning(f"Unknown message type: {msg_type}")
    return {"type": "error", "error": f"Unknown message type: {msg_type}"}


async def handler(websocket):
    """Handles one WebSocket connection from the local UI."""
    logger.info(f"Client connected: {websocket.remote_address}")
    clients.add(websocket)

    try:
        await websocket.send(build_status_message())

        async for message in websocket:
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                logger.error("Invalid JSON received")
                await websocket.send(json.dumps({
                    "type": "error",
                    "error": "Invalid JSON format"
                }))
                continue

            logger.info(f"Received: {data.get('type')}")
            reply = await handle_message(data)
            await websocket.send(json.dumps(reply))

            if reply["type"] in ("form_ack", "sync_result"):
                await broadcast_status()

    except websockets.exceptions.ConnectionClosed:
        logger.info("Client disconnected")
    finally:
        clients.discard(websocket)


async def start_local_bridge(port: int = 8002):
    """
    Start the Local WebSocket Bridge server and serve until cancelled.

    Args:
        port: Port to listen on (default: 8002)
    """
    controller = get_offline_controller()
    controller.on_mode_change(lambda old, new, reason: asyncio.create_task(broadcast_status()))

    async with websockets.serve(handler, "127.0.0.1", port):
        logger.info(f"Local WebSocket Bridge started on ws://127.0.0.1:{port}")
        await asyncio.Future()
