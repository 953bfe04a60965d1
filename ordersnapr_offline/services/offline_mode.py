"""
offline_mode.py - Backend Reachability for the Offline Layer

Decides whether form mutations go straight to the backend or into the
local sync queue. The state is driven by heartbeat results; listeners
are told about mode changes, and reconnect listeners start queue replay.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from ..config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineMode")


class ConnectionMode(Enum):
    ONLINE = "online"                # mutations applied directly
    OFFLINE = "offline"              # mutations stored locally
    TRANSITIONING = "transitioning"  # no heartbeat result yet


def describe_offline_duration(last_online: Optional[datetime],
                              now: Optional[datetime] = None) -> str:
    """Human label for how long ago the backend was last reached."""
    if last_online is None:
        return "Just now"
    now = now or datetime.now(timezone.utc)
    minutes = int((now - last_online).total_seconds() // 60)
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return "Just now"


class OfflineModeController:
    """
    Online/offline state for the sync layer.

    One failed heartbeat is not enough to go offline: it takes
    max_failures_before_offline in a row, so a single dropped request
    does not start queueing saves that could have been applied.
    """

    def __init__(self, max_failures_before_offline: int = 3):
        self.current_mode = ConnectionMode.TRANSITIONING
        self.max_failures_before_offline = max(1, max_failures_before_offline)
        self.consecutive_failures = 0
        self.last_online: Optional[datetime] = None
        self.offline_since: Optional[datetime] = None

        self._mode_listeners: List[Callable] = []
        self._reconnect_listeners: List[Callable] = []

        logger.info(
            f"OfflineModeController initialized "
            f"(offline after {self.max_failures_before_offline} failed heartbeats)"
        )

    def get_current_mode(self) -> ConnectionMode:
        return self.current_mode

    def is_online(self) -> bool:
        return self.current_mode == ConnectionMode.ONLINE

    def is_offline(self) -> bool:
        return self.current_mode == ConnectionMode.OFFLINE

    def _notify(self, listeners: List[Callable], *args):
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"Connection listener error: {e}")

    def _set_mode(self, new_mode: ConnectionMode, reason: str = "") -> bool:
        if new_mode == self.current_mode:
            return False

        old_mode = self.current_mode
        self.current_mode = new_mode
        if new_mode == ConnectionMode.OFFLINE:
            self.offline_since = datetime.now(timezone.utc)
        elif new_mode == ConnectionMode.ONLINE:
            self.offline_since = None

        logger.info(f"Mode changed: {old_mode.value} -> {new_mode.value} | Reason: {reason}")
        self._notify(self._mode_listeners, old_mode, new_mode, reason)
        return True

    # ==================== Heartbeat Results ====================

    def on_heartbeat_success(self):
        was_offline = self.is_offline()
        self.last_online = datetime.now(timezone.utc)
        self.consecutive_failures = 0

        if was_offline:
            self._set_mode(ConnectionMode.ONLINE, "Connection restored")
            self._notify(self._reconnect_listeners)
        else:
            self._set_mode(ConnectionMode.ONLINE, "Initial connection established")

    def on_heartbeat_failure(self, error: str = ""):
        self.consecutive_failures += 1
        logger.warning(
            f"Heartbeat failed ({self.consecutive_failures}/{self.max_failures_before_offline}): {error}"
        )
        if self.consecutive_failures >= self.max_failures_before_offline:
            self._set_mode(
                ConnectionMode.OFFLINE,
                f"Backend unreachable after {self.consecutive_failures} heartbeats"
            )

    def on_connection_lost(self):
        """Go offline now, without waiting for heartbeats to fail."""
        self.consecutive_failures = max(self.consecutive_failures, self.max_failures_before_offline)
        self._set_mode(ConnectionMode.OFFLINE, "Network disconnected")

    # ==================== Listeners ====================

    def on_mode_change(self, callback: Callable):
        """Register callback(old_mode, new_mode, reason)."""
        self._mode_listeners.append(callback)

    def on_reconnect(self, callback: Callable):
        """Register a no-argument callback run after leaving offline mode."""
        self._reconnect_listeners.append(callback)

    # ==================== Status ====================

    def get_status(self) -> dict:
        status = {
            "mode": self.current_mode.value,
            "is_online": self.is_online(),
            "last_online": self.last_online.isoformat() if self.last_online else None,
            "offline_since": self.offline_since.isoformat() if self.offline_since else None,
            "consecutive_failures": self.consecutive_failures,
        }
        if self.is_offline():
            status["last_online_label"] = describe_offline_duration(self.last_online)
        return status


# Singleton instance
_controller_instance: Optional[OfflineModeController] = None


def get_offline_controller() -> OfflineModeController:
    """Get or create the singleton, using the configured failure threshold."""
    global _controller_instance
    if _controller_instance is None:
        settings = get_settings()
        _controller_instance = OfflineModeController(settings.heartbeat_failures_before_offline)
    return _controller_instance
