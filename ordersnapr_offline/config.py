"""
config.py - Environment configuration for the offline layer

Values come from the process environment, optionally seeded from an env
file (config/secrets.env by default).
"""

import os
import logging
from pathlib import Path
from typing import Optional

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Config")

BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_DIR = BASE_DIR / "config"
DEFAULT_ENV_FILE = CONFIG_DIR / "secrets.env"
DEFAULT_DATA_DIR = BASE_DIR / "data"


def load_env_file(path) -> bool:
    """
    Load KEY=VALUE lines from an env file into os.environ.

    Blank lines and comments are skipped, existing variables are not
    overwritten. Returns False when the file does not exist.
    """
    if not os.path.exists(path):
        return False
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, val = line.split('=', 1)
            os.environ.setdefault(key.strip(), val.strip().strip('"').strip("'"))
    logger.info(f"Environment loaded from {path}")
    return True


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


class Settings:
    """Resolved runtime settings."""

    def __init__(self):
        self.supabase_url = os.getenv("SUPABASE_URL", "").rstrip('/')
        self.supabase_anon_key = os.getenv("SUPABASE_ANON_KEY", "")
        self.supabase_access_token = os.getenv("SUPABASE_ACCESS_TOKEN") or None
        self.data_dir = os.getenv("ORDERSNAPR_DATA_DIR", str(DEFAULT_DATA_DIR))

        self.sync_interval = _get_int("SYNC_INTERVAL_SECONDS", 30)
        self.heartbeat_interval = _get_int("HEARTBEAT_INTERVAL_SECONDS", 30)
        self.cache_stale_after_ms = _get_int("CACHE_STALE_AFTER_MS", 5 * 60 * 1000)
        self.cache_retention_ms = _get_int("CACHE_RETENTION_MS", 24 * 60 * 60 * 1000)
        self.heartbeat_failures_before_offline = _get_int("HEARTBEAT_FAILURES_BEFORE_OFFLINE", 3)
        self.backend_timeout = _get_int("BACKEND_TIMEOUT_SECONDS", 30)

        self.status_api_port = _get_int("STATUS_API_PORT", 8001)
        self.local_bridge_port = _get_int("LOCAL_BRIDGE_PORT", 8002)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def has_backend(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


# Singleton instance
_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """Get the settings, loading the env file on first use."""
    global _settings
    if _settings is None or reload:
        load_env_file(os.getenv("ORDERSNAPR_ENV_FILE", str(DEFAULT_ENV_FILE)))
        _settings = Settings()
    return _settings
