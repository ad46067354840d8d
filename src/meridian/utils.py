"""
Shared utility functions for Meridian.

Contains path helpers, clock helpers and small formatting utilities used
across packages.
"""

import os
import time
from datetime import datetime, timezone
from pathlib import Path


def get_app_dir() -> Path:
    """Get the application data directory."""
    override = os.environ.get("MERIDIAN_HOME")
    if override:
        app_dir = Path(override)
    else:
        app_dir = Path.home() / ".meridian"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_settings_path() -> Path:
    """Get path to settings file."""
    return get_app_dir() / "settings.json"


def get_store_path() -> Path:
    """Get path to the local key-value store file."""
    return get_app_dir() / "store.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


# ============================================
# Clock helpers
# ============================================

def now_ms(clock=time.time) -> int:
    """Current time as integer epoch milliseconds."""
    return int(clock() * 1000)


def iso_from_ms(timestamp_ms: int) -> str:
    """Format epoch milliseconds as an ISO 8601 UTC string."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def ms_from_iso(value: str) -> int:
    """Parse an ISO 8601 string back to epoch milliseconds."""
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def truncate(value: str, start: int = 6, end: int = 4, separator: str = "...") -> str:
    """Shorten an address or DID for display: 0x1234...5678"""
    if not value or len(value) <= start + end + len(separator):
        return value
    return f"{value[:start]}{separator}{value[-end:]}"
