"""
Exceptions and error logging for statesync.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class StateSyncError(Exception):
    """Base class for statesync errors."""


class ConfigError(StateSyncError, ValueError):
    """Invalid configuration value."""


class RemoteSyncError(StateSyncError):
    """A remote operation was rejected."""


class RemoteQueryError(RemoteSyncError):
    """Transport failure or non-success response from the remote store."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SyncConfigError(RemoteSyncError, ConfigError):
    """Sync is enabled but the remote endpoint or credentials are unusable."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting STATESYNC_STORE_PATH."""
    store = os.environ.get("STATESYNC_STORE_PATH")
    if store:
        return Path(store) / "statesync-errors.log"
    return Path.home() / ".statesync" / "statesync-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
