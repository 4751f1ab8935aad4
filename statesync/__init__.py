"""
statesync

Durable storage for a single mutable application-state document, with
debounced local saves, optional last-write-wins replication to a remote
document store, and bounded retention of the read-history map.

Quick Start:
    from statesync import StateManager, SyncConfig, MemoryKeyValueStore

    manager = await StateManager.create(SyncConfig(), MemoryKeyValueStore())
    manager.add_listener(lambda state: print(state["lastUpdated"]))
    manager.update_state({"feedHideRead": True})   # saved after 1s of quiet

CLI Usage:
    statesync show
    statesync seen <post-id> --read
    statesync push --force

Default Store:
    ~/.statesync/ (SQLite database plus statesync.toml).
    Override with STATESYNC_STORE_PATH or --store.

Environment Variables:
    STATESYNC_STORE_PATH       - Override default store location
    STATESYNC_REMOTE_URL       - Remote store URL
    STATESYNC_REMOTE_USERNAME  - Remote store user
    STATESYNC_REMOTE_PASSWORD  - Remote store password
    STATESYNC_VERBOSE          - Set to 1 for debug logging in the CLI
"""

from .config import RemoteEndpoint, StoreConfig, SyncConfig
from .errors import (
    ConfigError,
    RemoteQueryError,
    RemoteSyncError,
    StateSyncError,
    SyncConfigError,
)
from .kv_store import MemoryKeyValueStore, SqliteKeyValueStore
from .manager import StateManager, install_teardown_hook
from .persistence import LocalPersistence
from .remote import RemoteSyncClient
from .retention import prune
from .status import SyncStatusReporter
from .timers import AsyncioScheduler, DebounceTimer
from .types import DEFAULT_STATE, PushResult, SyncConflict, SyncStatus

__version__ = "0.1.0"

__all__ = [
    "AsyncioScheduler",
    "ConfigError",
    "DEFAULT_STATE",
    "DebounceTimer",
    "LocalPersistence",
    "MemoryKeyValueStore",
    "PushResult",
    "RemoteEndpoint",
    "RemoteQueryError",
    "RemoteSyncClient",
    "RemoteSyncError",
    "SqliteKeyValueStore",
    "StateManager",
    "StateSyncError",
    "StoreConfig",
    "SyncConfig",
    "SyncConfigError",
    "SyncConflict",
    "SyncStatus",
    "SyncStatusReporter",
    "install_teardown_hook",
    "prune",
]
