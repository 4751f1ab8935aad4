"""
Configuration management for synchronized state stores.

The configuration is stored as a TOML file in the store directory.
It specifies the storage backend, the debounce timings, the history
retention limit, and the remote endpoint used for replication.

Hosts that already keep settings elsewhere can build a SyncConfig from
any object exposing ``get(key)`` with SyncConfig.from_source().
"""

import json
import os
import tomllib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from .errors import ConfigError, SyncConfigError

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore


CONFIG_FILENAME = "statesync.toml"
CONFIG_VERSION = 1

DEFAULT_STORE_DIR = ".statesync"
DEFAULT_STATE_KEY = "bluesky_state"
DEFAULT_SAVE_DELAY = 1.0      # seconds of quiet before a local save
DEFAULT_SYNC_DELAY = 5.0      # seconds after a dirty local save before a push
DEFAULT_MAX_ENTRIES = 5000    # retained entries in the seen map
DEFAULT_SUCCESS_REVERT = 3.0  # seconds a success status stays visible

DEFAULT_NAMESPACE = "bluesky_navigator"
DEFAULT_DATABASE = "state"
DEFAULT_RECORD = "state:current"

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


@dataclass(frozen=True)
class RemoteEndpoint:
    """Connection details for the remote document store."""
    url: str
    username: str
    password: str
    namespace: str = DEFAULT_NAMESPACE
    database: str = DEFAULT_DATABASE
    record: str = DEFAULT_RECORD

    def __repr__(self) -> str:
        return (
            f"RemoteEndpoint(url={self.url!r}, username={self.username!r}, "
            f"namespace={self.namespace!r}, database={self.database!r})"
        )

    @classmethod
    def from_mapping(cls, data: dict) -> "RemoteEndpoint":
        """Build from a mapping with url/username/password keys."""
        try:
            return cls(
                url=str(data["url"]),
                username=str(data["username"]),
                password=str(data["password"]),
                namespace=str(data.get("namespace") or DEFAULT_NAMESPACE),
                database=str(data.get("database") or DEFAULT_DATABASE),
                record=str(data.get("record") or DEFAULT_RECORD),
            )
        except KeyError as e:
            raise SyncConfigError(f"Remote config is missing {e.args[0]!r}") from e

    @classmethod
    def from_json(cls, text: str) -> "RemoteEndpoint":
        """Parse the JSON object form used by browser hosts."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SyncConfigError(f"Remote config is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SyncConfigError("Remote config must be a JSON object")
        return cls.from_mapping(data)

    def validate(self) -> None:
        """Check the endpoint is usable for authenticated requests.

        Raises:
            SyncConfigError: on a missing URL or credentials, or plain
                HTTP to a non-local host (credentials would go in cleartext)
        """
        if not self.url:
            raise SyncConfigError("Remote URL is not configured")
        if not self.username or not self.password:
            raise SyncConfigError("Remote username and password are required")
        parsed = urlparse(self.url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise SyncConfigError(f"Remote URL is not an HTTP URL: {self.url}")
        if parsed.scheme != "https" and parsed.hostname not in _LOCAL_HOSTS:
            raise SyncConfigError(
                f"Remote URL must use HTTPS (got {self.url}). "
                "Use HTTPS to protect credentials, or use localhost for local development."
            )


@dataclass(frozen=True)
class SyncConfig:
    """
    Immutable settings for a StateManager.

    Delays are in seconds. The remote endpoint is optional: sync can be
    enabled without one, in which case every remote operation is rejected
    with SyncConfigError and reported as a failure.
    """
    enabled: bool = False
    remote: Optional[RemoteEndpoint] = None
    save_delay: float = DEFAULT_SAVE_DELAY
    sync_delay: float = DEFAULT_SYNC_DELAY
    max_entries: int = DEFAULT_MAX_ENTRIES
    success_revert_delay: float = DEFAULT_SUCCESS_REVERT
    state_key: str = DEFAULT_STATE_KEY

    def __post_init__(self):
        for name in ("save_delay", "sync_delay", "success_revert_delay"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number (got {value!r})")
        if isinstance(self.max_entries, bool) or not isinstance(self.max_entries, int) \
                or self.max_entries < 1:
            raise ConfigError(f"max_entries must be a positive integer (got {self.max_entries!r})")
        if not self.state_key:
            raise ConfigError("state_key must not be empty")

    @classmethod
    def from_source(cls, source: Any) -> "SyncConfig":
        """
        Build from a host settings object exposing ``get(key)``.

        Uses the browser host's keys: stateSyncEnabled, stateSyncConfig
        (a JSON string), stateSaveTimeout and stateSyncTimeout (both in
        milliseconds), and historyMax. Missing keys fall back to defaults.
        An unparseable stateSyncConfig leaves the remote unset so the
        failure surfaces on the first remote operation.
        """
        def ms(key: str, default: float) -> float:
            raw = source.get(key)
            if raw in (None, ""):
                return default
            try:
                return float(raw) / 1000.0
            except (TypeError, ValueError) as e:
                raise ConfigError(f"{key} must be a number of milliseconds (got {raw!r})") from e

        remote = None
        raw_remote = source.get("stateSyncConfig")
        if raw_remote:
            try:
                if isinstance(raw_remote, dict):
                    remote = RemoteEndpoint.from_mapping(raw_remote)
                else:
                    remote = RemoteEndpoint.from_json(str(raw_remote))
            except SyncConfigError:
                remote = None

        max_entries = source.get("historyMax")
        try:
            max_entries = int(max_entries) if max_entries not in (None, "") else DEFAULT_MAX_ENTRIES
        except (TypeError, ValueError) as e:
            raise ConfigError(f"historyMax must be an integer (got {max_entries!r})") from e

        return cls(
            enabled=bool(source.get("stateSyncEnabled")),
            remote=remote,
            save_delay=ms("stateSaveTimeout", DEFAULT_SAVE_DELAY),
            sync_delay=ms("stateSyncTimeout", DEFAULT_SYNC_DELAY),
            max_entries=max_entries,
        )


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = "sqlite"
    sync: SyncConfig = field(default_factory=SyncConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_store_path(override: Optional[Path] = None) -> Path:
    """Resolve the store directory: override, STATESYNC_STORE_PATH, ~/.statesync."""
    if override is not None:
        return Path(override).expanduser()
    env_path = os.environ.get("STATESYNC_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / DEFAULT_STORE_DIR


def _apply_env_overrides(remote: dict) -> dict:
    """Overlay STATESYNC_REMOTE_* environment variables onto a remote section."""
    merged = dict(remote)
    for key in ("url", "username", "password"):
        value = os.environ.get(f"STATESYNC_REMOTE_{key.upper()}")
        if value:
            merged[key] = value
    return merged


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    sync = data.get("sync", {})
    remote_section = _apply_env_overrides(data.get("remote", {}))
    remote = None
    if remote_section.get("url"):
        remote = RemoteEndpoint(
            url=remote_section["url"],
            username=remote_section.get("username", ""),
            password=remote_section.get("password", ""),
            namespace=remote_section.get("namespace", DEFAULT_NAMESPACE),
            database=remote_section.get("database", DEFAULT_DATABASE),
            record=remote_section.get("record", DEFAULT_RECORD),
        )

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", "sqlite"),
        sync=SyncConfig(
            enabled=sync.get("enabled", False),
            remote=remote,
            save_delay=sync.get("save_delay", DEFAULT_SAVE_DELAY),
            sync_delay=sync.get("sync_delay", DEFAULT_SYNC_DELAY),
            max_entries=sync.get("max_entries", DEFAULT_MAX_ENTRIES),
            success_revert_delay=sync.get("success_revert_delay", DEFAULT_SUCCESS_REVERT),
            state_key=store.get("key", DEFAULT_STATE_KEY),
        ),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist. Remote credentials are
    written as configured; prefer the STATESYNC_REMOTE_* variables for
    secrets.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    sync = config.sync
    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
            "key": sync.state_key,
        },
        "sync": {
            "enabled": sync.enabled,
            "save_delay": sync.save_delay,
            "sync_delay": sync.sync_delay,
            "max_entries": sync.max_entries,
            "success_revert_delay": sync.success_revert_delay,
        },
    }
    if sync.remote is not None:
        data["remote"] = {
            "url": sync.remote.url,
            "username": sync.remote.username,
            "password": sync.remote.password,
            "namespace": sync.remote.namespace,
            "database": sync.remote.database,
            "record": sync.remote.record,
        }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config


def with_sync(config: StoreConfig, **changes: Any) -> StoreConfig:
    """Copy of config with selected SyncConfig fields replaced."""
    return replace(config, sync=replace(config.sync, **changes))
