"""
Pluggable storage backend factory.

Creates the durable key-value store based on configuration. The built-in
backends are "sqlite" (default) and "memory". External backends register
via the ``statesync.stores`` entry point group.

External backend packages provide a factory function::

    def create_store(config: StoreConfig) -> KeyValueStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."statesync.stores"]
    my-backend = "my_package.backend:create_store"
"""

from .config import StoreConfig
from .protocol import KeyValueStoreProtocol

STATE_DB_FILENAME = "state.db"


def create_store(config: StoreConfig) -> KeyValueStoreProtocol:
    """
    Create the durable store from configuration.

    For ``backend = "sqlite"``, opens ``<store>/state.db``. For
    ``"memory"``, returns an empty process-local store. Other values are
    loaded via the ``statesync.stores`` entry point group.
    """
    if config.backend == "sqlite":
        from .kv_store import SqliteKeyValueStore
        return SqliteKeyValueStore(config.path / STATE_DB_FILENAME)
    if config.backend == "memory":
        from .kv_store import MemoryKeyValueStore
        return MemoryKeyValueStore()
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: StoreConfig) -> KeyValueStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="statesync.stores")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. No backends registered."
    )
