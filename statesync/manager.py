"""
State manager: owns the live state document.

Mutations are applied synchronously and persisted on two debounce timers:

- local-save: reset by every update_state(); fires after a quiet period
  and writes the (pruned) document to the durable store.
- remote-sync: reset by every local save that began dirty; fires later
  and pushes the document to the remote store, last-write-wins.

Everything runs on one asyncio event loop. Mutation never awaits, so it
is atomic with respect to other work on the loop. Remote operations run
as tasks; a push already in flight is never cancelled.
"""

import asyncio
import atexit
import copy
import logging
from types import MappingProxyType
from typing import Any, Callable, Coroutine, Mapping, Optional

import httpx

from .config import SyncConfig
from .errors import RemoteSyncError
from .persistence import LocalPersistence
from .protocol import KeyValueStoreProtocol, SchedulerProtocol
from .remote import RemoteSyncClient
from .status import SyncStatusReporter
from .timers import AsyncioScheduler, DebounceTimer
from .types import (
    BLOCKS,
    DEFAULT_STATE,
    LAST_UPDATED,
    SEEN,
    PushResult,
    StateDocument,
    SyncConflict,
    utc_now,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Mapping[str, Any]], None]
ConflictListener = Callable[[SyncConflict], None]


class StateManager:
    """
    The single live state document and its persistence schedule.

    Construct once per process and pass it to every component that reads
    or mutates shared state. Use ``await StateManager.create(...)`` to get
    an initialized instance.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: KeyValueStoreProtocol,
        *,
        scheduler: Optional[SchedulerProtocol] = None,
        remote: Optional[RemoteSyncClient] = None,
        reporter: Optional[SyncStatusReporter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Callable[[], str] = utc_now,
    ):
        self.config = config
        self._scheduler = scheduler or AsyncioScheduler()
        self.status = reporter or SyncStatusReporter(
            self._scheduler, config.success_revert_delay
        )
        self._persistence = LocalPersistence(store, config.state_key, config.max_entries)
        if remote is None and config.enabled:
            remote = RemoteSyncClient(config.remote, reporter=self.status, transport=transport)
        self._remote = remote
        self._now = now

        self._state: StateDocument = {SEEN: {}, LAST_UPDATED: None}
        self._dirty = False       # mutated since the last local save
        self._unsynced = False    # local changes not yet pushed
        self._listeners: list[Listener] = []
        self._conflict_listeners: list[ConflictListener] = []
        self._tasks: set[asyncio.Task] = set()

        self._local_timer = DebounceTimer(
            "local-save", config.save_delay, self._save_local, self._scheduler
        )
        self._remote_timer = DebounceTimer(
            "remote-sync", config.sync_delay, self._on_remote_timer, self._scheduler
        )

    @classmethod
    async def create(
        cls,
        config: SyncConfig,
        store: KeyValueStoreProtocol,
        defaults: Optional[StateDocument] = None,
        **kwargs: Any,
    ) -> "StateManager":
        """Construct and initialize a manager."""
        manager = cls(config, store, **kwargs)
        await manager.initialize(defaults)
        return manager

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def state(self) -> Mapping[str, Any]:
        """Read-only view of the live document."""
        return MappingProxyType(self._state)

    def get(self, key: str, default: Any = None) -> Any:
        return self._state.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._state[key]

    def __contains__(self, key: object) -> bool:
        return key in self._state

    def now(self) -> str:
        """Current timestamp from the manager's clock."""
        return self._now()

    @property
    def remote(self) -> Optional[RemoteSyncClient]:
        return self._remote

    @property
    def sync_enabled(self) -> bool:
        return self.config.enabled and self._remote is not None

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def unsynced(self) -> bool:
        return self._unsynced

    @property
    def local_save_pending(self) -> bool:
        return self._local_timer.pending

    @property
    def remote_sync_pending(self) -> bool:
        return self._remote_timer.pending

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self, defaults: Optional[StateDocument] = None) -> StateDocument:
        """
        Build the live document: defaults, then local, then remote if newer.

        Never raises. Unreadable local state leaves the defaults in place;
        a failed remote read leaves the local document in place.
        """
        base = copy.deepcopy(defaults if defaults is not None else DEFAULT_STATE)
        document = dict(base)
        try:
            document.update(self._persistence.load(fallback={}))
        except Exception as e:
            logger.error("Error loading state, using defaults: %s", e)
            document = dict(base)

        if self.sync_enabled:
            try:
                remote = await self._remote.pull(document.get(LAST_UPDATED))
            except RemoteSyncError as e:
                logger.error("Failed to load remote state: %s", e)
                remote = None
            if remote:
                document.update(remote)
                logger.info("Remote state loaded (lastUpdated=%s)", remote.get(LAST_UPDATED))

        self._state = _ensure_shape(document)
        self._dirty = False
        return self._state

    def reset_state(self, defaults: Optional[StateDocument] = None) -> None:
        """Replace the live document wholesale. Does not schedule a save."""
        self._state = _ensure_shape(copy.deepcopy(defaults if defaults is not None else DEFAULT_STATE))

    async def drain(self) -> None:
        """Wait for in-flight remote tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending timers, finish in-flight work, release the client."""
        self._local_timer.cancel()
        self._remote_timer.cancel()
        await self.drain()
        if self._remote is not None:
            await self._remote.aclose()

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def update_state(self, partial: Mapping[str, Any]) -> None:
        """
        Shallow-merge partial into the live document and schedule a save.

        lastUpdated is always set here; a caller-supplied value is ignored.
        The seen map is the one exception to the shallow merge: its entries
        are merged into the existing map, since history only grows until
        the next prune.
        """
        for key, value in partial.items():
            current = self._state.get(key)
            if key == SEEN and isinstance(value, Mapping) and isinstance(current, dict):
                self._state[SEEN] = {**current, **value}
            else:
                self._state[key] = value
        self._state[LAST_UPDATED] = self._now()
        self._dirty = True
        self._local_timer.reset()

    def save_immediately(
        self,
        save_local: bool = True,
        save_remote: bool = False,
    ) -> Optional[asyncio.Task]:
        """
        Persist now, bypassing the debounce timers.

        save_remote is honored only when sync is enabled and an event loop
        is running. Returns the push task, if one was started.
        """
        if save_local:
            self._local_timer.cancel()
            self._save_local()
        if save_remote and self.sync_enabled:
            self._remote_timer.cancel()
            return self._spawn(self._sync_remote())
        return None

    def _save_local(self) -> bool:
        began_dirty = self._dirty
        logger.debug("Saving local state...")
        if not self._persistence.save(self._state):
            return False
        self._dirty = False
        self.notify_listeners()
        if began_dirty or self._unsynced:
            self._schedule_remote_sync()
        return True

    def _schedule_remote_sync(self) -> None:
        if not self.sync_enabled:
            logger.debug("Remote sync disabled")
            return
        self._unsynced = True
        self._remote_timer.reset()

    def _on_remote_timer(self) -> None:
        self._spawn(self._sync_remote())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; remote save skipped")
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -------------------------------------------------------------------------
    # Remote
    # -------------------------------------------------------------------------

    async def _sync_remote(self) -> Optional[PushResult]:
        try:
            return await self.push_now()
        except RemoteSyncError as e:
            # Left unsynced: the next local save reschedules the push
            logger.error("Failed to save remote state: %s", e)
            return None

    async def push_now(self, *, force: bool = False) -> PushResult:
        """
        Push the current document to the remote store and wait for it.

        Raises:
            RemoteSyncError: sync disabled, misconfigured, or unreachable
        """
        if self._remote is None:
            raise RemoteSyncError("Remote sync is not enabled")
        snapshot = copy.deepcopy(self._state)
        result = await self._remote.push(snapshot, snapshot.get(LAST_UPDATED), force=force)
        self._unsynced = False
        if not result.written:
            self._notify_conflict(result.conflict)
        return result

    async def pull_now(self) -> bool:
        """
        Replace local fields with the remote copy if it is newer.

        The merged document is saved locally without scheduling a push.

        Returns:
            True if remote state was applied

        Raises:
            RemoteSyncError: sync disabled, misconfigured, or unreachable
        """
        if self._remote is None:
            raise RemoteSyncError("Remote sync is not enabled")
        remote = await self._remote.pull(self._state.get(LAST_UPDATED))
        if not remote:
            return False
        self._state.update(remote)
        _ensure_shape(self._state)
        self._local_timer.cancel()
        self._remote_timer.cancel()
        self._dirty = False
        # Local changes are superseded by the remote copy
        self._unsynced = False
        self._save_local()
        return True

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, callback: Listener) -> None:
        """Register a callback run after every completed local save.

        The callback receives a read-only view of the live document.
        """
        if not callable(callback):
            raise TypeError(f"Listener must be callable, got {type(callback).__name__}")
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def notify_listeners(self) -> None:
        view = self.state
        for callback in list(self._listeners):
            try:
                callback(view)
            except Exception as e:
                logger.warning("State listener %r failed: %s", callback, e)

    def add_conflict_listener(self, callback: ConflictListener) -> None:
        """Register a callback run when a push is skipped because remote is newer."""
        if not callable(callback):
            raise TypeError(f"Listener must be callable, got {type(callback).__name__}")
        self._conflict_listeners.append(callback)

    def _notify_conflict(self, conflict: Optional[SyncConflict]) -> None:
        if conflict is None:
            return
        for callback in list(self._conflict_listeners):
            try:
                callback(conflict)
            except Exception as e:
                logger.warning("Conflict listener %r failed: %s", callback, e)


def _ensure_shape(document: StateDocument) -> StateDocument:
    """Guarantee the keys every consumer relies on."""
    if not isinstance(document.get(SEEN), dict):
        document[SEEN] = {}
    document.setdefault(LAST_UPDATED, None)
    if not document.get(BLOCKS):
        document[BLOCKS] = copy.deepcopy(DEFAULT_STATE[BLOCKS])
    return document


def install_teardown_hook(manager: StateManager) -> Callable[[], None]:
    """
    Save local state at interpreter exit.

    Returns a function that removes the hook.
    """
    def _on_exit() -> None:
        manager.save_immediately(True, False)

    atexit.register(_on_exit)
    return lambda: atexit.unregister(_on_exit)
