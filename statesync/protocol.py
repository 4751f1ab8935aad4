"""
Protocol definitions for the state manager's collaborators.

Defines interface contracts for:
- KeyValueStoreProtocol: durable string storage (SQLite locally, or any
  host-provided get/set primitive)
- SchedulerProtocol / TimerHandle: deferred callbacks (the asyncio loop in
  production, a virtual clock in tests)
- StatusReporterProtocol: receives sync status transitions
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from .types import SyncStatus


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """
    Durable string key-value storage.

    Implemented by:
    - SqliteKeyValueStore (file-backed)
    - MemoryKeyValueStore (process-local, for tests and ephemeral hosts)
    """

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> bool: ...

    def close(self) -> None: ...


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None: ...


@runtime_checkable
class SchedulerProtocol(Protocol):
    """Runs a callback once after a delay in seconds.

    Returns None when the callback cannot be scheduled (no event loop).
    """

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> Optional[TimerHandle]: ...


@runtime_checkable
class StatusReporterProtocol(Protocol):
    """Receives the outcome of each remote operation."""

    def report(self, status: SyncStatus, detail: Optional[str] = None) -> None: ...
