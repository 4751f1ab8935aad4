"""
Sync status reporting.

    ready -> pending -> success -> (after a delay) ready
                     -> failure  (sticky until the next operation)

The success timeout exists for human observers only; nothing in the sync
logic depends on it.
"""

import logging
from typing import Callable, Optional

from .protocol import SchedulerProtocol, TimerHandle
from .types import SyncStatus

logger = logging.getLogger(__name__)

StatusCallback = Callable[[SyncStatus, Optional[str]], None]


class SyncStatusReporter:
    """Tracks the current sync status and fans transitions out to subscribers."""

    def __init__(self, scheduler: SchedulerProtocol, success_revert_delay: float = 3.0):
        self._scheduler = scheduler
        self._revert_delay = success_revert_delay
        self._revert_handle: Optional[TimerHandle] = None
        self._subscribers: list[StatusCallback] = []
        self.status = SyncStatus.READY
        self.detail: Optional[str] = None

    def subscribe(self, callback: StatusCallback) -> None:
        """Register a callback receiving (status, detail) on every transition."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: StatusCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def report(self, status: SyncStatus, detail: Optional[str] = None) -> None:
        """Record a transition and notify subscribers."""
        if self._revert_handle is not None:
            self._revert_handle.cancel()
            self._revert_handle = None

        self.status = SyncStatus(status)
        self.detail = detail
        if self.status is SyncStatus.FAILURE:
            logger.warning("sync: %s %s", self.status.value, detail or "")
        else:
            logger.debug("sync: %s %s", self.status.value, detail or "")

        for callback in list(self._subscribers):
            try:
                callback(self.status, detail)
            except Exception as e:
                logger.warning("Status subscriber %r failed: %s", callback, e)

        if self.status is SyncStatus.SUCCESS:
            self._revert_handle = self._scheduler.call_later(
                self._revert_delay, self._revert
            )

    def _revert(self) -> None:
        self._revert_handle = None
        self.report(SyncStatus.READY)
