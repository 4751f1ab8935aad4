"""
Cancellable debounce timers.

A DebounceTimer wraps one scheduled callback. reset() cancels the unfired
instance and schedules a fresh one, so at most one callback per timer is
ever pending, and it fires only after a full quiet period since the last
reset. Once fired, the callback runs to completion; there is nothing left
to cancel.
"""

import asyncio
import logging
from typing import Callable, Optional

from .protocol import SchedulerProtocol, TimerHandle

logger = logging.getLogger(__name__)


class AsyncioScheduler:
    """Schedules callbacks on the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> Optional[asyncio.TimerHandle]:
        """Schedule callback, or return None when no event loop is running."""
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return None
        return loop.call_later(delay, callback)


class DebounceTimer:
    """A named, resettable one-shot timer."""

    def __init__(
        self,
        name: str,
        delay: float,
        callback: Callable[[], None],
        scheduler: SchedulerProtocol,
    ):
        self.name = name
        self.delay = delay
        self._callback = callback
        self._scheduler = scheduler
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        """True while a scheduled callback has not yet fired."""
        return self._handle is not None

    def reset(self) -> None:
        """Cancel any unfired instance and start a new quiet period."""
        self.cancel()
        self._handle = self._scheduler.call_later(self.delay, self._fire)
        if self._handle is None:
            logger.warning("No running event loop; timer %s not scheduled", self.name)
            return
        logger.debug("Timer %s scheduled in %.3fs", self.name, self.delay)

    def cancel(self) -> bool:
        """
        Cancel the pending callback, if any.

        Returns:
            True if a pending callback was cancelled
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        logger.debug("Timer %s fired", self.name)
        self._callback()
