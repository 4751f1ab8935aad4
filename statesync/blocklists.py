"""
Refresh of the public most-blocked account lists kept under ``blocks``.

Each list is stored as ``{"updated": <epoch ms>, "handles": [...]}`` and
refetched once it is older than the refresh interval. Fetch failures are
logged and leave the previous list in place.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .manager import StateManager
from .types import BLOCKS

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0
REFRESH_INTERVAL = 24 * 60 * 60  # seconds


@dataclass(frozen=True)
class BlockListSource:
    """Where a block list is fetched from and which response key holds it."""
    url: str
    response_key: str


BLOCK_LIST_SOURCES: dict[str, BlockListSource] = {
    "all": BlockListSource(
        "https://api.clearsky.services/api/v1/anon/lists/fun-facts", "blocked"
    ),
    "recent": BlockListSource(
        "https://api.clearsky.services/api/v1/anon/lists/funer-facts", "blocked24"
    ),
}


class BlockListRefresher:
    """Fetches stale block lists and stores them through the state manager."""

    def __init__(
        self,
        manager: StateManager,
        *,
        sources: Optional[dict[str, BlockListSource]] = None,
        interval: float = REFRESH_INTERVAL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._manager = manager
        self._sources = sources if sources is not None else BLOCK_LIST_SOURCES
        self._interval = interval
        self._transport = transport
        self._clock = clock

    def is_stale(self, name: str) -> bool:
        """True if the named list was never fetched or is older than the interval."""
        entry = (self._manager.get(BLOCKS) or {}).get(name) or {}
        updated = entry.get("updated")
        if not isinstance(updated, (int, float)):
            return True
        return self._clock() * 1000 - updated > self._interval * 1000

    async def refresh(self, *, force: bool = False) -> list[str]:
        """
        Refetch every stale list.

        Returns:
            Names of the lists that were updated
        """
        stale = [name for name in self._sources if force or self.is_stale(name)]
        if not stale:
            return []

        fetched: dict[str, dict] = {}
        async with httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=DEFAULT_TIMEOUT,
            transport=self._transport,
        ) as client:
            for name in stale:
                handles = await self._fetch(client, self._sources[name])
                if handles is not None:
                    fetched[name] = {
                        "updated": int(self._clock() * 1000),
                        "handles": handles,
                    }

        if fetched:
            blocks = dict(self._manager.get(BLOCKS) or {})
            blocks.update(fetched)
            self._manager.update_state({BLOCKS: blocks})
        return list(fetched)

    async def _fetch(self, client: httpx.AsyncClient, source: BlockListSource) -> Optional[list[str]]:
        try:
            resp = await client.get(source.url)
            resp.raise_for_status()
            entries = resp.json()["data"][source.response_key]
            return [entry["Handle"] for entry in entries]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("Couldn't fetch block list %s: %s", source.url, e)
            return None
