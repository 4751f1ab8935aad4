"""
Local persistence of the state document.

Serializes the document as one JSON object under a fixed key in the
durable store. The seen map is pruned before every write. Storage
failures are logged and never raised: a broken local store must not take
the host application down with it.
"""

import json
import logging
import sqlite3
from typing import Optional

from .protocol import KeyValueStoreProtocol
from .retention import prune
from .types import SEEN, StateDocument

logger = logging.getLogger(__name__)


class LocalPersistence:
    """Reads and writes the state document in a KeyValueStoreProtocol."""

    def __init__(self, store: KeyValueStoreProtocol, key: str, max_entries: int):
        self._store = store
        self.key = key
        self.max_entries = max_entries

    def save(self, document: StateDocument) -> bool:
        """
        Prune and persist document.

        The seen map is replaced in place with its pruned copy, so the
        caller's document honors the retention bound once this returns.

        Returns:
            True if the document was written
        """
        try:
            seen = document.get(SEEN)
            if isinstance(seen, dict) and len(seen) > self.max_entries:
                document[SEEN] = prune(seen, self.max_entries)
                logger.debug(
                    "Pruned seen map from %d to %d entries",
                    len(seen), len(document[SEEN]),
                )
            payload = json.dumps(document, ensure_ascii=False)
            self._store.set(self.key, payload)
        except (OSError, TypeError, ValueError, sqlite3.Error) as e:
            logger.error("Failed to save local state under %r: %s", self.key, e)
            return False
        logger.debug("Local state saved (%d bytes)", len(payload))
        return True

    def load(
        self,
        key: Optional[str] = None,
        fallback: Optional[StateDocument] = None,
    ) -> Optional[StateDocument]:
        """
        Load the document stored under key (default: this unit's key).

        Returns fallback when nothing is stored, the payload is not valid
        JSON, or it decodes to something other than a JSON object.
        """
        key = key or self.key
        try:
            raw = self._store.get(key)
        except (OSError, sqlite3.Error) as e:
            logger.error("Failed to read local state under %r: %s", key, e)
            return fallback
        if raw is None:
            return fallback
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Stored state under %r is not valid JSON, using fallback: %s", key, e)
            return fallback
        if not isinstance(data, dict):
            logger.warning("Stored state under %r is not an object, using fallback", key)
            return fallback
        return data
