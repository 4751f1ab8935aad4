"""
Bounded retention for the seen map.

Eviction is by timestamp value, not by insertion or access order: the
entries with the most recent timestamps survive. Entries marked unread
(None) or carrying an unparseable timestamp sort as oldest.
"""

from datetime import datetime
from typing import Any, Mapping

from .types import EPOCH, coerce_timestamp


def prune(seen: Mapping[str, Any], max_entries: int) -> dict[str, Any]:
    """
    Keep only the max_entries most recent entries of seen.

    Args:
        seen: Mapping of post id to ISO timestamp (or None)
        max_entries: Maximum number of entries to retain

    Returns:
        New dict of size min(max_entries, len(seen)), newest first.
        Ties keep their original relative order.
    """
    if max_entries < 0:
        raise ValueError(f"max_entries must be non-negative (got {max_entries})")
    entries = sorted(seen.items(), key=_sort_key, reverse=True)
    return dict(entries[:max_entries])


def _sort_key(item: tuple[str, Any]) -> tuple[bool, datetime]:
    ts = coerce_timestamp(item[1])
    return (ts is not None, ts or EPOCH)
