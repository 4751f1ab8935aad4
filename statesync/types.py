"""
Data types for the synchronized state document.
"""

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# The state document is a plain JSON-compatible mapping
StateDocument = dict[str, Any]

# Keys every state document carries
LAST_UPDATED = "lastUpdated"
SEEN = "seen"
BLOCKS = "blocks"

# Server-assigned identifier on remote snapshots
REMOTE_ID_FIELD = "id"

# Sort key for missing or unparseable timestamps (treated as oldest)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_STATE: StateDocument = {
    "seen": {},
    "lastUpdated": None,
    "page": "home",
    "blocks": {
        "all": {"updated": None, "handles": []},
        "recent": {"updated": None, "handles": []},
    },
    "feedSortReverse": False,
    "feedHideRead": False,
}


def default_state() -> StateDocument:
    """Fresh deep copy of DEFAULT_STATE."""
    return copy.deepcopy(DEFAULT_STATE)


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.mmmZ.

    Millisecond precision with a 'Z' suffix, so timestamps written by
    this package sort and compare alongside those written by browser
    clients sharing the same remote document.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts full ISO timestamps with 'Z' or offset suffixes as well as
    bare dates (YYYY-MM-DD), which are taken as midnight UTC.
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Parse value as a timestamp, returning None when absent or invalid."""
    if not value or not isinstance(value, str):
        return None
    try:
        return parse_utc_timestamp(value)
    except (ValueError, OverflowError):
        return None


def is_older(since: Any, other: Any) -> bool:
    """True if timestamp `since` strictly predates timestamp `other`.

    Both values must parse; anything missing or malformed compares False.
    """
    a = coerce_timestamp(since)
    b = coerce_timestamp(other)
    if a is None or b is None:
        return False
    return a < b


class SyncStatus(str, Enum):
    """Externally observable outcome of the most recent remote operation."""
    READY = "ready"
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class SyncConflict:
    """A push skipped because the remote copy is newer than the local one."""
    local_updated: Optional[str]
    remote_updated: Optional[str]


@dataclass(frozen=True)
class PushResult:
    """Outcome of a push attempt.

    written is False when the push was skipped by the last-write-wins
    comparison; transport failures raise instead.
    """
    written: bool
    since: Optional[str]
    remote_updated: Optional[str]

    @property
    def conflict(self) -> Optional[SyncConflict]:
        if self.written:
            return None
        return SyncConflict(self.since, self.remote_updated)
