"""Read tracking on top of the seen map."""

from typing import Any, Mapping, Optional

from .manager import StateManager
from .types import SEEN


def is_seen(state: Mapping[str, Any], post_id: str) -> bool:
    """True if post_id carries a read timestamp (None means marked unread)."""
    seen = state.get(SEEN) or {}
    return bool(seen.get(post_id))


def mark_seen(manager: StateManager, post_id: str, is_read: Optional[bool] = None) -> bool:
    """
    Mark a post read or unread.

    Args:
        manager: The live state manager
        post_id: Post identifier
        is_read: True to mark read, False to mark unread, None to toggle

    Returns:
        The new read state
    """
    if is_read is None:
        is_read = not is_seen(manager.state, post_id)
    value = manager.now() if is_read else None
    manager.update_state({SEEN: {post_id: value}})
    return is_read
