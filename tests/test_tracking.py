"""Tests for read tracking."""

import pytest

from statesync.tracking import is_seen, mark_seen


class TestIsSeen:
    def test_timestamp_means_read(self):
        assert is_seen({"seen": {"p1": "2024-01-01T00:00:00Z"}}, "p1")

    def test_null_means_unread(self):
        assert not is_seen({"seen": {"p1": None}}, "p1")

    def test_missing(self):
        assert not is_seen({"seen": {}}, "p1")
        assert not is_seen({}, "p1")


class TestMarkSeen:
    @pytest.mark.asyncio
    async def test_mark_read(self, make_manager):
        manager = await make_manager()

        assert mark_seen(manager, "p1", True) is True

        assert manager["seen"]["p1"] is not None
        assert manager.dirty

    @pytest.mark.asyncio
    async def test_mark_unread_keeps_entry(self, make_manager):
        manager = await make_manager()
        mark_seen(manager, "p1", True)

        assert mark_seen(manager, "p1", False) is False

        assert "p1" in manager["seen"]
        assert manager["seen"]["p1"] is None

    @pytest.mark.asyncio
    async def test_toggle(self, make_manager):
        manager = await make_manager()

        assert mark_seen(manager, "p1") is True
        assert mark_seen(manager, "p1") is False
        assert mark_seen(manager, "p1") is True

    @pytest.mark.asyncio
    async def test_other_entries_preserved(self, make_manager):
        manager = await make_manager()
        mark_seen(manager, "p1", True)

        mark_seen(manager, "p2", True)

        assert set(manager["seen"]) == {"p1", "p2"}

    @pytest.mark.asyncio
    async def test_single_save_for_burst(self, make_manager, memory_store, scheduler):
        manager = await make_manager()
        saves = []
        manager.add_listener(lambda state: saves.append(dict(state["seen"])))

        for i in range(5):
            mark_seen(manager, f"p{i}", True)
        scheduler.advance(1.0)

        assert len(saves) == 1
        assert len(saves[0]) == 5
