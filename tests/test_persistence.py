"""
Unit tests for the state store and the background persister.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from meeting_agent.infrastructure.persistence.background_persister import BackgroundPersister
from meeting_agent.infrastructure.persistence.state_store import InMemoryStateStore


class TestInMemoryStateStore:
    """Tests for snapshot storage."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, state_store):
        await state_store.save_state("s-1", {"current_mode": "casual", "meeting_data": {"title": "A"}})
        loaded = await state_store.load_state("s-1")

        assert loaded["id"] == "s-1"
        assert loaded["meeting_data"] == {"title": "A"}
        assert "updated_at" in loaded

    @pytest.mark.asyncio
    async def test_created_at_is_preserved(self, state_store):
        await state_store.save_state("s-1", {"created_at": "2030-01-01T00:00:00"})
        await state_store.save_state("s-1", {"created_at": "2031-01-01T00:00:00"})

        assert (await state_store.load_state("s-1"))["created_at"] == "2030-01-01T00:00:00"

    @pytest.mark.asyncio
    async def test_load_returns_copy(self, state_store):
        await state_store.save_state("s-1", {"meeting_data": {"title": "A"}})
        loaded = await state_store.load_state("s-1")
        loaded["meeting_data"]["title"] = "B"

        assert (await state_store.load_state("s-1"))["meeting_data"]["title"] == "A"

    @pytest.mark.asyncio
    async def test_delete(self, state_store):
        await state_store.save_state("s-1", {})

        assert await state_store.delete_state("s-1") is True
        assert await state_store.delete_state("s-1") is False
        assert await state_store.load_state("s-1") is None


class TestBackgroundPersister:
    """Tests for fire-and-forget saves."""

    @pytest.mark.asyncio
    async def test_submit_saves_in_background(self, persister, state_store):
        assert persister.submit("s-1", {"meeting_data": {}}) is True
        await persister.flush()

        assert await state_store.load_state("s-1") is not None
        assert persister.saved_count == 1

    @pytest.mark.asyncio
    async def test_failures_are_kept_until_drained(self):
        """A failing store never raises into the caller."""
        store = AsyncMock()
        store.save_state.side_effect = ConnectionError("database unavailable")
        persister = BackgroundPersister(store)

        persister.submit("s-1", {})
        await persister.flush()

        assert persister.pending_failures() == [("s-1", 1)]
        assert persister.drain_failures("s-1") == ["Failed to persist workflow state: database unavailable"]
        assert persister.drain_failures("s-1") == []
        await persister.stop()

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self):
        async def slow_save(session_id, payload):
            await asyncio.sleep(1)

        store = AsyncMock()
        store.save_state.side_effect = slow_save
        persister = BackgroundPersister(store, save_timeout=0.05)

        persister.submit("s-1", {})
        await persister.flush()

        assert len(persister.drain_failures("s-1")) == 1
        await persister.stop()

    @pytest.mark.asyncio
    async def test_full_queue_records_failure(self, state_store):
        persister = BackgroundPersister(state_store, max_queue_size=1)

        # The worker does not run until the test yields, so the second put overflows
        assert persister.submit("s-1", {}) is True
        assert persister.submit("s-1", {}) is False
        assert persister.drain_failures("s-1") == ["Persistence queue is full, state not saved"]
        await persister.stop()

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_saves(self, state_store):
        persister = BackgroundPersister(state_store)
        for index in range(5):
            persister.submit(f"s-{index}", {})
        await persister.stop()

        assert persister.saved_count == 5
        assert persister.is_running is False
