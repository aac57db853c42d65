"""
Tests for the workflow session registry.
"""
import asyncio

import pytest

from meeting_agent.application.session_manager import SessionNotFoundError, WorkflowSessionManager
from meeting_agent.config import Settings
from meeting_agent.domain.collaborators.mock import build_mock_collaborators
from meeting_agent.domain.models.calendar import User
from meeting_agent.domain.models.workflow_state import WorkflowStep


@pytest.fixture
async def manager(test_settings, state_store, directory):
    """Started session manager over the shared in-memory store."""
    manager = WorkflowSessionManager(test_settings, store=state_store, directory=directory)
    await manager.start()
    yield manager
    await manager.shutdown()


class TestSessionLifecycle:
    """Tests for creating, loading and deleting sessions."""

    @pytest.mark.asyncio
    async def test_create_session(self, manager, user):
        orchestrator = await manager.create_session(user, session_id="s-1")

        assert orchestrator.session_id == "s-1"
        assert await manager.get_session("s-1") is orchestrator
        assert manager.get_stats()["active_sessions"] == 1

    @pytest.mark.asyncio
    async def test_generated_session_id(self, manager, user):
        orchestrator = await manager.create_session(user)

        assert orchestrator.session_id in manager.sessions

    @pytest.mark.asyncio
    async def test_duplicate_session_id(self, manager, user):
        await manager.create_session(user, session_id="s-1")

        with pytest.raises(ValueError):
            await manager.create_session(user, session_id="s-1")

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            await manager.get_session("missing")
        with pytest.raises(SessionNotFoundError):
            manager.lock("missing")

    @pytest.mark.asyncio
    async def test_session_restored_from_store(self, manager, user, test_settings, state_store, directory):
        """A fresh manager rebuilds a session from its last saved snapshot."""
        orchestrator = await manager.create_session(user, session_id="s-1")
        await orchestrator.process_message("Let's schedule a zoom meeting with alice@example.com")
        await manager.persister.flush()

        other = WorkflowSessionManager(test_settings, store=state_store, directory=directory)
        await other.start()
        try:
            restored = await other.get_session("s-1")

            assert restored.state.current_step == WorkflowStep.TIME_DATE_COLLECTION
            assert restored.user.email == "organizer@example.com"
            assert restored.state.meeting_data.attendee_emails() == ["alice@example.com"]
        finally:
            await other.shutdown()

    @pytest.mark.asyncio
    async def test_delete_session(self, manager, user, state_store):
        orchestrator = await manager.create_session(user, session_id="s-1")
        await orchestrator.process_message("Hello")

        assert await manager.delete_session("s-1") is True
        assert await state_store.load_state("s-1") is None
        with pytest.raises(SessionNotFoundError):
            await manager.get_session("s-1")
        assert await manager.delete_session("s-1") is False

    @pytest.mark.asyncio
    async def test_lock_is_per_session(self, manager, user):
        await manager.create_session(user, session_id="s-1")
        await manager.create_session(user, session_id="s-2")

        assert manager.lock("s-1") is manager.lock("s-1")
        assert manager.lock("s-1") is not manager.lock("s-2")
        assert isinstance(manager.lock("s-1"), asyncio.Lock)


class TestSharedResources:
    """Tests for resources shared across sessions."""

    @pytest.mark.asyncio
    async def test_validation_cache_is_shared(self, manager, user, directory, meeting_start):
        for session_id in ("s-1", "s-2"):
            orchestrator = await manager.create_session(user, session_id=session_id)
            await orchestrator.process_message("Let's schedule a zoom meeting with alice@example.com")
            await orchestrator.set_meeting_time(meeting_start)
            assert orchestrator.state.attendee_collection_complete is True

        assert directory.lookups == 1
        stats = manager.get_cache_stats()
        assert stats["cache"]["size"] == 1
        assert "recent_validation_times" in stats["performance"]

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, manager, user):
        first = await manager.create_session(user, session_id="s-1")
        second = await manager.create_session(User(id="user-2", email="other@example.com"), session_id="s-2")

        await first.process_message("Let's schedule a zoom meeting")

        assert first.state.current_step == WorkflowStep.TIME_DATE_COLLECTION
        assert second.state.current_step == WorkflowStep.INTENT_DETECTION

    def test_real_collaborators_require_factory(self):
        with pytest.raises(ValueError):
            WorkflowSessionManager(Settings(MOCK_COLLABORATORS=False))

    @pytest.mark.asyncio
    async def test_custom_collaborator_factory(self, test_settings, user):
        built = []

        def factory(attendee_validator):
            collaborators = build_mock_collaborators(attendee_validator)
            built.append(collaborators)
            return collaborators

        manager = WorkflowSessionManager(
            Settings(MOCK_COLLABORATORS=False, LOG_FORMAT="console"),
            collaborator_factory=factory
        )
        orchestrator = await manager.create_session(user, session_id="s-1")

        assert orchestrator.collaborators is built[0]
        assert orchestrator.collaborators.attendee_validator is manager.attendee_validator
        await manager.shutdown()
