"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta

import pytest

from meeting_agent.config import Settings
from meeting_agent.domain.cache.attendee_validator import CachedAttendeeValidator
from meeting_agent.domain.cache.validation_cache import ValidationCache
from meeting_agent.domain.collaborators.mock import MockDirectory, build_mock_collaborators
from meeting_agent.domain.models.calendar import User
from meeting_agent.domain.orchestration.orchestrator import MeetingWorkflowOrchestrator
from meeting_agent.infrastructure.persistence.background_persister import BackgroundPersister
from meeting_agent.infrastructure.persistence.state_store import InMemoryStateStore


def next_weekday_at(hour: int = 10, days_ahead: int = 2) -> datetime:
    """Naive UTC datetime on a weekday at least `days_ahead` days from now"""
    day = datetime.utcnow() + timedelta(days=days_ahead)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day.replace(hour=hour, minute=0, second=0, microsecond=0)


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with short collaborator timeouts."""
    return Settings(
        LOG_FORMAT="console",
        CALENDAR_TIMEOUT=0.5,
        DIRECTORY_TIMEOUT=0.5,
        AGENDA_TIMEOUT=0.5,
        EVENT_CREATION_TIMEOUT=0.5,
        POST_MEETING_TIMEOUT=1.0,
        PERSISTENCE_TIMEOUT=0.5,
    )


@pytest.fixture
def user() -> User:
    return User(id="user-1", email="organizer@example.com", name="Olivia Organizer")


@pytest.fixture
def meeting_start() -> datetime:
    """Start of a bookable slot: a weekday, business hours, comfortably in the future."""
    return next_weekday_at(hour=10)


@pytest.fixture
def directory() -> MockDirectory:
    return MockDirectory()


@pytest.fixture
def attendee_validator(directory, test_settings) -> CachedAttendeeValidator:
    return CachedAttendeeValidator(
        directory,
        cache=ValidationCache(ttl=test_settings.CACHE_TTL_SECONDS, max_size=test_settings.CACHE_MAX_SIZE),
        lookup_timeout=test_settings.DIRECTORY_TIMEOUT
    )


@pytest.fixture
def collaborators(attendee_validator):
    return build_mock_collaborators(attendee_validator)


@pytest.fixture
def orchestrator(user, collaborators, test_settings) -> MeetingWorkflowOrchestrator:
    """Orchestrator wired to in-memory collaborators and no persistence."""
    return MeetingWorkflowOrchestrator(
        session_id="session-1",
        user=user,
        collaborators=collaborators,
        settings=test_settings
    )


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
async def persister(state_store, test_settings):
    """Background persister that is stopped after the test."""
    persister = BackgroundPersister(state_store, save_timeout=test_settings.PERSISTENCE_TIMEOUT)
    yield persister
    await persister.stop()
