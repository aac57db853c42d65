from typing import Callable, Dict, Any, Optional
import asyncio
import uuid

import structlog

from meeting_agent.config import Settings
from meeting_agent.domain.cache.attendee_validator import CachedAttendeeValidator
from meeting_agent.domain.cache.validation_cache import ValidationCache
from meeting_agent.domain.collaborators.interfaces import (
    AttendeeValidator, DirectoryLookup, StateStore, WorkflowCollaborators
)
from meeting_agent.domain.collaborators.mock import MockDirectory, build_mock_collaborators
from meeting_agent.domain.models.calendar import User
from meeting_agent.domain.orchestration.orchestrator import MeetingWorkflowOrchestrator
from meeting_agent.infrastructure.observability.logging import MetricsCollector
from meeting_agent.infrastructure.persistence.background_persister import BackgroundPersister
from meeting_agent.infrastructure.persistence.state_store import InMemoryStateStore

logger = structlog.get_logger(__name__)

CollaboratorFactory = Callable[[AttendeeValidator], WorkflowCollaborators]


class SessionNotFoundError(KeyError):
    """No live or persisted workflow exists for the session id"""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id


class WorkflowSessionManager:
    """Registry of workflow sessions.

    Each session gets its own orchestrator and an asyncio.Lock that callers
    hold while driving it. The attendee validation cache, the persister and
    the metrics collector are shared across sessions.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[StateStore] = None,
        directory: Optional[DirectoryLookup] = None,
        collaborator_factory: Optional[CollaboratorFactory] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.settings = settings or Settings()
        self.store = store or InMemoryStateStore()
        self.metrics = metrics or MetricsCollector()

        if collaborator_factory is None:
            if not self.settings.MOCK_COLLABORATORS:
                raise ValueError("A collaborator factory is required when mock collaborators are disabled")
            collaborator_factory = build_mock_collaborators
        self.collaborator_factory = collaborator_factory

        self.cache = ValidationCache(ttl=self.settings.CACHE_TTL_SECONDS, max_size=self.settings.CACHE_MAX_SIZE)
        self.attendee_validator = CachedAttendeeValidator(
            directory or MockDirectory(),
            cache=self.cache,
            lookup_timeout=self.settings.DIRECTORY_TIMEOUT,
            batch_size=self.settings.VALIDATION_BATCH_SIZE
        )
        self.persister = BackgroundPersister(
            self.store,
            max_queue_size=self.settings.PERSISTENCE_QUEUE_SIZE,
            save_timeout=self.settings.PERSISTENCE_TIMEOUT
        )

        self.sessions: Dict[str, MeetingWorkflowOrchestrator] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    def _build_orchestrator(self, session_id: str, user: User) -> MeetingWorkflowOrchestrator:
        return MeetingWorkflowOrchestrator(
            session_id=session_id,
            user=user,
            collaborators=self.collaborator_factory(self.attendee_validator),
            persister=self.persister,
            settings=self.settings,
            metrics=self.metrics
        )

    async def start(self):
        self.persister.start()
        logger.info("Session manager started")

    async def shutdown(self):
        """Stop background work for every session and flush pending saves"""

        for orchestrator in list(self.sessions.values()):
            await orchestrator.shutdown()
        await self.persister.stop()
        logger.info("Session manager stopped", sessions=len(self.sessions))

    async def create_session(self, user: User, session_id: Optional[str] = None) -> MeetingWorkflowOrchestrator:
        session_id = session_id or str(uuid.uuid4())

        async with self._registry_lock:
            if session_id in self.sessions:
                raise ValueError(f"Session {session_id} already exists")
            orchestrator = self._build_orchestrator(session_id, user)
            self.sessions[session_id] = orchestrator
            self._locks[session_id] = asyncio.Lock()

        self.metrics.increment_counter("sessions.created")
        self.metrics.set_gauge("sessions.active", len(self.sessions))
        logger.info("Workflow session created", session_id=session_id, user_id=user.id)
        return orchestrator

    async def get_session(self, session_id: str) -> MeetingWorkflowOrchestrator:
        """Live session, or one rebuilt from its persisted snapshot"""

        async with self._registry_lock:
            orchestrator = self.sessions.get(session_id)
            if orchestrator is not None:
                return orchestrator

            payload = await self.store.load_state(session_id)
            if payload is None:
                raise SessionNotFoundError(session_id)

            user = User.model_validate(payload.get("user") or {"id": payload["user_id"], "email": ""})
            orchestrator = self._build_orchestrator(session_id, user)
            orchestrator.restore(payload)
            self.sessions[session_id] = orchestrator
            self._locks[session_id] = asyncio.Lock()

        logger.info("Workflow session loaded from store", session_id=session_id)
        return orchestrator

    def lock(self, session_id: str) -> asyncio.Lock:
        """Per-session lock serialising inbound requests"""

        if session_id not in self._locks:
            raise SessionNotFoundError(session_id)
        return self._locks[session_id]

    async def delete_session(self, session_id: str) -> bool:
        async with self._registry_lock:
            orchestrator = self.sessions.pop(session_id, None)
            self._locks.pop(session_id, None)

        if orchestrator is not None:
            await orchestrator.shutdown()
        await self.persister.flush()
        deleted = await self.store.delete_state(session_id)

        self.metrics.set_gauge("sessions.active", len(self.sessions))
        logger.info("Workflow session deleted", session_id=session_id)
        return deleted or orchestrator is not None

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "cache": self.attendee_validator.get_cache_stats(),
            "performance": self.attendee_validator.get_performance_metrics()
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self.sessions),
            "persistence_saved": self.persister.saved_count,
            "persistence_failures": dict(self.persister.pending_failures()),
            "metrics": self.metrics.get_metrics_summary()
        }
