from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional
from datetime import datetime

from meeting_agent.domain.models.agenda import AgendaContent, format_agenda
from meeting_agent.domain.models.calendar import (
    CalendarAccessStatus, ConflictCheckResult, CreatedEvent, EmailValidationResult,
    EventData, PersonInfo, TimeSlot, TokenRefreshResult, User
)
from meeting_agent.domain.models.conversation import ConversationMessage
from meeting_agent.domain.models.workflow_state import MeetingData, MeetingType


class CalendarAccessVerifier(ABC):
    """Checks the user's calendar authorisation"""

    @abstractmethod
    async def verify_access(self, user: User) -> CalendarAccessStatus:
        pass

    @abstractmethod
    async def refresh_access_token(self, user: User) -> TokenRefreshResult:
        pass


class CalendarAvailability(ABC):
    """Conflict lookup and alternative slot suggestions"""

    @abstractmethod
    async def check_conflicts(self, user: User, start_time: datetime, end_time: datetime) -> ConflictCheckResult:
        pass

    @abstractmethod
    async def suggest_alternatives(
        self,
        user: User,
        preferred_start: datetime,
        duration_minutes: int,
        max_suggestions: int = 3
    ) -> List[TimeSlot]:
        pass


class AttendeeValidator(ABC):
    """Format and existence checks for attendee emails"""

    @abstractmethod
    async def validate_email(self, email: str, user: User) -> EmailValidationResult:
        pass

    @abstractmethod
    async def validate_batch(self, emails: List[str], user: User) -> List[EmailValidationResult]:
        """Deduplicated, input-ordered results"""
        pass


class DirectoryLookup(ABC):
    """Contact or directory search by email"""

    @abstractmethod
    async def lookup_person(self, email: str, user: User) -> Optional[PersonInfo]:
        """Return the person, None when unknown; raise when the lookup itself fails"""
        pass


class AgendaGenerator(ABC):
    """Builds a structured agenda for a meeting"""

    @abstractmethod
    async def generate_agenda(
        self,
        meeting_data: MeetingData,
        context_messages: List[ConversationMessage]
    ) -> AgendaContent:
        pass

    def format_agenda(self, content: AgendaContent) -> str:
        return format_agenda(content)


class EventCreator(ABC):
    """Creates the calendar event"""

    @abstractmethod
    async def create(self, user: User, event_data: EventData, meeting_type: MeetingType) -> CreatedEvent:
        pass


class PostMeetingProcessor(ABC):
    """Transcript, summary and task generation after the meeting is created"""

    @abstractmethod
    async def process(self, meeting_id: str, meeting_data: MeetingData, user: User) -> Dict[str, Any]:
        pass


@dataclass
class WorkflowCollaborators:
    """External services a workflow session depends on"""
    calendar_access: CalendarAccessVerifier
    availability: CalendarAvailability
    attendee_validator: AttendeeValidator
    agenda_generator: AgendaGenerator
    event_creator: EventCreator
    post_meeting_processor: Optional[PostMeetingProcessor] = None


class StateStore(ABC):
    """Persistence of workflow snapshots"""

    @abstractmethod
    async def save_state(self, session_id: str, payload: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def load_state(self, session_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete_state(self, session_id: str) -> bool:
        pass
