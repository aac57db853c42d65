"""
In-memory collaborators used for local runs and tests.
"""

from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta
import uuid

import structlog

from meeting_agent.domain.collaborators.interfaces import (
    AgendaGenerator, AttendeeValidator, CalendarAccessVerifier, CalendarAvailability,
    DirectoryLookup, EventCreator, PostMeetingProcessor, WorkflowCollaborators
)
from meeting_agent.domain.models.agenda import ActionItem, AgendaContent, AgendaTopic
from meeting_agent.domain.models.calendar import (
    CalendarAccessStatus, CalendarEvent, ConflictCheckResult, CreatedEvent,
    EventData, PersonInfo, TimeSlot, TokenRefreshResult, User
)
from meeting_agent.domain.models.conversation import ConversationMessage
from meeting_agent.domain.models.workflow_state import MeetingData, MeetingType

logger = structlog.get_logger(__name__)


class MockCalendarAccessVerifier(CalendarAccessVerifier):
    """Grants access unless configured otherwise"""

    def __init__(self, has_access: bool = True, needs_refresh: bool = False, refresh_succeeds: bool = True):
        self.has_access = has_access
        self.needs_refresh = needs_refresh
        self.refresh_succeeds = refresh_succeeds
        self.refresh_calls = 0

    async def verify_access(self, user: User) -> CalendarAccessStatus:
        if self.needs_refresh:
            return CalendarAccessStatus(has_access=False, needs_refresh=True, token_valid=False)
        return CalendarAccessStatus(
            has_access=self.has_access,
            needs_refresh=False,
            token_valid=self.has_access,
            scopes=["https://www.googleapis.com/auth/calendar"] if self.has_access else []
        )

    async def refresh_access_token(self, user: User) -> TokenRefreshResult:
        self.refresh_calls += 1
        if not self.refresh_succeeds:
            return TokenRefreshResult(success=False)
        self.needs_refresh = False
        self.has_access = True
        return TokenRefreshResult(success=True, new_token=f"mock_token_{uuid.uuid4().hex[:8]}")


class MockCalendarAvailability(CalendarAvailability):
    """Conflict detection against an in-memory event list"""

    def __init__(self, events: Optional[List[CalendarEvent]] = None):
        self.events: List[CalendarEvent] = list(events or [])

    def add_event(self, title: str, start_time: datetime, end_time: datetime) -> CalendarEvent:
        event = CalendarEvent(
            id=f"mock_{uuid.uuid4().hex[:10]}",
            title=title,
            start_time=start_time,
            end_time=end_time
        )
        self.events.append(event)
        return event

    def _overlapping(self, start_time: datetime, end_time: datetime) -> List[CalendarEvent]:
        return [
            event for event in self.events
            if event.start_time < end_time and event.end_time > start_time
        ]

    async def check_conflicts(self, user: User, start_time: datetime, end_time: datetime) -> ConflictCheckResult:
        conflicts = self._overlapping(start_time, end_time)
        return ConflictCheckResult(
            has_conflicts=bool(conflicts),
            conflicting_events=conflicts,
            total_conflicts=len(conflicts)
        )

    async def suggest_alternatives(
        self,
        user: User,
        preferred_start: datetime,
        duration_minutes: int,
        max_suggestions: int = 3
    ) -> List[TimeSlot]:
        suggestions: List[TimeSlot] = []
        candidate = preferred_start
        duration = timedelta(minutes=duration_minutes)

        # Walk forward in 30 minute steps for up to a week
        for _ in range(7 * 48):
            candidate = candidate + timedelta(minutes=30)
            if not 8 <= candidate.hour < 18 or candidate.weekday() >= 5:
                continue
            if not self._overlapping(candidate, candidate + duration):
                suggestions.append(TimeSlot(start_time=candidate, end_time=candidate + duration))
                if len(suggestions) >= max_suggestions:
                    break

        return suggestions


class MockDirectory(DirectoryLookup):
    """Directory backed by a dict; unknown addresses can be accepted as external users"""

    def __init__(self, people: Optional[Dict[str, PersonInfo]] = None, accept_unknown: bool = True):
        self.people = {email.lower(): person for email, person in (people or {}).items()}
        self.accept_unknown = accept_unknown
        self.lookups = 0

    def add_person(self, email: str, first_name: Optional[str] = None, last_name: Optional[str] = None):
        self.people[email.lower()] = PersonInfo(
            email=email,
            first_name=first_name,
            last_name=last_name,
            is_google_user=True
        )

    async def lookup_person(self, email: str, user: User) -> Optional[PersonInfo]:
        self.lookups += 1
        person = self.people.get(email.lower())
        if person is not None:
            return person
        if not self.accept_unknown:
            return None
        local_part = email.split("@", 1)[0]
        return PersonInfo(
            email=email,
            first_name=local_part.split(".")[0].capitalize(),
            is_google_user=False
        )


class TemplateAgendaGenerator(AgendaGenerator):
    """Agenda sized to the meeting duration, no model calls"""

    async def generate_agenda(
        self,
        meeting_data: MeetingData,
        context_messages: List[ConversationMessage]
    ) -> AgendaContent:
        duration = meeting_data.duration_minutes or 60
        main_block = max(5, duration - 20)
        title = meeting_data.title or "Team Meeting"

        action_items = []
        if meeting_data.attendees:
            action_items.append(ActionItem(
                task="Share meeting notes with attendees",
                assignee=meeting_data.attendees[0].email
            ))

        return AgendaContent(
            title=title,
            duration=duration,
            topics=[
                AgendaTopic(title="Welcome and Introductions", duration=5),
                AgendaTopic(title=title, duration=main_block, description=meeting_data.description),
                AgendaTopic(title="Action Items and Next Steps", duration=10),
                AgendaTopic(title="Wrap-up", duration=5),
            ],
            action_items=action_items
        )


class MockEventCreator(EventCreator):
    """Records created events in memory"""

    def __init__(self):
        self.created: List[Dict[str, Any]] = []

    async def create(self, user: User, event_data: EventData, meeting_type: MeetingType) -> CreatedEvent:
        event_id = f"mock_{uuid.uuid4().hex[:10]}"
        logger.info("Mock event created", event_id=event_id, title=event_data.title)
        self.created.append({"id": event_id, "event": event_data, "type": meeting_type})
        return CreatedEvent(
            id=event_id,
            html_link=f"mock://{event_id}",
            status="confirmed",
            meeting_link=f"https://meet.mock/{event_id}" if meeting_type == MeetingType.ONLINE else None
        )


class MockPostMeetingProcessor(PostMeetingProcessor):
    """Produces placeholder transcript, summary and tasks"""

    def __init__(self):
        self.processed: List[str] = []

    async def process(self, meeting_id: str, meeting_data: MeetingData, user: User) -> Dict[str, Any]:
        self.processed.append(meeting_id)
        topics = meeting_data.agenda.topics if meeting_data.agenda else []
        return {
            "meeting_id": meeting_id,
            "transcript": f"Transcript for {meeting_data.title or 'meeting'}",
            "summary": f"Covered {len(topics)} agenda topics",
            "tasks": [
                {"title": item.task, "assignee": item.assignee}
                for item in (meeting_data.agenda.action_items if meeting_data.agenda else [])
            ]
        }


def build_mock_collaborators(attendee_validator: AttendeeValidator) -> WorkflowCollaborators:
    """Fresh in-memory collaborators around a shared attendee validator"""

    return WorkflowCollaborators(
        calendar_access=MockCalendarAccessVerifier(),
        availability=MockCalendarAvailability(),
        attendee_validator=attendee_validator,
        agenda_generator=TemplateAgendaGenerator(),
        event_creator=MockEventCreator(),
        post_meeting_processor=MockPostMeetingProcessor()
    )
