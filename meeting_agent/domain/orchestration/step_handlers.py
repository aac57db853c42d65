from typing import Dict, Any, Awaitable, Callable, List, Optional
import asyncio
import re
import time

import structlog

from meeting_agent.config import Settings
from meeting_agent.domain.collaborators.interfaces import WorkflowCollaborators
from meeting_agent.domain.context.classifier import KeywordMeetingTypeClassifier, MeetingTypeClassifier
from meeting_agent.domain.context.context_engine import EMAIL_PATTERN, ConversationContextEngine
from meeting_agent.domain.models.agenda import build_fallback_agenda, format_agenda
from meeting_agent.domain.models.calendar import AvailabilityResult, CalendarAccessStatus, EventData, User
from meeting_agent.domain.models.conversation import ConversationMessage, ConversationMode, MessageRole
from meeting_agent.domain.models.errors import ErrorKind, WorkflowError, classify_error
from meeting_agent.domain.models.workflow_state import (
    Attendee, MeetingData, MeetingStatus, MeetingType, UIBlock, UIBlockType,
    WorkflowResponse, WorkflowState, WorkflowStep
)
from meeting_agent.domain.rules.transition_validator import TransitionValidator
from meeting_agent.infrastructure.observability.logging import MetricsCollector, WorkflowLogger

logger = structlog.get_logger(__name__)


TITLE_PATTERN = re.compile(
    r"\b(?:title|subject)\s*(?:is|:)\s*[\"']?(?P<value>[^\"'\n]+?)[\"']?\s*$",
    re.IGNORECASE | re.MULTILINE
)
NAMED_PATTERN = re.compile(r"\b(?:called|named)\s+[\"'](?P<value>[^\"']+)[\"']", re.IGNORECASE)
LOCATION_PATTERN = re.compile(
    r"\b(?:location|venue|place)\s*(?:is|:)\s*(?P<value>[^\n]+?)\s*\.?\s*$",
    re.IGNORECASE | re.MULTILINE
)
KEEP_TIME_PATTERN = re.compile(r"\b(keep|anyway|ignore the conflicts?)\b", re.IGNORECASE)

ATTENDEE_LOOKUP_FAILED = "Email validation failed - please verify the address"
ATTENDEE_INVALID = "Invalid or non-existent email address"

TYPE_LABELS = {MeetingType.ONLINE: "online", MeetingType.PHYSICAL: "in-person"}


def extract_meeting_details(text: str) -> Dict[str, str]:
    """Pull an explicit title or location out of a user message"""

    details: Dict[str, str] = {}
    title = TITLE_PATTERN.search(text) or NAMED_PATTERN.search(text)
    if title:
        details["title"] = title.group("value").strip()
    location = LOCATION_PATTERN.search(text)
    if location:
        details["location"] = location.group("value").strip()
    return details


def build_meeting_summary(meeting: MeetingData) -> Dict[str, Any]:
    return {
        "title": meeting.title,
        "type": meeting.type.value if meeting.type else None,
        "start_time": meeting.start_time.isoformat() if meeting.start_time else None,
        "end_time": meeting.end_time.isoformat() if meeting.end_time else None,
        "duration_minutes": meeting.duration_minutes,
        "location": meeting.location,
        "attendees": [attendee.model_dump() for attendee in meeting.attendees],
        "agenda": meeting.agenda.model_dump() if meeting.agenda else None,
        "status": meeting.status.value,
    }


class CollaboratorCaller:
    """Runs collaborator awaitables under a timeout with logging and latency metrics"""

    def __init__(self, session_id: str, workflow_logger: WorkflowLogger, metrics: MetricsCollector):
        self.session_id = session_id
        self.workflow_logger = workflow_logger
        self.metrics = metrics

    async def __call__(self, collaborator: str, operation: str, awaitable: Awaitable, timeout: float) -> Any:
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            self._record(collaborator, operation, started, error="timeout", error_kind=ErrorKind.NETWORK_TIMEOUT.value)
            raise WorkflowError(
                f"{collaborator}.{operation} timed out after {timeout}s",
                kind=ErrorKind.NETWORK_TIMEOUT,
                details={"collaborator": collaborator, "operation": operation, "timeout": timeout}
            ) from e
        except Exception as e:
            self._record(
                collaborator,
                operation,
                started,
                error=str(e) or type(e).__name__,
                error_kind=classify_error(e).value
            )
            raise

        self._record(collaborator, operation, started)
        return result

    def _record(
        self,
        collaborator: str,
        operation: str,
        started: float,
        error: Optional[str] = None,
        error_kind: Optional[str] = None
    ):
        duration_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_latency(
            f"collaborator.{collaborator}.{operation}",
            duration_ms,
            tags={"success": str(error is None).lower()}
        )
        self.workflow_logger.log_collaborator_call(
            self.session_id,
            collaborator,
            operation,
            duration_ms=duration_ms,
            success=error is None,
            error=error,
            error_kind=error_kind
        )


class WorkflowStepHandlers:
    """One handler per workflow step.

    A handler may update meeting data and completion flags on the state it is
    given, but never moves current_step: it returns a next_step hint that the
    orchestrator validates before applying. `message` is only passed to the
    first handler of a request so chained steps never act on a reply meant
    for an earlier step.
    """

    def __init__(
        self,
        user: User,
        context_engine: ConversationContextEngine,
        transition_validator: TransitionValidator,
        collaborators: WorkflowCollaborators,
        call: CollaboratorCaller,
        settings: Settings,
        type_classifier: Optional[MeetingTypeClassifier] = None,
        on_meeting_created: Optional[Callable[[str, MeetingData], None]] = None
    ):
        self.user = user
        self.context = context_engine
        self.validator = transition_validator
        self.rules = transition_validator.rules
        self.collaborators = collaborators
        self.call = call
        self.settings = settings
        self.type_classifier = type_classifier or KeywordMeetingTypeClassifier()
        self.on_meeting_created = on_meeting_created

        self._handlers: Dict[WorkflowStep, Callable[..., Awaitable[WorkflowResponse]]] = {
            WorkflowStep.INTENT_DETECTION: self.handle_intent_detection,
            WorkflowStep.CALENDAR_ACCESS_VERIFICATION: self.handle_calendar_access_verification,
            WorkflowStep.MEETING_TYPE_SELECTION: self.handle_meeting_type_selection,
            WorkflowStep.TIME_DATE_COLLECTION: self.handle_time_date_collection,
            WorkflowStep.AVAILABILITY_CHECK: self.handle_availability_check,
            WorkflowStep.CONFLICT_RESOLUTION: self.handle_conflict_resolution,
            WorkflowStep.ATTENDEE_COLLECTION: self.handle_attendee_collection,
            WorkflowStep.MEETING_DETAILS_COLLECTION: self.handle_meeting_details_collection,
            WorkflowStep.VALIDATION: self.handle_validation,
            WorkflowStep.AGENDA_GENERATION: self.handle_agenda_generation,
            WorkflowStep.AGENDA_APPROVAL: self.handle_agenda_approval,
            WorkflowStep.APPROVAL: self.handle_approval,
            WorkflowStep.CREATION: self.handle_creation,
            WorkflowStep.COMPLETED: self.handle_completed,
        }

    async def execute(
        self,
        step: WorkflowStep,
        state: WorkflowState,
        message: Optional[ConversationMessage] = None
    ) -> WorkflowResponse:
        return await self._handlers[step](state, message)

    def detect_meeting_type(self) -> Optional[MeetingType]:
        """Classify the user's side of the compressed conversation context"""

        compressed = self.context.get_compressed_context().compressed_context
        user_lines = [
            line[3:] for line in compressed.splitlines()
            if line.startswith("U: ")
        ]
        if not user_lines:
            return None
        return self.type_classifier.classify("\n".join(user_lines))

    def _latest_user_message(self) -> Optional[ConversationMessage]:
        for message in reversed(self.context.messages):
            if message.role == MessageRole.USER:
                return message
        return None

    def collect_attendees(self, state: WorkflowState, message: ConversationMessage) -> List[str]:
        """Add attendee emails mentioned in a user message, skipping the organizer"""

        if message.role != MessageRole.USER:
            return []

        meeting = state.meeting_data
        added: List[str] = []
        for email in EMAIL_PATTERN.findall(message.content):
            if email.lower() == self.user.email.lower() or meeting.has_attendee(email):
                continue
            meeting.attendees.append(Attendee(email=email))
            added.append(email)

        if added:
            state.attendee_collection_complete = False
        return added

    def _is_confirmation(self, message: Optional[ConversationMessage]) -> bool:
        return message is not None and self.context.current_mode == ConversationMode.APPROVAL

    async def handle_intent_detection(self, state: WorkflowState, message: Optional[ConversationMessage]):
        if self.context.current_mode in (ConversationMode.SCHEDULING, ConversationMode.APPROVAL):
            return WorkflowResponse(
                message="Let me check your calendar access before we set up the meeting.",
                next_step=WorkflowStep.CALENDAR_ACCESS_VERIFICATION,
                requires_user_input=False
            )

        return WorkflowResponse(
            message="Hi! I can help you schedule a meeting. Tell me what you'd like to set up.",
            next_step=WorkflowStep.INTENT_DETECTION
        )

    async def handle_calendar_access_verification(
        self,
        state: WorkflowState,
        message: Optional[ConversationMessage]
    ):
        timeout = self.settings.CALENDAR_TIMEOUT
        verifier = self.collaborators.calendar_access

        try:
            status = await self.call("calendar_access", "verify_access", verifier.verify_access(self.user), timeout)
            if status.needs_refresh:
                refresh = await self.call(
                    "calendar_access",
                    "refresh_access_token",
                    verifier.refresh_access_token(self.user),
                    timeout
                )
                if refresh.success:
                    status = await self.call(
                        "calendar_access", "verify_access", verifier.verify_access(self.user), timeout
                    )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.calendar_access_status = CalendarAccessStatus(has_access=False, error=str(e) or type(e).__name__)
            logger.warning(
                "Calendar access verification failed",
                session_id=state.session_id,
                error=str(e),
                error_kind=classify_error(e).value
            )
            return WorkflowResponse(
                message="I couldn't reach your calendar right now. We can keep going and check availability later.",
                next_step=WorkflowStep.MEETING_TYPE_SELECTION,
                requires_user_input=False,
                warnings=["Calendar access verification failed"]
            )

        state.calendar_access_status = status
        if status.has_access:
            return WorkflowResponse(
                message="Calendar access verified.",
                next_step=WorkflowStep.MEETING_TYPE_SELECTION,
                requires_user_input=False
            )

        return WorkflowResponse(
            message="I couldn't verify access to your calendar, so availability checks will be skipped for now.",
            next_step=WorkflowStep.MEETING_TYPE_SELECTION,
            requires_user_input=False,
            ui_block=UIBlock(type=UIBlockType.CALENDAR_ACCESS, data={"needs_refresh": status.needs_refresh}),
            warnings=["Calendar access not verified - some features may be limited"]
        )

    async def handle_meeting_type_selection(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data

        if meeting.type is None:
            detected = self.detect_meeting_type()
            if detected is None:
                return WorkflowResponse(
                    message="Will this be an online meeting or an in-person meeting?",
                    next_step=WorkflowStep.MEETING_TYPE_SELECTION,
                    ui_block=UIBlock(
                        type=UIBlockType.MEETING_TYPE_SELECTION,
                        data={"options": [
                            {"value": MeetingType.ONLINE.value, "label": "Online meeting"},
                            {"value": MeetingType.PHYSICAL.value, "label": "In-person meeting"},
                        ]}
                    )
                )
            meeting.type = detected
            reply = f"It sounds like this will be an {TYPE_LABELS[detected]} meeting."
        elif state.type_locked:
            reply = f"Continuing with your {TYPE_LABELS[meeting.type]} meeting."
        else:
            reply = f"Got it, an {TYPE_LABELS[meeting.type]} meeting."

        state.type_locked = True
        # Attendees and location are collected later, so these only warn here
        type_check = self.rules.validate_meeting_type(meeting.type, meeting)

        return WorkflowResponse(
            message=reply,
            next_step=WorkflowStep.TIME_DATE_COLLECTION,
            requires_user_input=False,
            warnings=type_check.errors + type_check.warnings
        )

    async def handle_time_date_collection(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data

        if not meeting.has_time:
            state.time_collection_complete = False
            return WorkflowResponse(
                message="When should the meeting take place? Please share a start and end time.",
                next_step=WorkflowStep.TIME_DATE_COLLECTION,
                ui_block=UIBlock(type=UIBlockType.TIME_SELECTION, data={"duration_minutes": 60})
            )

        result = self.rules.validate_time_constraints(meeting.start_time, meeting.end_time)
        if not result.is_valid:
            state.time_collection_complete = False
            return WorkflowResponse(
                message=f"That time doesn't work: {'; '.join(result.errors)}",
                next_step=WorkflowStep.TIME_DATE_COLLECTION,
                ui_block=UIBlock(
                    type=UIBlockType.TIME_SELECTION,
                    data={
                        "start_time": meeting.start_time.isoformat(),
                        "end_time": meeting.end_time.isoformat()
                    }
                ),
                validation_errors=result.errors,
                warnings=result.warnings
            )

        state.time_collection_complete = True
        if state.has_calendar_access:
            next_step = WorkflowStep.AVAILABILITY_CHECK
        elif meeting.type == MeetingType.PHYSICAL:
            next_step = WorkflowStep.MEETING_DETAILS_COLLECTION
        else:
            next_step = WorkflowStep.ATTENDEE_COLLECTION

        return WorkflowResponse(
            message=f"Meeting time set for {meeting.start_time.strftime('%A %d %B at %H:%M')}.",
            next_step=next_step,
            requires_user_input=False,
            warnings=result.warnings
        )

    async def handle_availability_check(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data
        if not meeting.has_time:
            return WorkflowResponse(
                message="I need a meeting time before I can check your calendar.",
                next_step=WorkflowStep.TIME_DATE_COLLECTION,
                validation_errors=["Meeting time must be set before availability check"]
            )

        try:
            conflicts = await self.call(
                "availability",
                "check_conflicts",
                self.collaborators.availability.check_conflicts(self.user, meeting.start_time, meeting.end_time),
                self.settings.CALENDAR_TIMEOUT
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Availability check failed",
                session_id=state.session_id,
                error=str(e),
                error_kind=classify_error(e).value
            )
            return WorkflowResponse(
                message="I couldn't check your calendar right now, so let's continue.",
                next_step=WorkflowStep.ATTENDEE_COLLECTION,
                requires_user_input=False,
                warnings=["Availability check failed"]
            )

        if not conflicts.has_conflicts:
            state.availability_result = AvailabilityResult(is_available=True)
            return WorkflowResponse(
                message="You're free at that time.",
                next_step=WorkflowStep.ATTENDEE_COLLECTION,
                requires_user_input=False
            )

        state.availability_result = AvailabilityResult(
            is_available=False,
            conflicts=conflicts.conflicting_events
        )
        return WorkflowResponse(
            message=f"That time conflicts with {conflicts.total_conflicts or len(conflicts.conflicting_events)} "
                    f"event(s) in your calendar.",
            next_step=WorkflowStep.CONFLICT_RESOLUTION,
            requires_user_input=False
        )

    async def handle_conflict_resolution(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data
        availability = state.availability_result

        if availability is None or availability.is_available:
            return WorkflowResponse(
                message="No conflicts left to resolve.",
                next_step=WorkflowStep.ATTENDEE_COLLECTION,
                requires_user_input=False
            )

        if message is not None and KEEP_TIME_PATTERN.search(message.content):
            return WorkflowResponse(
                message="Keeping the original time.",
                next_step=WorkflowStep.ATTENDEE_COLLECTION,
                requires_user_input=False,
                warnings=["Meeting time has calendar conflicts - ensure this is intentional"]
            )

        warnings: List[str] = []
        if availability.suggested_alternatives is None:
            try:
                availability.suggested_alternatives = await self.call(
                    "availability",
                    "suggest_alternatives",
                    self.collaborators.availability.suggest_alternatives(
                        self.user, meeting.start_time, meeting.duration_minutes or 60, 3
                    ),
                    self.settings.CALENDAR_TIMEOUT
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Alternative slot lookup failed", session_id=state.session_id, error=str(e))
                warnings.append("Could not load alternative times")

        alternatives = availability.suggested_alternatives or []
        return WorkflowResponse(
            message="That time overlaps with existing events. Pick one of the alternatives or keep the original time.",
            next_step=WorkflowStep.CONFLICT_RESOLUTION,
            ui_block=UIBlock(
                type=UIBlockType.CONFLICT_RESOLUTION,
                data={
                    "conflicts": [event.model_dump(mode="json") for event in availability.conflicts],
                    "alternatives": [slot.model_dump(mode="json") for slot in alternatives],
                }
            ),
            warnings=warnings
        )

    async def handle_attendee_collection(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data

        if meeting.type is None:
            return WorkflowResponse(
                message="Let's pick a meeting type first.",
                next_step=WorkflowStep.MEETING_TYPE_SELECTION,
                validation_errors=["Meeting type must be selected before attendee collection"]
            )

        if not meeting.attendees:
            if meeting.type == MeetingType.PHYSICAL:
                state.attendee_collection_complete = True
                return WorkflowResponse(
                    message="Attendees are optional for in-person meetings. You can add them at any time.",
                    next_step=WorkflowStep.MEETING_DETAILS_COLLECTION,
                    requires_user_input=False
                )
            state.attendee_collection_complete = False
            return WorkflowResponse(
                message="Who should attend? Online meetings need at least one attendee email.",
                next_step=WorkflowStep.ATTENDEE_COLLECTION,
                ui_block=UIBlock(type=UIBlockType.ATTENDEE_MANAGEMENT, data={"attendees": []})
            )

        errors = await self._validate_attendees(meeting)
        rule_check = self.rules.validate_attendees(meeting.attendees)
        errors.extend(error for error in rule_check.errors if error not in errors)

        if errors:
            state.attendee_collection_complete = False
            return WorkflowResponse(
                message="Some attendee emails need attention.",
                next_step=WorkflowStep.ATTENDEE_COLLECTION,
                ui_block=UIBlock(
                    type=UIBlockType.ATTENDEE_MANAGEMENT,
                    data={"attendees": [attendee.model_dump() for attendee in meeting.attendees]}
                ),
                validation_errors=errors,
                warnings=rule_check.warnings
            )

        state.attendee_collection_complete = True
        return WorkflowResponse(
            message=f"All {len(meeting.attendees)} attendee(s) verified.",
            next_step=WorkflowStep.MEETING_DETAILS_COLLECTION,
            requires_user_input=False,
            warnings=rule_check.warnings
        )

    async def _validate_attendees(self, meeting: MeetingData) -> List[str]:
        """Validate every attendee in batches and record the outcome on each one"""

        emails = meeting.attendee_emails()
        batches = max(1, -(-len(emails) // max(1, self.settings.VALIDATION_BATCH_SIZE)))
        results = await self.call(
            "attendee_validator",
            "validate_batch",
            self.collaborators.attendee_validator.validate_batch(emails, self.user),
            self.settings.DIRECTORY_TIMEOUT * batches
        )
        by_email = {result.email.strip().lower(): result for result in results}

        errors: List[str] = []
        for attendee in meeting.attendees:
            result = by_email.get(attendee.email.strip().lower())
            if result is not None and result.error is None and result.is_valid and result.exists:
                attendee.is_validated = True
                attendee.first_name = attendee.first_name or result.first_name
                attendee.last_name = attendee.last_name or result.last_name
                continue

            attendee.is_validated = False
            reason = ATTENDEE_LOOKUP_FAILED if result is not None and result.error else ATTENDEE_INVALID
            errors.append(f"{attendee.email}: {reason}")
        return errors

    async def handle_meeting_details_collection(
        self,
        state: WorkflowState,
        message: Optional[ConversationMessage]
    ):
        meeting = state.meeting_data

        latest = self._latest_user_message() if message is not None else None
        if latest is not None:
            details = extract_meeting_details(latest.content)
            meeting.title = details.get("title", meeting.title)
            meeting.location = details.get("location", meeting.location)

        missing: List[str] = []
        if not meeting.title:
            missing.append("Meeting title is required")
        if meeting.type == MeetingType.PHYSICAL and not meeting.location:
            missing.append("Location is required for physical meetings")

        if missing:
            return WorkflowResponse(
                message="A few more details are needed before I can validate the meeting.",
                next_step=WorkflowStep.MEETING_DETAILS_COLLECTION,
                ui_block=UIBlock(
                    type=UIBlockType.MEETING_DETAILS,
                    data={
                        "title": meeting.title,
                        "location": meeting.location,
                        "description": meeting.description,
                        "requires_location": meeting.type == MeetingType.PHYSICAL
                    }
                ),
                validation_errors=missing
            )

        return WorkflowResponse(
            message=f"Details captured for \"{meeting.title}\".",
            next_step=WorkflowStep.VALIDATION,
            requires_user_input=False
        )

    async def handle_validation(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data

        result = self.rules.validate_meeting(meeting)
        if meeting.type == MeetingType.ONLINE and meeting.attendees and not state.attendee_collection_complete:
            result.add_error("Attendee collection must be completed for online meetings")
        state.validation_results.append(result)

        if not result.is_valid:
            return WorkflowResponse(
                message=f"Some meeting details need attention: {'; '.join(result.errors)}",
                next_step=self.validator.suggest_step_for_meeting(state),
                validation_errors=result.errors,
                warnings=result.warnings
            )

        return WorkflowResponse(
            message="Everything checks out. Preparing an agenda.",
            next_step=WorkflowStep.AGENDA_GENERATION,
            requires_user_input=False,
            warnings=result.warnings
        )

    async def handle_agenda_generation(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data
        warnings: List[str] = []

        if meeting.agenda is None:
            generator = self.collaborators.agenda_generator
            try:
                meeting.agenda = await self.call(
                    "agenda_generator",
                    "generate_agenda",
                    generator.generate_agenda(meeting.model_copy(deep=True), list(self.context.messages)),
                    self.settings.AGENDA_TIMEOUT
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Agenda generation failed, using template",
                    session_id=state.session_id,
                    error=str(e),
                    error_kind=classify_error(e).value
                )
                meeting.agenda = build_fallback_agenda(meeting.title)
                warnings.append("Agenda generation failed - using the standard agenda template")

        return WorkflowResponse(
            message="Here's a proposed agenda.",
            next_step=WorkflowStep.AGENDA_APPROVAL,
            requires_user_input=False,
            warnings=warnings
        )

    async def handle_agenda_approval(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data

        if meeting.agenda is None:
            return WorkflowResponse(
                message="There's no agenda yet, generating one.",
                next_step=WorkflowStep.AGENDA_GENERATION,
                requires_user_input=False
            )

        if self._is_confirmation(message):
            meeting.status = MeetingStatus.PENDING_APPROVAL
            return WorkflowResponse(
                message="Agenda approved.",
                next_step=WorkflowStep.APPROVAL,
                requires_user_input=False
            )

        formatted = self.collaborators.agenda_generator.format_agenda(meeting.agenda)
        return WorkflowResponse(
            message=f"{formatted}\n\nReply to approve this agenda or send the changes you'd like.",
            next_step=WorkflowStep.AGENDA_APPROVAL,
            ui_block=UIBlock(
                type=UIBlockType.AGENDA_EDITOR,
                data={"agenda": meeting.agenda.model_dump(), "formatted": formatted}
            )
        )

    async def handle_approval(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data
        requirements = self.validator.validate_meeting_creation_requirements(state)

        if not requirements.is_valid:
            return WorkflowResponse(
                message=f"The meeting can't be created yet: {'; '.join(requirements.errors)}",
                next_step=requirements.suggested_step or WorkflowStep.APPROVAL,
                validation_errors=requirements.errors,
                warnings=requirements.warnings
            )

        if self._is_confirmation(message):
            meeting.status = MeetingStatus.APPROVED
            return WorkflowResponse(
                message="Creating your meeting now.",
                next_step=WorkflowStep.CREATION,
                requires_user_input=False,
                warnings=requirements.warnings
            )

        summary = build_meeting_summary(meeting)
        when = meeting.start_time.strftime("%A %d %B at %H:%M") if meeting.start_time else "an unset time"
        return WorkflowResponse(
            message=f"Please review \"{meeting.title}\" on {when} with {len(meeting.attendees)} attendee(s) "
                    f"and confirm to create it.",
            next_step=WorkflowStep.APPROVAL,
            ui_block=UIBlock(type=UIBlockType.MEETING_APPROVAL, data=summary),
            warnings=requirements.warnings
        )

    async def handle_creation(self, state: WorkflowState, message: Optional[ConversationMessage]):
        meeting = state.meeting_data
        requirements = self.validator.validate_meeting_creation_requirements(state)

        if not requirements.is_valid:
            return WorkflowResponse(
                message=f"The meeting can't be created yet: {'; '.join(requirements.errors)}",
                next_step=requirements.suggested_step or WorkflowStep.APPROVAL,
                validation_errors=requirements.errors,
                warnings=requirements.warnings
            )

        event_data = EventData(
            title=meeting.title,
            description=format_agenda(meeting.agenda) if meeting.agenda else (meeting.description or ""),
            start_time=meeting.start_time,
            end_time=meeting.end_time,
            attendees=[
                {
                    "email": attendee.email,
                    "first_name": attendee.first_name,
                    "last_name": attendee.last_name,
                    "optional": not attendee.is_required
                }
                for attendee in meeting.attendees
            ],
            location=meeting.location,
            user_id=self.user.id
        )
        created = await self.call(
            "event_creator",
            "create",
            self.collaborators.event_creator.create(self.user, event_data, meeting.type),
            self.settings.EVENT_CREATION_TIMEOUT
        )

        meeting.id = created.id
        meeting.meeting_link = created.meeting_link
        meeting.status = MeetingStatus.CREATED
        state.is_complete = True

        if self.on_meeting_created is not None:
            self.on_meeting_created(created.id, meeting.model_copy(deep=True))

        return WorkflowResponse(
            message=f"Your meeting \"{meeting.title}\" has been created!",
            next_step=WorkflowStep.COMPLETED,
            requires_user_input=False,
            ui_block=UIBlock(
                type=UIBlockType.MEETING_CREATED,
                data={
                    "meeting_id": created.id,
                    "html_link": created.html_link,
                    "meeting_link": created.meeting_link,
                    "status": created.status
                }
            ),
            warnings=requirements.warnings
        )

    async def handle_completed(self, state: WorkflowState, message: Optional[ConversationMessage]):
        return WorkflowResponse(
            message="This meeting has already been created. Start a new session to schedule another one.",
            next_step=WorkflowStep.COMPLETED
        )
