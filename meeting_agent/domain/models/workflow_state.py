from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from meeting_agent.domain.models.agenda import AgendaContent
from meeting_agent.domain.models.calendar import AvailabilityResult, CalendarAccessStatus


class WorkflowStep(str, Enum):
    """Ordered steps of the meeting creation workflow"""
    INTENT_DETECTION = "intent_detection"
    CALENDAR_ACCESS_VERIFICATION = "calendar_access_verification"
    MEETING_TYPE_SELECTION = "meeting_type_selection"
    TIME_DATE_COLLECTION = "time_date_collection"
    AVAILABILITY_CHECK = "availability_check"
    CONFLICT_RESOLUTION = "conflict_resolution"
    ATTENDEE_COLLECTION = "attendee_collection"
    MEETING_DETAILS_COLLECTION = "meeting_details_collection"
    VALIDATION = "validation"
    AGENDA_GENERATION = "agenda_generation"
    AGENDA_APPROVAL = "agenda_approval"
    APPROVAL = "approval"
    CREATION = "creation"
    COMPLETED = "completed"


STEP_ORDER: List[WorkflowStep] = list(WorkflowStep)


def step_index(step: WorkflowStep) -> int:
    return STEP_ORDER.index(step)


class MeetingType(str, Enum):
    """Meeting venue type"""
    ONLINE = "online"
    PHYSICAL = "physical"


class MeetingStatus(str, Enum):
    """Meeting lifecycle status"""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    CREATED = "created"


class Attendee(BaseModel):
    """Meeting attendee"""
    email: str = Field(description="Attendee email, unique per meeting ignoring case")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_validated: bool = Field(default=False)
    is_required: bool = Field(default=True)


class MeetingData(BaseModel):
    """Partial meeting being assembled by the workflow"""
    id: Optional[str] = Field(None, description="Calendar event id, set on creation")
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[MeetingType] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    attendees: List[Attendee] = Field(default_factory=list)
    agenda: Optional[AgendaContent] = None
    status: MeetingStatus = Field(default=MeetingStatus.DRAFT)
    meeting_link: Optional[str] = None

    @property
    def has_time(self) -> bool:
        return self.start_time is not None and self.end_time is not None

    @property
    def duration_minutes(self) -> Optional[int]:
        if not self.has_time:
            return None
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def attendee_emails(self) -> List[str]:
        return [attendee.email for attendee in self.attendees]

    def has_attendee(self, email: str) -> bool:
        normalized = email.strip().lower()
        return any(attendee.email.strip().lower() == normalized for attendee in self.attendees)


class ValidationResult(BaseModel):
    """Outcome of a business rule or transition check"""
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggested_step: Optional[WorkflowStep] = None

    def add_error(self, error: str):
        self.errors.append(error)
        self.is_valid = False

    def merge(self, other: "ValidationResult", errors_as_warnings: bool = False):
        """Fold another result into this one"""
        if errors_as_warnings:
            self.warnings.extend(other.errors)
        else:
            for error in other.errors:
                self.add_error(error)
        self.warnings.extend(other.warnings)
        if other.suggested_step and not self.suggested_step:
            self.suggested_step = other.suggested_step


class StepValidation(ValidationResult):
    """Result of checking whether the current step can be left"""
    can_advance: bool = True


class UIBlockType(str, Enum):
    """UI directives a step can ask the client to render"""
    MEETING_TYPE_SELECTION = "meeting_type_selection"
    TIME_SELECTION = "time_selection"
    CONFLICT_RESOLUTION = "conflict_resolution"
    ATTENDEE_MANAGEMENT = "attendee_management"
    MEETING_DETAILS = "meeting_details"
    AGENDA_EDITOR = "agenda_editor"
    MEETING_APPROVAL = "meeting_approval"
    MEETING_CREATED = "meeting_created"
    CALENDAR_ACCESS = "calendar_access"


class UIBlock(BaseModel):
    """Directive for the client to render an interactive component"""
    type: UIBlockType
    data: Dict[str, Any] = Field(default_factory=dict)


class WorkflowResponse(BaseModel):
    """What the orchestrator returns for each operation"""
    message: str
    next_step: WorkflowStep
    requires_user_input: bool = True
    ui_block: Optional[UIBlock] = None
    validation_errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class WorkflowState(BaseModel):
    """Single mutable aggregate for one conversation session"""
    session_id: str
    user_id: Optional[str] = None
    current_step: WorkflowStep = Field(default=WorkflowStep.INTENT_DETECTION)
    meeting_data: MeetingData = Field(default_factory=MeetingData)
    validation_results: List[ValidationResult] = Field(default_factory=list)
    pending_actions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    calendar_access_status: Optional[CalendarAccessStatus] = None
    availability_result: Optional[AvailabilityResult] = None
    time_collection_complete: bool = False
    attendee_collection_complete: bool = False
    type_locked: bool = Field(default=False, description="Set once a meeting type has passed validation")
    is_complete: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def progress(self) -> int:
        """Completion percentage derived from the step position"""
        if self.current_step == WorkflowStep.COMPLETED:
            return 100
        return int(step_index(self.current_step) * 100 / (len(STEP_ORDER) - 1))

    @property
    def has_calendar_access(self) -> bool:
        return bool(self.calendar_access_status and self.calendar_access_status.has_access)

    def log_error(self, error: str):
        self.errors.append(error)
        self.updated_at = datetime.utcnow()

    def touch(self):
        self.updated_at = datetime.utcnow()

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "session_id": self.session_id,
            "current_step": self.current_step.value,
            "progress": self.progress,
            "meeting_type": self.meeting_data.type.value if self.meeting_data.type else None,
            "attendees": len(self.meeting_data.attendees),
            "is_complete": self.is_complete,
            "errors": len(self.errors),
            "updated_at": self.updated_at.isoformat()
        }
