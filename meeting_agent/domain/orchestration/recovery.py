from typing import Dict, Optional

from meeting_agent.domain.models.errors import ErrorKind, WorkflowError, classify_error
from meeting_agent.domain.models.workflow_state import WorkflowResponse, WorkflowStep


RECOVERY_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION: (
        "I encountered an authentication issue. Please re-authenticate with Google Calendar and try again."
    ),
    ErrorKind.QUOTA_EXCEEDED: (
        "The calendar service is temporarily busy. Let's continue with the information we have "
        "and try the calendar operations later."
    ),
    ErrorKind.NETWORK_TIMEOUT: (
        "I'm having trouble connecting to the calendar service. We can continue setting up your meeting "
        "and sync with your calendar when the connection is restored."
    ),
    ErrorKind.VALIDATION: "There's an issue with the meeting information. Let me help you correct it.",
    ErrorKind.UNKNOWN: "I encountered an unexpected issue. Let me try to continue from where we left off.",
}


def recovery_step_for(
    kind: ErrorKind,
    current_step: WorkflowStep,
    suggested_step: Optional[WorkflowStep] = None
) -> WorkflowStep:
    """Where the workflow should resume after a failure of the given kind"""

    if kind == ErrorKind.AUTHENTICATION:
        return WorkflowStep.CALENDAR_ACCESS_VERIFICATION
    if kind == ErrorKind.VALIDATION:
        return suggested_step or WorkflowStep.MEETING_DETAILS_COLLECTION
    return current_step


def build_recovery_response(
    error: BaseException,
    current_step: WorkflowStep,
    suggested_step: Optional[WorkflowStep] = None
) -> WorkflowResponse:
    """Turn a failure into a user-facing response"""

    kind = classify_error(error)
    recoverable = kind in (ErrorKind.QUOTA_EXCEEDED, ErrorKind.NETWORK_TIMEOUT)
    detail = error.message if isinstance(error, WorkflowError) else (str(error) or type(error).__name__)

    return WorkflowResponse(
        message=RECOVERY_MESSAGES[kind],
        next_step=recovery_step_for(kind, current_step, suggested_step),
        requires_user_input=not recoverable,
        validation_errors=[] if recoverable else [detail],
        warnings=[detail] if recoverable else []
    )
