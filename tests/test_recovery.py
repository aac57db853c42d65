"""
Unit tests for error classification and recovery responses.
"""
import asyncio

import pytest
from pydantic import BaseModel, ValidationError

from meeting_agent.domain.models.errors import AgendaParseError, ErrorKind, WorkflowError, classify_error
from meeting_agent.domain.models.workflow_state import WorkflowStep
from meeting_agent.domain.orchestration.recovery import (
    RECOVERY_MESSAGES, build_recovery_response, recovery_step_for
)


class _Strict(BaseModel):
    count: int


def _validation_error() -> ValidationError:
    try:
        _Strict(count="many")
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


class TestClassifyError:
    """Tests for mapping exceptions to error kinds."""

    @pytest.mark.parametrize("error,expected", [
        (WorkflowError("quota", kind=ErrorKind.QUOTA_EXCEEDED), ErrorKind.QUOTA_EXCEEDED),
        (AgendaParseError("bad agenda"), ErrorKind.VALIDATION),
        (asyncio.TimeoutError(), ErrorKind.NETWORK_TIMEOUT),
        (ConnectionError("reset"), ErrorKind.NETWORK_TIMEOUT),
        (PermissionError("denied"), ErrorKind.AUTHENTICATION),
        (ValueError("bad value"), ErrorKind.VALIDATION),
        (RuntimeError("boom"), ErrorKind.UNKNOWN),
    ])
    def test_classification(self, error, expected):
        assert classify_error(error) == expected

    def test_pydantic_validation_error(self):
        assert classify_error(_validation_error()) == ErrorKind.VALIDATION

    def test_message_text_is_ignored(self):
        """Kinds come from the exception type, never from its message."""
        assert classify_error(RuntimeError("authentication token expired")) == ErrorKind.UNKNOWN

    def test_workflow_error_to_dict(self):
        error = WorkflowError("Calendar busy", kind=ErrorKind.QUOTA_EXCEEDED, details={"retry_after": 30})

        assert error.recoverable is True
        assert error.to_dict() == {
            "message": "Calendar busy",
            "kind": "quota_exceeded",
            "details": {"retry_after": 30}
        }


class TestRecoveryResponse:
    """Tests for building recovery responses."""

    def test_authentication_goes_to_calendar_access(self):
        response = build_recovery_response(
            WorkflowError("token expired", kind=ErrorKind.AUTHENTICATION), WorkflowStep.CREATION
        )

        assert response.next_step == WorkflowStep.CALENDAR_ACCESS_VERIFICATION
        assert response.requires_user_input is True
        assert response.validation_errors == ["token expired"]
        assert response.message == RECOVERY_MESSAGES[ErrorKind.AUTHENTICATION]

    @pytest.mark.parametrize("kind", [ErrorKind.QUOTA_EXCEEDED, ErrorKind.NETWORK_TIMEOUT])
    def test_recoverable_kinds_stay_and_continue(self, kind):
        response = build_recovery_response(WorkflowError("slow", kind=kind), WorkflowStep.AVAILABILITY_CHECK)

        assert response.next_step == WorkflowStep.AVAILABILITY_CHECK
        assert response.requires_user_input is False
        assert response.warnings == ["slow"]
        assert response.validation_errors == []

    def test_validation_uses_suggested_step(self):
        response = build_recovery_response(
            ValueError("bad time"), WorkflowStep.VALIDATION, suggested_step=WorkflowStep.TIME_DATE_COLLECTION
        )

        assert response.next_step == WorkflowStep.TIME_DATE_COLLECTION
        assert response.requires_user_input is True

    def test_validation_defaults_to_details(self):
        assert recovery_step_for(ErrorKind.VALIDATION, WorkflowStep.VALIDATION) == \
            WorkflowStep.MEETING_DETAILS_COLLECTION

    def test_unknown_stays_on_step(self):
        response = build_recovery_response(RuntimeError(), WorkflowStep.APPROVAL)

        assert response.next_step == WorkflowStep.APPROVAL
        assert response.validation_errors == ["RuntimeError"]
        assert response.message == RECOVERY_MESSAGES[ErrorKind.UNKNOWN]
