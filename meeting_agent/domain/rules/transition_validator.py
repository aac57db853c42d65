from typing import Dict, Callable, FrozenSet, Optional

from meeting_agent.domain.models.workflow_state import (
    MeetingType, MeetingStatus, StepValidation, ValidationResult,
    WorkflowState, WorkflowStep, step_index
)
from meeting_agent.domain.rules.business_rules import BusinessRulesEngine


# Collection steps a later step may send the user back to for corrections
_CORRECTION_TARGETS = (
    WorkflowStep.MEETING_TYPE_SELECTION,
    WorkflowStep.TIME_DATE_COLLECTION,
    WorkflowStep.AVAILABILITY_CHECK,
    WorkflowStep.ATTENDEE_COLLECTION,
    WorkflowStep.MEETING_DETAILS_COLLECTION,
)


def _build_backward_edges() -> Dict[WorkflowStep, FrozenSet[WorkflowStep]]:
    edges: Dict[WorkflowStep, set] = {step: set() for step in WorkflowStep}

    for step in WorkflowStep:
        if step in (WorkflowStep.INTENT_DETECTION, WorkflowStep.COMPLETED):
            continue
        # Authentication recovery
        edges[step].add(WorkflowStep.CALENDAR_ACCESS_VERIFICATION)

        # Conflict resolution and corrections after a failed check
        if step_index(step) >= step_index(WorkflowStep.AVAILABILITY_CHECK):
            for target in _CORRECTION_TARGETS:
                if step_index(target) < step_index(step):
                    edges[step].add(target)

    edges[WorkflowStep.AGENDA_APPROVAL].add(WorkflowStep.AGENDA_GENERATION)
    edges[WorkflowStep.APPROVAL].update({WorkflowStep.AGENDA_GENERATION, WorkflowStep.AGENDA_APPROVAL})

    return {step: frozenset(targets) for step, targets in edges.items()}


BACKWARD_EDGES: Dict[WorkflowStep, FrozenSet[WorkflowStep]] = _build_backward_edges()


class TransitionValidator:
    """Pure predicates deciding whether the workflow may enter or leave a step.

    Nothing here mutates the state or calls a collaborator, so the same
    answers are produced for automatic transitions, explicit advances and
    diagnostics.
    """

    def __init__(self, business_rules: Optional[BusinessRulesEngine] = None):
        self.rules = business_rules or BusinessRulesEngine()
        self._target_checks: Dict[WorkflowStep, Callable[[WorkflowState, ValidationResult], None]] = {
            WorkflowStep.MEETING_TYPE_SELECTION: self._check_meeting_type_selection,
            WorkflowStep.TIME_DATE_COLLECTION: self._check_time_date_collection,
            WorkflowStep.AVAILABILITY_CHECK: self._check_availability_check,
            WorkflowStep.ATTENDEE_COLLECTION: self._check_attendee_collection,
            WorkflowStep.MEETING_DETAILS_COLLECTION: self._check_meeting_details_collection,
            WorkflowStep.VALIDATION: self._check_validation,
            WorkflowStep.AGENDA_GENERATION: self._check_agenda_generation,
            WorkflowStep.APPROVAL: self._check_approval,
            WorkflowStep.CREATION: self._check_creation,
            WorkflowStep.COMPLETED: self._check_completed,
        }

    def is_backward_allowed(self, from_step: WorkflowStep, to_step: WorkflowStep) -> bool:
        return to_step in BACKWARD_EDGES.get(from_step, frozenset())

    def validate_transition(
        self,
        to_step: WorkflowStep,
        state: WorkflowState,
        from_step: Optional[WorkflowStep] = None
    ) -> ValidationResult:
        """Check the edge from the current (or given) step into to_step"""

        from_step = from_step or state.current_step
        result = ValidationResult()

        if step_index(to_step) < step_index(from_step) and not self.is_backward_allowed(from_step, to_step):
            result.add_error(f"Cannot move back from {from_step.value} to {to_step.value}")
            return result

        check = self._target_checks.get(to_step)
        if check:
            check(state, result)

        return result

    def _check_meeting_type_selection(self, state: WorkflowState, result: ValidationResult):
        if not state.has_calendar_access:
            result.warnings.append("Calendar access not verified - some features may be limited")

    def _check_time_date_collection(self, state: WorkflowState, result: ValidationResult):
        meeting = state.meeting_data
        if not meeting.type:
            result.add_error("Meeting type must be selected before setting time")
            result.suggested_step = WorkflowStep.MEETING_TYPE_SELECTION
            return
        # Type requirements are enforced by the later collection steps
        result.merge(self.rules.validate_meeting_type(meeting.type, meeting), errors_as_warnings=True)

    def _check_availability_check(self, state: WorkflowState, result: ValidationResult):
        meeting = state.meeting_data
        if not meeting.has_time:
            result.add_error("Meeting time must be set before availability check")
        else:
            result.merge(self.rules.validate_time_constraints(meeting.start_time, meeting.end_time))
        if not state.has_calendar_access:
            result.add_error("Calendar access required for availability checking")
        if not result.is_valid:
            result.suggested_step = WorkflowStep.TIME_DATE_COLLECTION

    def _check_attendee_collection(self, state: WorkflowState, result: ValidationResult):
        meeting = state.meeting_data
        if not state.time_collection_complete:
            result.add_error("Time collection must be completed before attendee collection")
        if not meeting.has_time:
            result.add_error("Meeting start and end time must be established before attendee collection")
        if not result.is_valid:
            result.suggested_step = WorkflowStep.TIME_DATE_COLLECTION
        if not meeting.type:
            result.add_error("Meeting type must be selected before attendee collection")
            result.suggested_step = result.suggested_step or WorkflowStep.MEETING_TYPE_SELECTION

    def _check_meeting_details_collection(self, state: WorkflowState, result: ValidationResult):
        meeting = state.meeting_data
        if meeting.type == MeetingType.ONLINE and not state.attendee_collection_complete:
            result.add_error("Attendee collection must be completed for online meetings")
            result.suggested_step = WorkflowStep.ATTENDEE_COLLECTION
        if meeting.attendees:
            attendee_result = self.rules.validate_attendees(meeting.attendees)
            result.merge(attendee_result)
            if not attendee_result.is_valid:
                result.suggested_step = WorkflowStep.ATTENDEE_COLLECTION

    def _check_validation(self, state: WorkflowState, result: ValidationResult):
        meeting = state.meeting_data
        suggested: Optional[WorkflowStep] = None

        if not meeting.title:
            result.add_error("Meeting title is required for validation")
            suggested = WorkflowStep.MEETING_DETAILS_COLLECTION
        if not meeting.type:
            result.add_error("Meeting type is required for validation")
            suggested = WorkflowStep.MEETING_TYPE_SELECTION
        if not meeting.has_time:
            result.add_error("Meeting time is required for validation")
            suggested = suggested or WorkflowStep.TIME_DATE_COLLECTION
        if meeting.type == MeetingType.PHYSICAL and not meeting.location:
            result.add_error("Location is required for physical meetings")
            suggested = suggested or WorkflowStep.MEETING_DETAILS_COLLECTION
        if meeting.type == MeetingType.ONLINE:
            if not meeting.attendees:
                result.add_error("Online meetings must have at least one attendee")
                suggested = suggested or WorkflowStep.ATTENDEE_COLLECTION
            elif not state.attendee_collection_complete:
                result.add_error("Attendee collection must be completed for online meetings")
                suggested = suggested or WorkflowStep.ATTENDEE_COLLECTION

        result.suggested_step = suggested

    def _check_agenda_generation(self, state: WorkflowState, result: ValidationResult):
        details = self.rules.validate_meeting(state.meeting_data)
        result.merge(details)
        if not details.is_valid:
            result.suggested_step = self.suggest_step_for_meeting(state)

    def _check_approval(self, state: WorkflowState, result: ValidationResult):
        self._check_agenda_generation(state, result)
        sequence = self._sequence_result(state)
        result.merge(sequence)

    def _check_creation(self, state: WorkflowState, result: ValidationResult):
        result.merge(self.validate_meeting_creation_requirements(state))

    def _check_completed(self, state: WorkflowState, result: ValidationResult):
        meeting = state.meeting_data
        if not meeting.id or meeting.status != MeetingStatus.CREATED:
            result.add_error("Meeting must be successfully created before completion")

    def _sequence_result(self, state: WorkflowState) -> ValidationResult:
        sequence = self.rules.validate_workflow_sequence(
            state.has_calendar_access,
            state.time_collection_complete,
            state.availability_result is not None,
            state.meeting_data.type,
            state.attendee_collection_complete
        )
        if not sequence.is_valid:
            if not state.has_calendar_access:
                sequence.suggested_step = WorkflowStep.CALENDAR_ACCESS_VERIFICATION
            elif not state.time_collection_complete:
                sequence.suggested_step = WorkflowStep.TIME_DATE_COLLECTION
            elif state.meeting_data.type == MeetingType.ONLINE and not state.attendee_collection_complete:
                sequence.suggested_step = WorkflowStep.ATTENDEE_COLLECTION
        return sequence

    def suggest_step_for_meeting(self, state: WorkflowState) -> WorkflowStep:
        """Most relevant collection step for the data that is missing or invalid"""

        meeting = state.meeting_data
        if not meeting.type:
            return WorkflowStep.MEETING_TYPE_SELECTION
        if not meeting.has_time or not self.rules.validate_time_constraints(
                meeting.start_time, meeting.end_time).is_valid:
            return WorkflowStep.TIME_DATE_COLLECTION
        if meeting.attendees and not self.rules.validate_attendees(meeting.attendees).is_valid:
            return WorkflowStep.ATTENDEE_COLLECTION
        if meeting.type == MeetingType.ONLINE and not meeting.attendees:
            return WorkflowStep.ATTENDEE_COLLECTION
        return WorkflowStep.MEETING_DETAILS_COLLECTION

    def validate_meeting_creation_requirements(self, state: WorkflowState) -> ValidationResult:
        """Calendar access, availability, sequence and essentials before the event is created"""

        result = ValidationResult()
        meeting = state.meeting_data
        access = state.calendar_access_status
        suggested: Optional[WorkflowStep] = None

        calendar = self.rules.validate_calendar_access(
            access.has_access if access else False,
            access.needs_refresh if access else False,
            access.token_valid if access else False
        )
        result.merge(calendar)
        if not calendar.is_valid:
            suggested = WorkflowStep.CALENDAR_ACCESS_VERIFICATION

        availability = state.availability_result
        result.merge(self.rules.validate_availability_check(
            availability is not None,
            bool(availability and availability.conflicts),
            bool(availability and availability.is_available)
        ))
        if availability is None and meeting.has_time:
            result.add_error("Calendar availability must be checked before creating meetings")
            suggested = WorkflowStep.AVAILABILITY_CHECK

        sequence = self._sequence_result(state)
        for error in sequence.errors:
            if error not in result.errors:
                result.add_error(error)
        if not sequence.is_valid and sequence.suggested_step != WorkflowStep.CALENDAR_ACCESS_VERIFICATION:
            suggested = sequence.suggested_step or suggested

        if not meeting.title:
            result.add_error("Meeting title is required")
            suggested = WorkflowStep.MEETING_DETAILS_COLLECTION
        if not meeting.has_time:
            result.add_error("Meeting start and end times are required")
            suggested = WorkflowStep.TIME_DATE_COLLECTION
        if not meeting.type:
            result.add_error("Meeting type must be specified")
            suggested = WorkflowStep.MEETING_TYPE_SELECTION

        if availability and availability.conflicts and not availability.is_available:
            result.warnings.append("Meeting time has calendar conflicts - ensure this is intentional")
        if state.errors:
            result.warnings.append("Previous workflow errors detected - review meeting details")

        result.suggested_step = suggested
        return result

    def validate_current_step(self, state: WorkflowState) -> StepValidation:
        """Can the workflow leave its current step"""

        result = StepValidation()
        meeting = state.meeting_data
        step = state.current_step

        if step == WorkflowStep.CALENDAR_ACCESS_VERIFICATION:
            if not state.has_calendar_access:
                result.add_error("Calendar access must be verified before proceeding")

        elif step == WorkflowStep.MEETING_TYPE_SELECTION:
            if not meeting.type:
                result.add_error("Meeting type must be selected")
            else:
                # Attendees and location are collected after the type is chosen
                result.merge(self.rules.validate_meeting_type(meeting.type, meeting), errors_as_warnings=True)

        elif step == WorkflowStep.TIME_DATE_COLLECTION:
            if not meeting.has_time:
                result.add_error("Meeting start and end times must be set")
            else:
                result.merge(self.rules.validate_time_constraints(meeting.start_time, meeting.end_time))
                if not state.time_collection_complete:
                    result.add_error("Time collection process must be marked complete")

        elif step == WorkflowStep.AVAILABILITY_CHECK:
            availability = state.availability_result
            if availability is None:
                result.warnings.append("Availability check was not performed - conflicts may exist")
            elif availability.conflicts and not availability.is_available:
                result.warnings.append("Calendar conflicts detected but not resolved")

        elif step == WorkflowStep.ATTENDEE_COLLECTION:
            if meeting.type == MeetingType.ONLINE:
                if not meeting.attendees:
                    result.add_error("Online meetings require at least one attendee")
                else:
                    result.merge(self.rules.validate_attendees(meeting.attendees))
                if not state.attendee_collection_complete:
                    result.add_error("Attendee collection must be completed for online meetings")
            elif meeting.type == MeetingType.PHYSICAL and meeting.attendees:
                result.merge(self.rules.validate_attendees(meeting.attendees), errors_as_warnings=True)

        elif step == WorkflowStep.MEETING_DETAILS_COLLECTION:
            if not meeting.title:
                result.add_error("Meeting title is required")
            if meeting.type == MeetingType.PHYSICAL and not meeting.location:
                result.add_error("Location is required for physical meetings")

        elif step == WorkflowStep.VALIDATION:
            result.merge(self.rules.validate_meeting(meeting))
            sequence = self._sequence_result(state)
            result.merge(sequence)
            if not sequence.is_valid:
                result.suggested_step = sequence.suggested_step

        elif step == WorkflowStep.APPROVAL:
            creation = self.validate_meeting_creation_requirements(state)
            result.merge(creation)
            result.suggested_step = creation.suggested_step

        result.can_advance = result.is_valid
        return result
