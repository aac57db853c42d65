from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import re

from meeting_agent.domain.models.workflow_state import (
    Attendee, MeetingData, MeetingType, ValidationResult
)


VALIDATION_RULES: Dict[str, Any] = {
    "MIN_MEETING_DURATION_MINUTES": 15,
    "MAX_MEETING_DURATION_HOURS": 8,
    "MAX_ADVANCE_BOOKING_DAYS": 365,
    "MIN_ADVANCE_BOOKING_MINUTES": 5,
    "MAX_ATTENDEES": 100,
    "MIN_ATTENDEES_FOR_ONLINE": 1,
    "MANY_ATTENDEES_WARNING": 10,
    "LONG_MEETING_HOURS": 2,
    "BUSINESS_HOURS_START": 8,
    "BUSINESS_HOURS_END": 18,
}

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

ERROR_MESSAGES: Dict[str, str] = {
    "ONLINE_MEETING_NO_ATTENDEES": "Online meetings must have at least one attendee",
    "PHYSICAL_MEETING_NO_LOCATION": "Physical meetings must have a location specified",
    "INVALID_EMAIL_FORMAT": "Invalid email format",
    "MEETING_TOO_SHORT": f"Meeting duration must be at least {VALIDATION_RULES['MIN_MEETING_DURATION_MINUTES']} minutes",
    "MEETING_TOO_LONG": f"Meeting duration cannot exceed {VALIDATION_RULES['MAX_MEETING_DURATION_HOURS']} hours",
    "INVALID_TIME_RANGE": "End time must be after start time",
    "BOOKING_TOO_FAR_AHEAD": f"Cannot book meetings more than {VALIDATION_RULES['MAX_ADVANCE_BOOKING_DAYS']} days in advance",
    "BOOKING_TOO_SOON": f"Meeting must be scheduled at least {VALIDATION_RULES['MIN_ADVANCE_BOOKING_MINUTES']} minutes in advance",
    "TOO_MANY_ATTENDEES": f"Cannot have more than {VALIDATION_RULES['MAX_ATTENDEES']} attendees",
    "DUPLICATE_ATTENDEES": "Duplicate attendee emails are not allowed",
}

WARNING_MESSAGES: Dict[str, str] = {
    "OUTSIDE_BUSINESS_HOURS": "Meeting is scheduled outside typical business hours (8 AM - 6 PM)",
    "WEEKEND_MEETING": "Meeting is scheduled on a weekend",
    "LONG_MEETING": "Meeting duration is longer than 2 hours",
    "MANY_ATTENDEES": "Meeting has a large number of attendees (10+)",
}


def _now_like(reference: datetime) -> datetime:
    """Current time with the same awareness as the reference value"""
    if reference.tzinfo is not None:
        return datetime.now(timezone.utc).astimezone(reference.tzinfo)
    return datetime.utcnow()


class BusinessRulesEngine:
    """Deterministic meeting rules, no AI involvement"""

    def validate_meeting_type(self, meeting_type: MeetingType, data: MeetingData) -> ValidationResult:
        """Online meetings need attendees, physical meetings need a location"""

        result = ValidationResult()
        if meeting_type == MeetingType.ONLINE:
            if not data.attendees:
                result.add_error(ERROR_MESSAGES["ONLINE_MEETING_NO_ATTENDEES"])
        elif meeting_type == MeetingType.PHYSICAL:
            if not data.location or not data.location.strip():
                result.add_error(ERROR_MESSAGES["PHYSICAL_MEETING_NO_LOCATION"])
        return result

    def enforce_attendee_requirement(self, meeting_type: Optional[MeetingType], emails: List[str]) -> bool:
        if meeting_type == MeetingType.ONLINE:
            return len(emails) >= VALIDATION_RULES["MIN_ATTENDEES_FOR_ONLINE"]
        return True

    def validate_time_constraints(
        self,
        start_time: datetime,
        end_time: datetime,
        now: Optional[datetime] = None
    ) -> ValidationResult:
        """Duration bounds, booking window, and soft scheduling warnings"""

        result = ValidationResult()
        now = now or _now_like(start_time)

        duration_minutes = (end_time - start_time).total_seconds() / 60
        duration_hours = duration_minutes / 60
        minutes_in_advance = (start_time - now).total_seconds() / 60
        days_in_advance = minutes_in_advance / (60 * 24)

        if end_time <= start_time:
            result.add_error(ERROR_MESSAGES["INVALID_TIME_RANGE"])
        if duration_minutes < VALIDATION_RULES["MIN_MEETING_DURATION_MINUTES"]:
            result.add_error(ERROR_MESSAGES["MEETING_TOO_SHORT"])
        if duration_hours > VALIDATION_RULES["MAX_MEETING_DURATION_HOURS"]:
            result.add_error(ERROR_MESSAGES["MEETING_TOO_LONG"])
        if days_in_advance > VALIDATION_RULES["MAX_ADVANCE_BOOKING_DAYS"]:
            result.add_error(ERROR_MESSAGES["BOOKING_TOO_FAR_AHEAD"])
        if minutes_in_advance < VALIDATION_RULES["MIN_ADVANCE_BOOKING_MINUTES"]:
            result.add_error(ERROR_MESSAGES["BOOKING_TOO_SOON"])

        if (start_time.hour < VALIDATION_RULES["BUSINESS_HOURS_START"]
                or end_time.hour > VALIDATION_RULES["BUSINESS_HOURS_END"]):
            result.warnings.append(WARNING_MESSAGES["OUTSIDE_BUSINESS_HOURS"])
        if start_time.weekday() >= 5:
            result.warnings.append(WARNING_MESSAGES["WEEKEND_MEETING"])
        if duration_hours > VALIDATION_RULES["LONG_MEETING_HOURS"]:
            result.warnings.append(WARNING_MESSAGES["LONG_MEETING"])

        return result

    def validate_email_format(self, email: Optional[str]) -> bool:
        if not email or not isinstance(email, str):
            return False
        return bool(EMAIL_REGEX.match(email.strip().lower()))

    def validate_attendees(self, attendees: List[Attendee]) -> ValidationResult:
        """Attendee count, per-email format and duplicate checks"""

        result = ValidationResult()

        if len(attendees) > VALIDATION_RULES["MAX_ATTENDEES"]:
            result.add_error(ERROR_MESSAGES["TOO_MANY_ATTENDEES"])

        seen = set()
        duplicates: List[str] = []
        for attendee in attendees:
            email = attendee.email.strip().lower()
            if not self.validate_email_format(email):
                result.add_error(f"{ERROR_MESSAGES['INVALID_EMAIL_FORMAT']}: {attendee.email}")
            if email in seen:
                duplicates.append(email)
            else:
                seen.add(email)

        if duplicates:
            result.add_error(f"{ERROR_MESSAGES['DUPLICATE_ATTENDEES']}: {', '.join(duplicates)}")

        if len(attendees) >= VALIDATION_RULES["MANY_ATTENDEES_WARNING"]:
            result.warnings.append(WARNING_MESSAGES["MANY_ATTENDEES"])

        return result

    def validate_meeting(self, meeting_data: MeetingData) -> ValidationResult:
        """Comprehensive meeting validation"""

        result = ValidationResult()
        if meeting_data.type:
            result.merge(self.validate_meeting_type(meeting_data.type, meeting_data))
        if meeting_data.has_time:
            result.merge(self.validate_time_constraints(meeting_data.start_time, meeting_data.end_time))
        if meeting_data.attendees:
            result.merge(self.validate_attendees(meeting_data.attendees))
        return result

    def validate_workflow_sequence(
        self,
        calendar_access_verified: bool,
        time_collection_complete: bool,
        availability_checked: bool,
        meeting_type: Optional[MeetingType] = None,
        attendee_collection_complete: bool = False
    ) -> ValidationResult:
        """Ensure the workflow steps were completed in order before creation"""

        result = ValidationResult()
        if not calendar_access_verified:
            result.add_error("Calendar access must be verified before meeting creation")
        if not time_collection_complete:
            result.add_error("Meeting time and date must be collected before creation")
        if not availability_checked:
            result.warnings.append("Calendar availability was not checked - conflicts may exist")
        if meeting_type == MeetingType.ONLINE and not attendee_collection_complete:
            result.add_error("Attendee collection must be completed for online meetings")
        return result

    def validate_calendar_access(self, has_access: bool, needs_refresh: bool, token_valid: bool) -> ValidationResult:
        result = ValidationResult()
        if not has_access:
            result.add_error("Calendar access is required for meeting creation")
        if needs_refresh:
            result.add_error("Calendar access token needs to be refreshed")
        if not token_valid:
            result.add_error("Calendar access token is invalid")
        return result

    def validate_availability_check(
        self,
        availability_checked: bool,
        has_conflicts: bool = False,
        conflicts_resolved: bool = False
    ) -> ValidationResult:
        """Availability problems only ever produce warnings"""

        result = ValidationResult()
        if not availability_checked:
            result.warnings.append("Calendar availability was not checked - scheduling conflicts may exist")
        if has_conflicts and not conflicts_resolved:
            result.warnings.append(
                "Calendar conflicts detected but not resolved - meeting may overlap with existing events"
            )
        return result

    def get_validation_rules(self) -> Dict[str, Any]:
        return dict(VALIDATION_RULES)
