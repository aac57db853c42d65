from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class User(BaseModel):
    """Authenticated user the workflow acts on behalf of"""
    id: str = Field(description="User identifier")
    email: str = Field(description="Primary email address")
    name: Optional[str] = None
    access_token: Optional[str] = Field(None, description="Calendar provider access token")
    refresh_token: Optional[str] = Field(None, description="Calendar provider refresh token")


class CalendarAccessStatus(BaseModel):
    """Result of a calendar access verification"""
    has_access: bool = False
    needs_refresh: bool = False
    token_valid: bool = False
    scopes: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class TokenRefreshResult(BaseModel):
    """Result of refreshing a calendar access token"""
    success: bool
    new_token: Optional[str] = None


class CalendarEvent(BaseModel):
    """Existing calendar event that overlaps a requested slot"""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    attendees: List[str] = Field(default_factory=list)


class ConflictCheckResult(BaseModel):
    """Conflicts found for a requested time range"""
    has_conflicts: bool
    conflicting_events: List[CalendarEvent] = Field(default_factory=list)
    total_conflicts: int = 0


class TimeSlot(BaseModel):
    """Candidate meeting slot"""
    start_time: datetime
    end_time: datetime
    is_available: bool = True
    conflicts: List[CalendarEvent] = Field(default_factory=list)


class AvailabilityResult(BaseModel):
    """Availability snapshot stored on the workflow state"""
    is_available: bool
    conflicts: List[CalendarEvent] = Field(default_factory=list)
    suggested_alternatives: Optional[List[TimeSlot]] = None
    checked_at: datetime = Field(default_factory=datetime.utcnow)


class PersonInfo(BaseModel):
    """Directory entry for an email address"""
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_picture: Optional[str] = None
    is_google_user: bool = False


class EmailValidationResult(BaseModel):
    """Format and existence check for one attendee email"""
    email: str
    is_valid: bool
    exists: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_picture: Optional[str] = None
    is_google_user: bool = False
    error: Optional[str] = Field(None, description="Set when the directory lookup failed")


class CreatedEvent(BaseModel):
    """Calendar event returned by the event creator"""
    id: str
    html_link: str
    status: str = "confirmed"
    meeting_link: Optional[str] = None


class EventData(BaseModel):
    """Payload handed to the event creator"""
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    attendees: List[Dict[str, Any]] = Field(default_factory=list)
    location: Optional[str] = None
    user_id: str
