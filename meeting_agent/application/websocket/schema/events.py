from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    """WebSocket event types"""
    MARKDOWN = "markdown"
    COMPONENT = "component"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"


class ComponentType(str, Enum):
    """UI component types"""
    PROGRESS = "progress"
    UI_DIRECTIVE = "ui_directive"
    FORM_SUBMIT = "form_submit"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class MarkdownEvent(BaseEvent):
    """Markdown content event for assistant replies"""
    type: Literal[EventType.MARKDOWN] = EventType.MARKDOWN
    payload: str


class ProgressData(BaseModel):
    """Workflow progress component data"""
    status: str
    current_step: Optional[str] = None
    step_index: Optional[int] = None
    total_steps: Optional[int] = None
    progress: Optional[int] = Field(None, description="Completion percentage")


class DirectiveData(BaseModel):
    """UI directive emitted by a workflow step"""
    directive: str
    data: Dict[str, Any] = Field(default_factory=dict)
    step: str


class ComponentPayload(BaseModel):
    """Component event payload"""
    component: ComponentType
    data: Union[ProgressData, DirectiveData, Dict[str, Any]]


class ComponentEvent(BaseEvent):
    """Component event for UI interactions"""
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected", "reconnecting"]


class UserMessage(BaseEvent):
    """User message event"""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str
    metadata: Optional[Dict[str, Any]] = None


class FormSubmitData(BaseModel):
    """Values submitted from a rendered UI directive"""
    form_id: Literal["meeting_type", "meeting_time", "meeting_details", "agenda", "approve_agenda", "advance"]
    values: Dict[str, Any] = Field(default_factory=dict)


class FormSubmitEvent(BaseEvent):
    """Form submission event from UI"""
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload

    @classmethod
    def create(cls, form_id: str, values: Dict[str, Any], session_id: Optional[str] = None):
        """Create a form submit event"""
        return cls(
            payload=ComponentPayload(
                component=ComponentType.FORM_SUBMIT,
                data={"form_id": form_id, "values": values}
            ),
            session_id=session_id
        )
