from typing import Dict, Any, List, Optional, Union
from pydantic import BaseModel, Field
from datetime import datetime

from meeting_agent.domain.models.workflow_state import (
    MeetingType, UIBlock, WorkflowResponse, WorkflowState, WorkflowStep
)


class CreateSessionRequest(BaseModel):
    """User the new workflow session acts for"""
    user_id: str
    email: str
    name: Optional[str] = None
    session_id: Optional[str] = Field(None, description="Client supplied id, generated when omitted")


class SessionResponse(BaseModel):
    session_id: str
    websocket_url: str
    current_step: WorkflowStep
    created_at: datetime


class MessageRequest(BaseModel):
    content: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None


class AdvanceRequest(BaseModel):
    step: WorkflowStep
    data: Optional[Dict[str, Any]] = None


class TransitionRequest(BaseModel):
    from_step: WorkflowStep
    to_step: WorkflowStep
    data: Optional[Dict[str, Any]] = None


class MeetingTypeRequest(BaseModel):
    type: MeetingType
    location: Optional[str] = None
    reselect: bool = False


class MeetingTimeRequest(BaseModel):
    start_time: datetime
    end_time: Optional[datetime] = Field(None, description="Defaults to one hour after start_time")


class AgendaRequest(BaseModel):
    agenda: Union[str, Dict[str, Any]]


class WorkflowResponseModel(BaseModel):
    """Workflow response plus where the session ended up"""
    message: str
    next_step: WorkflowStep
    requires_user_input: bool
    ui_block: Optional[UIBlock] = None
    validation_errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    current_step: WorkflowStep
    progress: int

    @classmethod
    def build(cls, response: WorkflowResponse, state: WorkflowState) -> "WorkflowResponseModel":
        return cls(
            **response.model_dump(),
            current_step=state.current_step,
            progress=state.progress
        )


class StepValidationResponse(BaseModel):
    is_valid: bool
    can_advance: bool
    errors: List[str]
    warnings: List[str]
    suggested_step: Optional[WorkflowStep] = None
