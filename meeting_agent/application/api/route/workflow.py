from typing import Annotated, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from meeting_agent.application.api.schemas import (
    AdvanceRequest, AgendaRequest, CreateSessionRequest, MeetingTimeRequest, MeetingTypeRequest,
    MessageRequest, SessionResponse, StepValidationResponse, TransitionRequest, WorkflowResponseModel
)
from meeting_agent.application.session_manager import SessionNotFoundError, WorkflowSessionManager
from meeting_agent.domain.models.calendar import User
from meeting_agent.domain.models.conversation import ConversationMessage, MessageRole
from meeting_agent.domain.orchestration.orchestrator import MeetingWorkflowOrchestrator

router = APIRouter(prefix="/api/v1/workflow", tags=["workflow"])


def get_session_manager(request: Request) -> WorkflowSessionManager:
    return request.app.state.session_manager


SessionManagerDep = Annotated[WorkflowSessionManager, Depends(get_session_manager)]


async def get_orchestrator(session_id: str, session_manager: SessionManagerDep) -> MeetingWorkflowOrchestrator:
    """Resolve the session, raising SessionNotFoundError (404) when it does not exist"""
    return await session_manager.get_session(session_id)


OrchestratorDep = Annotated[MeetingWorkflowOrchestrator, Depends(get_orchestrator)]


def _result(orchestrator: MeetingWorkflowOrchestrator, response) -> WorkflowResponseModel:
    return WorkflowResponseModel.build(response, orchestrator.get_workflow_state())


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(request: CreateSessionRequest, session_manager: SessionManagerDep):
    user = User(id=request.user_id, email=request.email, name=request.name)
    try:
        orchestrator = await session_manager.create_session(user, session_id=request.session_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    state = orchestrator.get_workflow_state()
    return SessionResponse(
        session_id=orchestrator.session_id,
        websocket_url=f"/ws/workflow/{orchestrator.session_id}",
        current_step=state.current_step,
        created_at=state.created_at
    )


@router.post("/sessions/{session_id}/messages", response_model=WorkflowResponseModel)
async def post_message(
    session_id: str,
    request: MessageRequest,
    orchestrator: OrchestratorDep,
    session_manager: SessionManagerDep
):
    message = ConversationMessage(role=MessageRole.USER, content=request.content, metadata=request.metadata)
    async with session_manager.lock(session_id):
        response = await orchestrator.process_message(message)
    return _result(orchestrator, response)


@router.post("/sessions/{session_id}/advance", response_model=WorkflowResponseModel)
async def advance(session_id: str, request: AdvanceRequest, orchestrator: OrchestratorDep,
                  session_manager: SessionManagerDep):
    async with session_manager.lock(session_id):
        response = await orchestrator.advance_to_step(request.step, data=request.data)
    return _result(orchestrator, response)


@router.post("/sessions/{session_id}/transition", response_model=WorkflowResponseModel)
async def transition(session_id: str, request: TransitionRequest, orchestrator: OrchestratorDep,
                     session_manager: SessionManagerDep):
    async with session_manager.lock(session_id):
        response = await orchestrator.process_step_transition(request.from_step, request.to_step, data=request.data)
    return _result(orchestrator, response)


@router.put("/sessions/{session_id}/meeting-type", response_model=WorkflowResponseModel)
async def set_meeting_type(session_id: str, request: MeetingTypeRequest, orchestrator: OrchestratorDep,
                           session_manager: SessionManagerDep):
    async with session_manager.lock(session_id):
        response = await orchestrator.set_meeting_type(request.type, location=request.location,
                                                       reselect=request.reselect)
    return _result(orchestrator, response)


@router.put("/sessions/{session_id}/meeting-time", response_model=WorkflowResponseModel)
async def set_meeting_time(session_id: str, request: MeetingTimeRequest, orchestrator: OrchestratorDep,
                           session_manager: SessionManagerDep):
    async with session_manager.lock(session_id):
        response = await orchestrator.set_meeting_time(request.start_time, request.end_time)
    return _result(orchestrator, response)


@router.put("/sessions/{session_id}/agenda", response_model=WorkflowResponseModel)
async def update_agenda(session_id: str, request: AgendaRequest, orchestrator: OrchestratorDep,
                        session_manager: SessionManagerDep):
    async with session_manager.lock(session_id):
        response = await orchestrator.update_agenda(request.agenda)
    return _result(orchestrator, response)


@router.post("/sessions/{session_id}/agenda/approve", response_model=WorkflowResponseModel)
async def approve_agenda(session_id: str, orchestrator: OrchestratorDep, session_manager: SessionManagerDep):
    async with session_manager.lock(session_id):
        response = await orchestrator.approve_agenda()
    return _result(orchestrator, response)


@router.get("/sessions/{session_id}/state")
async def get_state(orchestrator: OrchestratorDep) -> Dict[str, Any]:
    state = orchestrator.get_workflow_state()
    return {
        **state.model_dump(mode="json"),
        "progress": state.progress,
        "summary": state.get_state_summary(),
        "conversation_mode": orchestrator.context.current_mode.value
    }


@router.get("/sessions/{session_id}/validation", response_model=StepValidationResponse)
async def validate_current_step(orchestrator: OrchestratorDep):
    return StepValidationResponse(**orchestrator.validate_current_step().model_dump())


@router.get("/sessions/{session_id}/context")
async def get_compressed_context(session_id: str, orchestrator: OrchestratorDep,
                                 session_manager: SessionManagerDep) -> Dict[str, Any]:
    async with session_manager.lock(session_id):
        compressed = orchestrator.context.get_compressed_context()
    return {
        **compressed.model_dump(),
        "stats": orchestrator.context.get_stats()
    }


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, session_manager: SessionManagerDep):
    if not await session_manager.delete_session(session_id):
        raise SessionNotFoundError(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/cache/stats")
async def cache_stats(session_manager: SessionManagerDep) -> Dict[str, Any]:
    return session_manager.get_cache_stats()
