from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Dict, Any, List
import asyncio
import structlog
from pydantic import ValidationError

from .connection_manager import ConnectionManager
from .schema.events import (
    BaseEvent, ComponentEvent, ComponentPayload, ComponentType, DirectiveData,
    EventType, FormSubmitData, MarkdownEvent, ProgressData, UserMessage
)
from meeting_agent.application.session_manager import SessionNotFoundError, WorkflowSessionManager
from meeting_agent.domain.models.errors import WorkflowError, classify_error
from meeting_agent.domain.models.workflow_state import (
    STEP_ORDER, WorkflowResponse, WorkflowState, WorkflowStep, step_index
)
from meeting_agent.domain.orchestration.orchestrator import MeetingWorkflowOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()


def response_events(session_id: str, response: WorkflowResponse, state: WorkflowState) -> List[BaseEvent]:
    """Translate a workflow response into the events sent to the client"""

    events: List[BaseEvent] = [MarkdownEvent(payload=response.message, session_id=session_id)]

    if response.ui_block is not None:
        events.append(ComponentEvent(
            session_id=session_id,
            payload=ComponentPayload(
                component=ComponentType.UI_DIRECTIVE,
                data=DirectiveData(
                    directive=response.ui_block.type.value,
                    data=response.ui_block.data,
                    step=state.current_step.value
                )
            )
        ))

    if response.validation_errors or response.warnings:
        events.append(ComponentEvent(
            session_id=session_id,
            payload=ComponentPayload(
                component=ComponentType.UI_DIRECTIVE,
                data=DirectiveData(
                    directive="validation_feedback",
                    data={"errors": response.validation_errors, "warnings": response.warnings},
                    step=state.current_step.value
                )
            )
        ))

    events.append(ComponentEvent(
        session_id=session_id,
        payload=ComponentPayload(
            component=ComponentType.PROGRESS,
            data=ProgressData(
                status="_workflow_finish" if state.is_complete else "awaiting_input",
                current_step=state.current_step.value,
                step_index=step_index(state.current_step),
                total_steps=len(STEP_ORDER),
                progress=state.progress
            )
        )
    ))
    return events


async def _send_response(connection_manager: ConnectionManager, orchestrator: MeetingWorkflowOrchestrator,
                         response: WorkflowResponse):
    state = orchestrator.get_workflow_state()
    for event in response_events(orchestrator.session_id, response, state):
        await connection_manager.send_event(orchestrator.session_id, event)


async def process_user_message(
    session_manager: WorkflowSessionManager,
    connection_manager: ConnectionManager,
    orchestrator: MeetingWorkflowOrchestrator,
    message: UserMessage
):
    """Run a user message through the workflow and stream the result back"""

    session_id = orchestrator.session_id
    await connection_manager.send_event(
        session_id,
        ComponentEvent(
            payload=ComponentPayload(
                component=ComponentType.PROGRESS,
                data=ProgressData(status="Processing your request...")
            )
        )
    )

    async with session_manager.lock(session_id):
        response = await orchestrator.process_message(message.content)

    await _send_response(connection_manager, orchestrator, response)


async def dispatch_form(orchestrator: MeetingWorkflowOrchestrator, form: FormSubmitData) -> WorkflowResponse:
    """Map a submitted UI directive to the matching workflow operation"""

    values = form.values
    if form.form_id == "meeting_type":
        return await orchestrator.set_meeting_type(
            values["type"],
            location=values.get("location"),
            reselect=bool(values.get("reselect", False))
        )
    if form.form_id == "meeting_time":
        return await orchestrator.set_meeting_time(values["start_time"], values.get("end_time"))
    if form.form_id == "meeting_details":
        return await orchestrator.advance_to_step(WorkflowStep.VALIDATION, data=values)
    if form.form_id == "agenda":
        return await orchestrator.update_agenda(values["agenda"])
    if form.form_id == "approve_agenda":
        return await orchestrator.approve_agenda()
    return await orchestrator.advance_to_step(WorkflowStep(values["step"]), data=values.get("data"))


async def handle_component_interaction(
    session_manager: WorkflowSessionManager,
    connection_manager: ConnectionManager,
    orchestrator: MeetingWorkflowOrchestrator,
    data: Dict[str, Any]
):
    """Handle UI component interactions"""

    payload = data.get("payload", {})
    if payload.get("component") != ComponentType.FORM_SUBMIT:
        logger.warning("Unsupported component interaction", session_id=orchestrator.session_id,
                       component=payload.get("component"))
        return

    form = FormSubmitData.model_validate(payload.get("data", {}))
    logger.info("Form submitted", session_id=orchestrator.session_id, form_id=form.form_id)

    async with session_manager.lock(orchestrator.session_id):
        response = await dispatch_form(orchestrator, form)

    await _send_response(connection_manager, orchestrator, response)


@router.websocket("/ws/workflow/{session_id}")
async def workflow_websocket(websocket: WebSocket, session_id: str):
    """Main WebSocket endpoint for workflow interaction"""

    session_manager: WorkflowSessionManager = websocket.app.state.session_manager
    connection_manager: ConnectionManager = websocket.app.state.connection_manager

    try:
        orchestrator = await session_manager.get_session(session_id)
    except SessionNotFoundError:
        await websocket.close(code=1008, reason="Unknown session")
        return

    await connection_manager.connect(websocket, session_id, orchestrator.user.id)

    try:
        state = orchestrator.get_workflow_state()
        await connection_manager.send_event(
            session_id,
            ComponentEvent(
                payload=ComponentPayload(
                    component=ComponentType.PROGRESS,
                    data=ProgressData(
                        status="Workflow ready",
                        current_step=state.current_step.value,
                        step_index=step_index(state.current_step),
                        total_steps=len(STEP_ORDER),
                        progress=state.progress
                    )
                )
            )
        )

        # Main message loop
        while True:
            data = await websocket.receive_json()

            try:
                event_type = data.get("type")

                if event_type == EventType.USER_MESSAGE:
                    await process_user_message(
                        session_manager, connection_manager, orchestrator, UserMessage(**data)
                    )
                elif event_type == EventType.COMPONENT:
                    await handle_component_interaction(session_manager, connection_manager, orchestrator, data)
                else:
                    await connection_manager.send_error(
                        session_id, f"Unsupported event type: {event_type}", error_code="unsupported_event"
                    )

            except (ValidationError, WorkflowError, KeyError, ValueError) as e:
                logger.warning("Rejected client event", session_id=session_id, error=str(e))
                await connection_manager.send_error(
                    session_id,
                    f"Error processing message: {e}",
                    error_code=classify_error(e).value,
                    details=e.to_dict() if isinstance(e, WorkflowError) else None
                )

    except WebSocketDisconnect:
        logger.info("Client disconnected", session_id=session_id)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error("WebSocket error", error=str(e), session_id=session_id)
    finally:
        await connection_manager.disconnect(session_id)
