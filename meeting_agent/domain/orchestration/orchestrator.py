from typing import TypedDict, Dict, Any, List, Literal, Optional, Set, Union
from datetime import datetime, timedelta
import asyncio
import time

from langgraph.graph import StateGraph, END
from pydantic import ValidationError
import structlog

from meeting_agent.config import Settings
from meeting_agent.domain.collaborators.interfaces import WorkflowCollaborators
from meeting_agent.domain.context.classifier import MeetingTypeClassifier
from meeting_agent.domain.context.context_engine import ConversationContextEngine
from meeting_agent.domain.models.agenda import AgendaContent, coerce_agenda
from meeting_agent.domain.models.calendar import User
from meeting_agent.domain.models.conversation import ConversationContext, ConversationMessage, MessageRole
from meeting_agent.domain.models.errors import classify_error
from meeting_agent.domain.models.workflow_state import (
    MeetingData, MeetingStatus, MeetingType, STEP_ORDER, StepValidation,
    ValidationResult, WorkflowResponse, WorkflowState, WorkflowStep
)
from meeting_agent.domain.orchestration.recovery import build_recovery_response
from meeting_agent.domain.orchestration.step_handlers import CollaboratorCaller, WorkflowStepHandlers
from meeting_agent.domain.rules.transition_validator import TransitionValidator
from meeting_agent.infrastructure.observability.logging import MetricsCollector, WorkflowLogger
from meeting_agent.infrastructure.persistence.background_persister import BackgroundPersister

logger = structlog.get_logger(__name__)

TYPE_LOCKED_WARNING = "Meeting type is locked; re-select the type explicitly to change it"


class PipelineState(TypedDict):
    """State carried through the message pipeline graph"""
    message: Optional[ConversationMessage]
    response: Optional[WorkflowResponse]
    warnings: List[str]
    executed_step: Optional[WorkflowStep]
    hops: int
    trace: List[str]


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def _parse_datetime(value: Union[datetime, str]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class MeetingWorkflowOrchestrator:
    """Drives one session through the meeting creation workflow.

    The orchestrator is the only writer of `current_step`. Every move goes
    through the transition validator, whether it comes from a handler hint,
    an explicit advance or a recovery. Messages run through a small LangGraph
    pipeline: record -> sync -> execute step -> (advance -> execute)* -> persist.
    """

    def __init__(
        self,
        session_id: str,
        user: User,
        collaborators: WorkflowCollaborators,
        context_engine: Optional[ConversationContextEngine] = None,
        transition_validator: Optional[TransitionValidator] = None,
        persister: Optional[BackgroundPersister] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
        type_classifier: Optional[MeetingTypeClassifier] = None,
        state: Optional[WorkflowState] = None
    ):
        self.session_id = session_id
        self.user = user
        self.settings = settings or Settings()
        self.collaborators = collaborators
        self.context = context_engine or ConversationContextEngine(
            session_id,
            user_id=user.id,
            max_context_tokens=self.settings.MAX_CONTEXT_TOKENS,
            compression_threshold=self.settings.COMPRESSION_THRESHOLD
        )
        self.validator = transition_validator or TransitionValidator()
        self.persister = persister
        self.metrics = metrics or MetricsCollector()
        self.workflow_logger = WorkflowLogger("meeting_agent.workflow")
        self.state = state or WorkflowState(session_id=session_id, user_id=user.id)

        self._background_tasks: Set[asyncio.Task] = set()
        self.post_meeting_results: Dict[str, Dict[str, Any]] = {}

        self.handlers = WorkflowStepHandlers(
            user=user,
            context_engine=self.context,
            transition_validator=self.validator,
            collaborators=collaborators,
            call=CollaboratorCaller(session_id, self.workflow_logger, self.metrics),
            settings=self.settings,
            type_classifier=type_classifier,
            on_meeting_created=self._schedule_post_meeting
        )
        self.pipeline = self._create_pipeline()

    def _create_pipeline(self):
        """Create the message processing graph"""

        pipeline = StateGraph(PipelineState)

        pipeline.add_node("record_message", self.record_message_node)
        pipeline.add_node("sync_state", self.sync_state_node)
        pipeline.add_node("execute_step", self.execute_step_node)
        pipeline.add_node("apply_transition", self.apply_transition_node)
        pipeline.add_node("persist", self.persist_node)

        pipeline.set_entry_point("record_message")
        pipeline.add_edge("record_message", "sync_state")
        pipeline.add_edge("sync_state", "execute_step")

        pipeline.add_conditional_edges(
            "execute_step",
            self.route_after_step,
            {
                "advance": "apply_transition",
                "done": "persist"
            }
        )
        pipeline.add_conditional_edges(
            "apply_transition",
            self.route_after_transition,
            {
                "continue": "execute_step",
                "done": "persist"
            }
        )
        pipeline.add_edge("persist", END)

        return pipeline.compile()

    async def record_message_node(self, state: PipelineState) -> Dict[str, Any]:
        """Append the inbound message to the conversation context"""

        message = state.get("message")
        if message is not None:
            mode = self.context.add_message(message)
            self.workflow_logger.log_context_update(
                self.session_id,
                "conversation",
                "message_added",
                {"role": message.role.value, "mode": mode.value}
            )
        return {"trace": state["trace"] + ["record_message"]}

    async def sync_state_node(self, state: PipelineState) -> Dict[str, Any]:
        """Pull meeting data changes made through the context into the workflow state"""

        snapshot = self.context.get_meeting_data()
        warnings: List[str] = []
        if snapshot:
            warnings = self._merge_meeting_data(self.state, snapshot)

        message = state.get("message")
        if message is not None:
            added = self.handlers.collect_attendees(self.state, message)
            if added:
                self.workflow_logger.log_context_update(
                    self.session_id, "meeting_data", "attendees_added", {"emails": added}
                )
        return {
            "warnings": state["warnings"] + warnings,
            "trace": state["trace"] + ["sync_state"]
        }

    async def execute_step_node(self, state: PipelineState) -> Dict[str, Any]:
        """Run the handler for the current step"""

        # Only the first handler of a request sees the user's message
        message = state.get("message") if state["hops"] == 0 else None
        response = await self._execute_current_step(message)
        return {
            "response": response,
            "executed_step": self.state.current_step,
            "warnings": state["warnings"] + response.warnings,
            "trace": state["trace"] + [f"execute:{self.state.current_step.value}"]
        }

    async def apply_transition_node(self, state: PipelineState) -> Dict[str, Any]:
        """Validate and apply the handler's next step hint"""

        response = state["response"]
        target = response.next_step
        result = self._transition(target, trigger="handler")
        if not result.is_valid:
            for error in result.errors:
                self.state.log_error(error)
            response.validation_errors = _dedupe(response.validation_errors + result.errors)
            response.requires_user_input = True
            response.next_step = self._redirect(result.suggested_step)

        return {
            "response": response,
            "hops": state["hops"] + 1,
            "warnings": state["warnings"] + result.warnings,
            "trace": state["trace"] + [f"transition:{target.value}:{'ok' if result.is_valid else 'rejected'}"]
        }

    async def persist_node(self, state: PipelineState) -> Dict[str, Any]:
        self._persist()
        return {"trace": state["trace"] + ["persist"]}

    def route_after_step(self, state: PipelineState) -> Literal["advance", "done"]:
        response = state["response"]
        if response.next_step != self.state.current_step:
            return "advance"
        return "done"

    def route_after_transition(self, state: PipelineState) -> Literal["continue", "done"]:
        response = state["response"]
        if response.requires_user_input:
            return "done"
        if response.next_step != self.state.current_step:
            return "done"
        if self.state.current_step == WorkflowStep.COMPLETED:
            return "done"
        if state["hops"] >= len(STEP_ORDER):
            logger.warning("Automatic transition limit reached", session_id=self.session_id, hops=state["hops"])
            return "done"
        return "continue"

    async def _execute_current_step(self, message: Optional[ConversationMessage] = None) -> WorkflowResponse:
        step = self.state.current_step
        started = time.perf_counter()

        response = await self.handlers.execute(step, self.state, message)
        self.state.touch()

        duration_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_latency(f"step.{step.value}", duration_ms)
        self.workflow_logger.log_step_execution(
            self.session_id,
            step.value,
            response.next_step.value,
            duration_ms=duration_ms,
            requires_user_input=response.requires_user_input,
            errors=len(response.validation_errors)
        )
        return response

    def _transition(self, to_step: WorkflowStep, trigger: str) -> ValidationResult:
        """Move to to_step when the validator accepts the edge"""

        from_step = self.state.current_step
        result = self.validator.validate_transition(to_step, self.state)
        if result.is_valid:
            self.state.current_step = to_step
            self.state.touch()
            self.metrics.increment_counter("workflow.transitions", tags={"trigger": trigger})
            self.workflow_logger.log_workflow_transition(
                self.session_id,
                from_step.value,
                to_step.value,
                trigger=trigger,
                state_summary=self.state.get_state_summary()
            )
        else:
            self.metrics.increment_counter("workflow.transitions_rejected", tags={"trigger": trigger})
            logger.info(
                "Transition rejected",
                session_id=self.session_id,
                from_step=from_step.value,
                to_step=to_step.value,
                errors=result.errors
            )
        return result

    def _redirect(self, suggested: Optional[WorkflowStep]) -> WorkflowStep:
        """Enter the step a refused transition points at, when that edge is allowed"""

        if suggested is not None and suggested != self.state.current_step:
            self._transition(suggested, trigger="redirect")
        return self.state.current_step

    def _merge_meeting_data(self, state: WorkflowState, data: Dict[str, Any]) -> List[str]:
        """Apply partial meeting fields to a state, resetting flags the change invalidates"""

        warnings: List[str] = []
        current = state.meeting_data
        changes = {key: value for key, value in data.items() if key in MeetingData.model_fields}

        requested_type = changes.get("type")
        if requested_type is not None and state.type_locked and current.type is not None:
            if MeetingType(requested_type) != current.type:
                warnings.append(TYPE_LOCKED_WARNING)
            changes.pop("type")

        if not changes:
            return warnings

        merged = MeetingData.model_validate({**current.model_dump(), **changes})

        if merged.start_time != current.start_time or merged.end_time != current.end_time:
            state.time_collection_complete = False
            state.availability_result = None
        if merged.attendees != current.attendees:
            state.attendee_collection_complete = False

        state.meeting_data = merged
        state.touch()
        return warnings

    def _drain_background_failures(self):
        if self.persister is None:
            return
        for failure in self.persister.drain_failures(self.session_id):
            self.state.log_error(failure)

    def _write_back_meeting_data(self):
        self.context.update_meeting_data(self.state.meeting_data.model_dump(exclude_none=True))

    def _persist(self):
        """Write the meeting snapshot back to the context and queue a save"""

        self._write_back_meeting_data()
        if self.persister is not None:
            self.persister.submit(self.session_id, self.snapshot())

    def snapshot(self) -> Dict[str, Any]:
        """Persistable view of the session"""

        context = self.context.get_context_data()
        return {
            "id": self.session_id,
            "user_id": self.user.id,
            "user": self.user.model_dump(exclude={"access_token", "refresh_token"}),
            "current_mode": context.current_mode.value,
            "meeting_data": self.state.meeting_data.model_dump(mode="json"),
            "compression_level": context.compression_level,
            "created_at": self.state.created_at.isoformat(),
            "updated_at": self.state.updated_at.isoformat(),
            "workflow": self.state.model_dump(mode="json"),
            "context": context.model_dump(mode="json")
        }

    def restore(self, payload: Dict[str, Any]):
        """Rebuild workflow state and conversation context from a snapshot"""

        self.state = WorkflowState.model_validate(payload["workflow"])
        if payload.get("context"):
            self.context.restore(ConversationContext.model_validate(payload["context"]))
        logger.info("Workflow restored", session_id=self.session_id, current_step=self.state.current_step.value)

    def _recover(self, error: Exception, operation: str) -> WorkflowResponse:
        """Build a recovery response for a failure and route the workflow accordingly"""

        failed_step = self.state.current_step
        kind = classify_error(error)
        suggested = self.validator.suggest_step_for_meeting(self.state)
        response = build_recovery_response(error, failed_step, suggested_step=suggested)

        detail = str(error) or type(error).__name__
        self.state.log_error(f"{operation} failed at {failed_step.value}: {detail}")
        self.metrics.increment_counter("workflow.recoveries", tags={"error_kind": kind.value})
        self.workflow_logger.log_recovery(
            self.session_id,
            failed_step.value,
            kind.value,
            response.next_step.value,
            error=detail
        )

        if response.next_step != failed_step:
            result = self._transition(response.next_step, trigger="recovery")
            if not result.is_valid:
                for transition_error in result.errors:
                    self.state.log_error(transition_error)
                response.next_step = self.state.current_step
        return response

    async def process_message(self, message: Union[ConversationMessage, str]) -> WorkflowResponse:
        """Handle one inbound message; failures become recovery responses"""

        if isinstance(message, str):
            message = ConversationMessage(role=MessageRole.USER, content=message)

        self._drain_background_failures()
        initial_state: PipelineState = {
            "message": message,
            "response": None,
            "warnings": [],
            "executed_step": None,
            "hops": 0,
            "trace": []
        }
        return await self._run_pipeline(initial_state, "process_message")

    async def _run_pipeline(self, initial_state: PipelineState, operation: str) -> WorkflowResponse:
        try:
            result = await self.pipeline.ainvoke(initial_state, config={"recursion_limit": 4 * len(STEP_ORDER) + 8})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            response = self._recover(e, operation)
            self._persist()
            return response

        response = result["response"]
        response.warnings = _dedupe(result["warnings"])
        return response

    async def _continue_workflow(self, operation: str, warnings: Optional[List[str]] = None) -> WorkflowResponse:
        """Run the current step and any automatic transitions without a new message"""

        # Changes made by the caller must win over the older context snapshot
        self._write_back_meeting_data()
        initial_state: PipelineState = {
            "message": None,
            "response": None,
            "warnings": list(warnings or []),
            "executed_step": None,
            "hops": 0,
            "trace": []
        }
        return await self._run_pipeline(initial_state, operation)

    async def _execute_without_chaining(self, operation: str) -> WorkflowResponse:
        try:
            response = await self._execute_current_step()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            response = self._recover(e, operation)
        self._persist()
        return response

    def _refusal(self, message: str, errors: List[str], next_step: Optional[WorkflowStep] = None,
                 warnings: Optional[List[str]] = None) -> WorkflowResponse:
        return WorkflowResponse(
            message=message,
            next_step=next_step or self.state.current_step,
            validation_errors=_dedupe(errors),
            warnings=warnings or []
        )

    def _candidate_with(self, data: Optional[Dict[str, Any]]):
        """Copy of the state with data merged, for checks that must not mutate on failure"""

        candidate = self.state.model_copy(deep=True)
        warnings = self._merge_meeting_data(candidate, data) if data else []
        return candidate, warnings

    async def advance_to_step(self, step: WorkflowStep, data: Optional[Dict[str, Any]] = None) -> WorkflowResponse:
        """Leave the current step for `step` when both the current step and the edge allow it"""

        step = WorkflowStep(step)
        self._drain_background_failures()
        current = self.state.current_step

        try:
            candidate, warnings = self._candidate_with(data)
        except ValidationError as e:
            return self._refusal(f"Cannot advance to {step.value}: invalid meeting data", [str(e)])

        current_check = self.validator.validate_current_step(candidate)
        edge_check = self.validator.validate_transition(step, candidate)

        if not current_check.is_valid:
            errors = current_check.errors + edge_check.errors
            suggested = current_check.suggested_step or edge_check.suggested_step
            message = f"Cannot advance from {current.value}: {'; '.join(current_check.errors)}"
            if suggested:
                message += f" Please complete {suggested.value} first."
            return self._refusal(message, errors, next_step=suggested, warnings=current_check.warnings)

        if not edge_check.is_valid:
            return self._refusal(
                f"Cannot advance to {step.value}: {'; '.join(edge_check.errors)}",
                edge_check.errors,
                next_step=edge_check.suggested_step,
                warnings=edge_check.warnings
            )

        self.state = candidate
        self._transition(step, trigger="advance")
        self._persist()

        response = await self._execute_without_chaining("advance_to_step")
        response.warnings = _dedupe(warnings + current_check.warnings + edge_check.warnings + response.warnings)
        return response

    async def process_step_transition(
        self,
        from_step: WorkflowStep,
        to_step: WorkflowStep,
        data: Optional[Dict[str, Any]] = None
    ) -> WorkflowResponse:
        """Explicit edge request from a client that names the step it believes is current"""

        from_step = WorkflowStep(from_step)
        to_step = WorkflowStep(to_step)
        self._drain_background_failures()
        current = self.state.current_step

        if from_step != current:
            return self._refusal(
                f"Invalid transition: workflow is at {current.value}, not {from_step.value}",
                [f"Current step is {current.value}"]
            )

        try:
            candidate, warnings = self._candidate_with(data)
        except ValidationError as e:
            return self._refusal(f"Invalid transition from {from_step.value} to {to_step.value}: invalid meeting data",
                                 [str(e)])

        result = self.validator.validate_transition(to_step, candidate)
        if not result.is_valid:
            return self._refusal(
                f"Invalid transition from {from_step.value} to {to_step.value}: {'; '.join(result.errors)}",
                result.errors,
                next_step=result.suggested_step,
                warnings=result.warnings
            )

        self.state = candidate
        self._transition(to_step, trigger="explicit")
        self._persist()

        response = await self._execute_without_chaining("process_step_transition")
        response.warnings = _dedupe(warnings + result.warnings + response.warnings)
        return response

    async def set_meeting_type(
        self,
        meeting_type: MeetingType,
        location: Optional[str] = None,
        reselect: bool = False
    ) -> WorkflowResponse:
        """Explicit type selection; a locked type only changes on re-selection"""

        meeting_type = MeetingType(meeting_type)
        self._drain_background_failures()
        meeting = self.state.meeting_data

        if self.state.type_locked and meeting.type is not None and meeting.type != meeting_type and not reselect:
            return self._refusal(
                f"The meeting type is already set to {meeting.type.value}. Re-select it explicitly to change it.",
                [TYPE_LOCKED_WARNING]
            )

        changed = meeting.type != meeting_type
        meeting.type = meeting_type
        if location:
            meeting.location = location
        if changed and reselect:
            self.state.attendee_collection_complete = False
            logger.info("Meeting type re-selected", session_id=self.session_id, meeting_type=meeting_type.value)

        type_check = self.validator.rules.validate_meeting_type(meeting_type, meeting)
        self.state.type_locked = True
        self.state.touch()

        if self.state.current_step != WorkflowStep.TIME_DATE_COLLECTION:
            result = self._transition(WorkflowStep.TIME_DATE_COLLECTION, trigger="set_meeting_type")
            if not result.is_valid:
                self._persist()
                return self._refusal(
                    f"Cannot continue to {WorkflowStep.TIME_DATE_COLLECTION.value}: {'; '.join(result.errors)}",
                    result.errors,
                    next_step=result.suggested_step,
                    warnings=type_check.errors
                )

        return await self._continue_workflow("set_meeting_type", warnings=type_check.errors)

    async def set_meeting_time(
        self,
        start_time: Union[datetime, str],
        end_time: Union[datetime, str, None] = None
    ) -> WorkflowResponse:
        """Set the meeting time, end defaulting to one hour after the start"""

        self._drain_background_failures()
        start = _parse_datetime(start_time)
        end = _parse_datetime(end_time) if end_time is not None else start + timedelta(hours=1)

        meeting = self.state.meeting_data
        meeting.start_time = start
        meeting.end_time = end
        self.state.time_collection_complete = False
        self.state.availability_result = None
        self.state.touch()

        if self.state.current_step != WorkflowStep.TIME_DATE_COLLECTION:
            result = self._transition(WorkflowStep.TIME_DATE_COLLECTION, trigger="set_meeting_time")
            if not result.is_valid:
                self._persist()
                return self._refusal(
                    f"Cannot set the meeting time yet: {'; '.join(result.errors)}",
                    result.errors,
                    next_step=result.suggested_step
                )

        return await self._continue_workflow("set_meeting_time")

    async def update_agenda(self, agenda: Union[AgendaContent, Dict[str, Any], str]) -> WorkflowResponse:
        """Replace the agenda; raises AgendaParseError when it cannot be parsed"""

        self._drain_background_failures()
        meeting = self.state.meeting_data
        content = coerce_agenda(agenda, default_duration=meeting.duration_minutes or 60, title=meeting.title)

        meeting.agenda = content
        if meeting.status != MeetingStatus.CREATED:
            meeting.status = MeetingStatus.DRAFT
        self.state.touch()
        self.workflow_logger.log_context_update(
            self.session_id, "agenda", "updated", {"topics": len(content.topics), "duration": content.duration}
        )

        if self.state.current_step in (WorkflowStep.AGENDA_GENERATION, WorkflowStep.APPROVAL):
            result = self._transition(WorkflowStep.AGENDA_APPROVAL, trigger="update_agenda")
            if not result.is_valid:
                self._persist()
                return self._refusal("Agenda saved, but it can't be reviewed yet.", result.errors)

        if self.state.current_step == WorkflowStep.AGENDA_APPROVAL:
            return await self._continue_workflow("update_agenda")

        self._persist()
        return WorkflowResponse(message="Agenda updated.", next_step=self.state.current_step)

    async def approve_agenda(self) -> WorkflowResponse:
        """Approve the reviewed agenda and move on to the final approval"""

        self._drain_background_failures()
        meeting = self.state.meeting_data

        if meeting.agenda is None:
            return self._refusal("There is no agenda to approve yet.", ["No agenda to approve"])
        if self.state.current_step != WorkflowStep.AGENDA_APPROVAL:
            return self._refusal(
                f"The agenda can only be approved during agenda review, the workflow is at "
                f"{self.state.current_step.value}.",
                ["Agenda is not awaiting approval"]
            )

        result = self.validator.validate_transition(WorkflowStep.APPROVAL, self.state)
        if not result.is_valid:
            return self._refusal(
                f"Cannot advance to {WorkflowStep.APPROVAL.value}: {'; '.join(result.errors)}",
                result.errors,
                next_step=result.suggested_step,
                warnings=result.warnings
            )

        meeting.status = MeetingStatus.PENDING_APPROVAL
        self._transition(WorkflowStep.APPROVAL, trigger="approve_agenda")
        return await self._continue_workflow("approve_agenda", warnings=result.warnings)

    def detect_meeting_type(self) -> Optional[MeetingType]:
        return self.handlers.detect_meeting_type()

    def validate_current_step(self) -> StepValidation:
        return self.validator.validate_current_step(self.state)

    def get_workflow_state(self) -> WorkflowState:
        """Deep copy of the workflow state; changing it has no effect on the session"""

        self._drain_background_failures()
        return self.state.model_copy(deep=True)

    def _schedule_post_meeting(self, meeting_id: str, meeting: MeetingData):
        processor = self.collaborators.post_meeting_processor
        if processor is None:
            return
        task = asyncio.create_task(self._run_post_meeting(meeting_id, meeting))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _run_post_meeting(self, meeting_id: str, meeting: MeetingData):
        processor = self.collaborators.post_meeting_processor
        try:
            self.post_meeting_results[meeting_id] = await self.handlers.call(
                "post_meeting_processor",
                "process",
                processor.process(meeting_id, meeting, self.user),
                self.settings.POST_MEETING_TIMEOUT
            )
            logger.info("Post-meeting processing finished", session_id=self.session_id, meeting_id=meeting_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.state.log_error(f"Post-meeting processing failed: {str(e) or type(e).__name__}")

    async def wait_for_background_tasks(self):
        """Wait for post-meeting processing started by this session"""

        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def shutdown(self):
        for task in list(self._background_tasks):
            task.cancel()
        await self.wait_for_background_tasks()
