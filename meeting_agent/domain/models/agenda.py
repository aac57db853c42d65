from typing import Dict, Any, List, Optional, Union
from pydantic import BaseModel, Field, ValidationError
from enum import Enum
import re

from meeting_agent.domain.models.errors import AgendaParseError


class ActionItemPriority(str, Enum):
    """Action item priority levels"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AgendaTopic(BaseModel):
    """A single timed agenda item"""
    title: str = Field(description="Topic title")
    duration: int = Field(ge=0, description="Allocated minutes")
    description: Optional[str] = Field(None, description="Short topic description")
    presenter: Optional[str] = Field(None, description="Person leading the topic")


class ActionItem(BaseModel):
    """Follow-up task attached to an agenda"""
    task: str
    assignee: Optional[str] = None
    deadline: Optional[str] = None
    priority: ActionItemPriority = Field(default=ActionItemPriority.MEDIUM)


class AgendaContent(BaseModel):
    """Structured meeting agenda"""
    title: str = Field(description="Agenda title")
    duration: int = Field(ge=0, description="Total meeting duration in minutes")
    topics: List[AgendaTopic] = Field(default_factory=list)
    action_items: List[ActionItem] = Field(default_factory=list)

    @property
    def allocated_minutes(self) -> int:
        return sum(topic.duration for topic in self.topics)


FALLBACK_AGENDA_DURATION = 50

_TOPIC_LINE = re.compile(r"^\d+\.\s*(?:\*\*)?(.+?)(?:\*\*)?(?:\s*\((\d+)\s*min\))?$", re.IGNORECASE)
_BULLET_LINE = re.compile(r"^[-*•]\s+")
_DURATION_LINE = re.compile(r"\*\*Duration:\*\*\s*(\d+)", re.IGNORECASE)
_HIGH_PRIORITY_WORDS = ("urgent", "asap", "critical", "immediately", "blocker")
_LOW_PRIORITY_WORDS = ("optional", "nice to have", "later", "eventually")


def build_fallback_agenda(title: Optional[str]) -> AgendaContent:
    """Four-section template used whenever agenda generation is unavailable"""

    return AgendaContent(
        title=title or "Meeting Agenda",
        duration=FALLBACK_AGENDA_DURATION,
        topics=[
            AgendaTopic(
                title="Welcome and Introductions",
                duration=5,
                description="Brief introductions and meeting overview"
            ),
            AgendaTopic(
                title=title or "Main Discussion",
                duration=30,
                description="Primary meeting topics and discussion"
            ),
            AgendaTopic(
                title="Action Items and Next Steps",
                duration=10,
                description="Review decisions made and assign action items"
            ),
            AgendaTopic(
                title="Wrap-up",
                duration=5,
                description="Meeting summary and closing remarks"
            ),
        ],
        action_items=[]
    )


def format_agenda(content: AgendaContent) -> str:
    """Render an agenda as markdown"""

    formatted = f"# {content.title}\n\n"
    formatted += f"**Duration:** {content.duration} minutes\n\n"

    if content.topics:
        formatted += "## Agenda Items\n\n"
        for index, topic in enumerate(content.topics, start=1):
            formatted += f"{index}. **{topic.title}** ({topic.duration} min)\n"
            if topic.description:
                formatted += f"   {topic.description}\n"
            if topic.presenter:
                formatted += f"   *Presenter: {topic.presenter}*\n"
            formatted += "\n"

    if content.action_items:
        formatted += "## Action Items\n\n"
        for index, item in enumerate(content.action_items, start=1):
            formatted += f"{index}. {item.task}"
            if item.assignee:
                formatted += f" (*{item.assignee}*)"
            if item.deadline:
                formatted += f" - Due: {item.deadline}"
            formatted += f" [{item.priority.value.upper()}]\n"

    return formatted


def _priority_for(text: str) -> ActionItemPriority:
    lowered = text.lower()
    if any(word in lowered for word in _HIGH_PRIORITY_WORDS):
        return ActionItemPriority.HIGH
    if any(word in lowered for word in _LOW_PRIORITY_WORDS):
        return ActionItemPriority.LOW
    return ActionItemPriority.MEDIUM


def parse_agenda_text(text: str, default_duration: int = 60, title: Optional[str] = None) -> AgendaContent:
    """Parse markdown or plain agenda text into structured content.

    Numbered lines become topics (an optional "(N min)" suffix sets the
    duration), bullet lines become action items. Text with no recognisable
    topic raises AgendaParseError.
    """

    if not text or not text.strip():
        raise AgendaParseError("Agenda text is empty")

    topics: List[AgendaTopic] = []
    action_items: List[ActionItem] = []
    duration = default_duration
    agenda_title = title
    in_action_section = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if line.startswith("#"):
            heading = line.lstrip("#").strip()
            if line.startswith("##"):
                in_action_section = "action" in heading.lower()
            elif not agenda_title:
                agenda_title = heading
            continue

        duration_match = _DURATION_LINE.search(line)
        if duration_match:
            duration = int(duration_match.group(1))
            continue

        topic_match = _TOPIC_LINE.match(line)
        if topic_match and not in_action_section:
            minutes = int(topic_match.group(2)) if topic_match.group(2) else 0
            topics.append(AgendaTopic(title=topic_match.group(1).strip(), duration=minutes))
            continue

        if _BULLET_LINE.match(line) or (topic_match and in_action_section):
            task = _BULLET_LINE.sub("", line)
            if topic_match and in_action_section:
                task = re.sub(r"^\d+\.\s*", "", line)
            task = re.sub(r"\s*\[(HIGH|MEDIUM|LOW)\]$", "", task, flags=re.IGNORECASE).strip()
            if task:
                action_items.append(ActionItem(task=task, priority=_priority_for(task)))
            continue

        # Indented description under the previous topic
        if topics and raw_line.startswith(" ") and not topics[-1].description:
            topics[-1].description = line

    if not topics:
        raise AgendaParseError(
            "Agenda must contain at least one numbered item",
            details={"text": text[:200]}
        )

    # Spread unallocated time over topics that had no explicit duration
    unallocated = [topic for topic in topics if topic.duration == 0]
    if unallocated:
        remaining = max(0, duration - sum(topic.duration for topic in topics))
        share = max(5, remaining // len(unallocated)) if remaining else 5
        for topic in unallocated:
            topic.duration = share

    return AgendaContent(
        title=agenda_title or "Meeting Agenda",
        duration=duration,
        topics=topics,
        action_items=action_items
    )


def coerce_agenda(
    agenda: Union[AgendaContent, Dict[str, Any], str],
    default_duration: int = 60,
    title: Optional[str] = None
) -> AgendaContent:
    """Accept an agenda in any supported shape and return structured content"""

    if isinstance(agenda, AgendaContent):
        return agenda
    if isinstance(agenda, dict):
        try:
            return AgendaContent.model_validate(agenda)
        except ValidationError as e:
            raise AgendaParseError(
                "Agenda structure is invalid",
                details={"errors": e.errors(include_url=False)}
            ) from e
    if isinstance(agenda, str):
        return parse_agenda_text(agenda, default_duration=default_duration, title=title)
    raise AgendaParseError(f"Unsupported agenda type: {type(agenda).__name__}")


def validate_agenda_text(agenda: str) -> Dict[str, Any]:
    """Light structural checks on rendered agenda text"""

    errors: List[str] = []
    warnings: List[str] = []

    if len(agenda) < 50:
        errors.append("Agenda is too short. Please add more details.")
    if "1." not in agenda and "•" not in agenda and "-" not in agenda:
        warnings.append("Agenda should include numbered or bulleted items.")
    if not re.search(r"\d+\s*min", agenda, re.IGNORECASE):
        warnings.append("Consider adding time allocations for agenda items.")

    return {"is_valid": not errors, "errors": errors, "warnings": warnings}
