from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
import re

from meeting_agent.domain.models.conversation import ConversationMessage, ConversationMode
from meeting_agent.domain.models.workflow_state import MeetingType


SCHEDULING_KEYWORDS = (
    "meeting", "schedule", "calendar", "appointment", "book", "plan",
    "when", "time", "date", "tomorrow", "next week", "monday", "tuesday",
    "wednesday", "thursday", "friday", "saturday", "sunday", "am", "pm",
    "o'clock", "hour", "minute", "discuss", "call", "zoom", "teams"
)

APPROVAL_KEYWORDS = (
    "approve", "confirm", "yes", "looks good", "correct", "create",
    "book it", "schedule it", "send", "finalize", "proceed"
)

ONLINE_KEYWORDS = ("zoom", "teams", "meet", "online", "virtual", "remote", "video call")

PHYSICAL_KEYWORDS = ("office", "room", "location", "address", "in person", "in-person", "physical")


def _keyword_pattern(keywords: Sequence[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


class ModeClassifier(ABC):
    """Derives the advisory conversation mode from recent messages"""

    @abstractmethod
    def classify(
        self,
        messages: List[ConversationMessage],
        current_mode: ConversationMode,
        has_meeting_data: bool = False
    ) -> ConversationMode:
        pass


class MeetingTypeClassifier(ABC):
    """Guesses online or physical from free text"""

    @abstractmethod
    def classify(self, text: str) -> Optional[MeetingType]:
        pass


class KeywordModeClassifier(ModeClassifier):
    """Keyword scan over the latest message"""

    def __init__(
        self,
        scheduling_keywords: Sequence[str] = SCHEDULING_KEYWORDS,
        approval_keywords: Sequence[str] = APPROVAL_KEYWORDS
    ):
        self._scheduling = _keyword_pattern(scheduling_keywords)
        self._approval = _keyword_pattern(approval_keywords)
        self._clock_time = re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b", re.IGNORECASE)

    def classify(
        self,
        messages: List[ConversationMessage],
        current_mode: ConversationMode,
        has_meeting_data: bool = False
    ) -> ConversationMode:
        if not messages:
            return ConversationMode.CASUAL

        content = messages[-1].content

        # Confirmation only counts once a meeting is being discussed
        if current_mode in (ConversationMode.SCHEDULING, ConversationMode.APPROVAL):
            if self._approval.search(content):
                return ConversationMode.APPROVAL

        if self._scheduling.search(content) or self._clock_time.search(content):
            return ConversationMode.SCHEDULING

        if has_meeting_data and current_mode != ConversationMode.CASUAL:
            return ConversationMode.SCHEDULING

        return ConversationMode.CASUAL


class KeywordMeetingTypeClassifier(MeetingTypeClassifier):
    """Online versus physical keyword vote"""

    def __init__(
        self,
        online_keywords: Sequence[str] = ONLINE_KEYWORDS,
        physical_keywords: Sequence[str] = PHYSICAL_KEYWORDS
    ):
        self._online = _keyword_pattern(online_keywords)
        self._physical = _keyword_pattern(physical_keywords)

    def classify(self, text: str) -> Optional[MeetingType]:
        if not text:
            return None

        online_hits = len(self._online.findall(text))
        physical_hits = len(self._physical.findall(text))

        if online_hits > physical_hits:
            return MeetingType.ONLINE
        if physical_hits > online_hits:
            return MeetingType.PHYSICAL
        return None
