from typing import Dict, List, Any, Optional, Tuple
from collections import Counter
from datetime import datetime
import math
import re

import structlog

from meeting_agent.domain.context.classifier import KeywordModeClassifier, ModeClassifier
from meeting_agent.domain.models.conversation import (
    CompressedContext,
    CompressionRecommendation,
    CompressionStrategy,
    ConversationContext,
    ConversationMessage,
    ConversationMode,
    ConversationSummary,
    MessageRole,
)

logger = structlog.get_logger(__name__)


EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
TIME_REFERENCE_PATTERN = re.compile(
    r"\b(tomorrow|today|next week|monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    r"|\d{1,2}:\d{2}|\d{1,2}\s?(?:am|pm))\b",
    re.IGNORECASE
)
MEETING_INTENT_PATTERN = re.compile(
    r"\b(meeting|schedule|calendar|appointment|book|plan|discuss|call|zoom|teams|conference)\b",
    re.IGNORECASE
)
_WORD_PATTERN = re.compile(r"[A-Za-z][A-Za-z'-]{3,}")
_STOPWORDS = frozenset({
    "that", "this", "with", "have", "will", "would", "could", "should", "there", "their",
    "about", "from", "what", "when", "where", "which", "your", "yours", "just", "like",
    "also", "then", "than", "them", "they", "been", "were", "into", "some", "please",
    "thanks", "thank", "okay", "sure", "let's", "need", "want", "meeting", "it's", "i'm",
})

SIMPLE_RECENT_COUNT = 8
SIMPLE_TRUNCATE_AT = 80


def estimate_token_count(messages: List[ConversationMessage]) -> int:
    """Roughly one token per four characters"""
    total_chars = sum(len(message.content) for message in messages)
    return math.ceil(total_chars / 4)


def _text_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _truncate(content: str, limit: Optional[int]) -> str:
    if limit is not None and len(content) > limit:
        return content[:limit] + "..."
    return content


def _format_turn(message: ConversationMessage, limit: Optional[int] = None) -> str:
    role = "U" if message.role == MessageRole.USER else "A"
    return f"{role}: {_truncate(message.content, limit)}"


class ConversationContextEngine:
    """Ordered, append-only conversation history with bounded context rendering.

    The engine keeps the advisory conversation mode and a meeting data
    snapshot next to the messages. Compression never drops messages from
    the history itself; it only changes what get_compressed_context renders.
    """

    def __init__(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        mode_classifier: Optional[ModeClassifier] = None,
        max_context_tokens: int = 4000,
        compression_threshold: float = 0.7
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.mode_classifier = mode_classifier or KeywordModeClassifier()
        self.max_context_tokens = max_context_tokens
        self.compression_threshold = compression_threshold
        self._context = ConversationContext()

    @property
    def messages(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._context.messages)

    @property
    def current_mode(self) -> ConversationMode:
        return self._context.current_mode

    @property
    def compression_level(self) -> int:
        return self._context.compression_level

    def add_message(self, message: ConversationMessage) -> ConversationMode:
        """Append a message and refresh the conversation mode"""

        self._context.messages.append(message)

        new_mode = self.detect_mode_transition()
        if new_mode != self._context.current_mode:
            logger.info(
                "Conversation mode changed",
                session_id=self.session_id,
                from_mode=self._context.current_mode.value,
                to_mode=new_mode.value
            )
            self._context.current_mode = new_mode

        return self._context.current_mode

    def add_user_message(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationMessage:
        message = ConversationMessage(role=MessageRole.USER, content=content, metadata=metadata)
        self.add_message(message)
        return message

    def add_assistant_message(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationMessage:
        message = ConversationMessage(role=MessageRole.ASSISTANT, content=content, metadata=metadata)
        self.add_message(message)
        return message

    def detect_mode_transition(self) -> ConversationMode:
        return self.mode_classifier.classify(
            self._context.messages[-5:],
            self._context.current_mode,
            has_meeting_data=bool(self._context.meeting_data)
        )

    def set_mode(self, mode: ConversationMode):
        self._context.current_mode = mode

    def estimate_token_count(self, messages: Optional[List[ConversationMessage]] = None) -> int:
        if messages is None:
            messages = self._context.messages
        return estimate_token_count(messages)

    def update_meeting_data(self, data: Dict[str, Any]):
        """Merge partial meeting fields into the snapshot"""

        snapshot = dict(self._context.meeting_data or {})
        snapshot.update(data)
        self._context.meeting_data = snapshot

    def get_meeting_data(self) -> Optional[Dict[str, Any]]:
        if self._context.meeting_data is None:
            return None
        return dict(self._context.meeting_data)

    def get_context_data(self) -> ConversationContext:
        """Deep copy of the full context"""
        return self._context.model_copy(deep=True)

    def restore(self, context: ConversationContext):
        """Replace the context with a previously persisted one"""
        self._context = context.model_copy(deep=True)

    def reset(self):
        self._context = ConversationContext()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "message_count": len(self._context.messages),
            "token_count": self.estimate_token_count(),
            "compression_level": self._context.compression_level,
            "current_mode": self._context.current_mode.value,
            "has_meeting_data": bool(self._context.meeting_data)
        }

    def get_compression_recommendation(self) -> CompressionRecommendation:
        """Decide whether the transcript should be compressed and how"""

        token_count = self.estimate_token_count()
        message_count = len(self._context.messages)
        keep_initial = 2 if self._context.compression_level == 0 else 1
        threshold = int(self.max_context_tokens * self.compression_threshold)

        if token_count > threshold:
            return CompressionRecommendation(
                should_compress=True,
                reason=f"Token count ({token_count}) exceeds threshold ({threshold})",
                recommended_strategy=CompressionStrategy(
                    keep_recent_count=max(5, int(message_count * 0.3)),
                    keep_initial_count=keep_initial
                )
            )

        if message_count > 30:
            return CompressionRecommendation(
                should_compress=True,
                reason=f"Message count ({message_count}) is high, compression recommended for performance",
                recommended_strategy=CompressionStrategy(
                    keep_recent_count=10,
                    keep_initial_count=keep_initial
                )
            )

        return CompressionRecommendation(
            should_compress=False,
            reason="Context size is within acceptable limits",
            recommended_strategy=CompressionStrategy(keep_recent_count=8, keep_initial_count=2)
        )

    def get_compressed_context(self) -> CompressedContext:
        """Render a bounded context, compressing the middle of long transcripts"""

        messages = self._context.messages
        original_tokens = estimate_token_count(messages)
        recommendation = self.get_compression_recommendation()

        if recommendation.should_compress and original_tokens > 0:
            strategy = recommendation.recommended_strategy
            for keep_initial, keep_recent, limit, detailed in self._compression_candidates(strategy):
                text = self._build_narrative_context(keep_initial, keep_recent, limit, detailed)
                token_count = _text_tokens(text)
                if token_count < original_tokens:
                    self._context.compression_level += 1
                    logger.info(
                        "Context compressed",
                        session_id=self.session_id,
                        original_tokens=original_tokens,
                        compressed_tokens=token_count,
                        compression_level=self._context.compression_level
                    )
                    return CompressedContext(
                        compressed_context=text,
                        token_count=token_count,
                        original_token_count=original_tokens,
                        compression_ratio=token_count / original_tokens,
                        compression_strategy="narrative",
                        tokens_saved=original_tokens - token_count
                    )
            logger.debug("Compression could not shrink context", session_id=self.session_id)

        text = self._build_simple_context()
        return CompressedContext(
            compressed_context=text,
            token_count=_text_tokens(text),
            original_token_count=original_tokens,
            compression_ratio=1.0,
            compression_strategy="simple",
            tokens_saved=0
        )

    def _compression_candidates(self, strategy: CompressionStrategy):
        """Settings from least to most aggressive"""

        keep_initial = strategy.keep_initial_count
        keep_recent = strategy.keep_recent_count
        counts = [
            (keep_initial, keep_recent),
            (1, max(1, keep_recent // 2)),
            (1, 2),
            (0, 1),
        ]
        for limit in (None, 200, SIMPLE_TRUNCATE_AT):
            for initial, recent in counts:
                for detailed in (True, False):
                    yield initial, recent, limit, detailed

    def _header_lines(self) -> List[str]:
        lines = [f"Mode: {self._context.current_mode.value}"]
        meeting = self._context.meeting_data
        if meeting:
            line = f"Meeting: {meeting.get('title') or 'Untitled'}"
            start_time = meeting.get("start_time")
            if start_time:
                line += f" at {start_time.isoformat() if isinstance(start_time, datetime) else start_time}"
            attendees = meeting.get("attendees") or []
            if attendees:
                line += f" with {len(attendees)} attendees"
            lines.append(line)
        return lines

    def _build_simple_context(self) -> str:
        lines = self._header_lines()
        lines.append("Recent:")
        for message in self._context.messages[-SIMPLE_RECENT_COUNT:]:
            lines.append(_format_turn(message, SIMPLE_TRUNCATE_AT))
        return "\n".join(lines) + "\n"

    def _build_narrative_context(
        self,
        keep_initial: int,
        keep_recent: int,
        limit: Optional[int],
        detailed: bool
    ) -> str:
        messages = self._context.messages
        total = len(messages)
        keep_initial = min(keep_initial, total)
        keep_recent = min(keep_recent, total - keep_initial)

        initial = messages[:keep_initial]
        middle = messages[keep_initial:total - keep_recent]
        recent = messages[total - keep_recent:] if keep_recent else []

        lines = self._header_lines()
        if initial:
            lines.append("Opening:")
            lines.extend(_format_turn(message, limit) for message in initial)
        if middle:
            lines.append(f"Summary: {self._synthesize_narrative(middle, detailed)}")
        if recent:
            lines.append("Recent:")
            lines.extend(_format_turn(message, limit) for message in recent)
        return "\n".join(lines) + "\n"

    def _synthesize_narrative(self, messages: List[ConversationMessage], detailed: bool = True) -> str:
        """Collapse a run of messages into one descriptive sentence"""

        user_turns = sum(1 for message in messages if message.role == MessageRole.USER)
        narrative = f"{len(messages)} earlier messages ({user_turns} from the user)"
        if not detailed:
            return narrative + "."

        participants = self._extract_participants(messages)
        times = self._extract_time_references(messages)
        topics = self._extract_key_topics(messages)
        if participants:
            narrative += f"; participants: {', '.join(participants)}"
        if times:
            narrative += f"; times mentioned: {', '.join(times)}"
        if topics:
            narrative += f"; topics: {', '.join(topics)}"
        return narrative + "."

    @staticmethod
    def _extract_participants(messages: List[ConversationMessage]) -> List[str]:
        participants: List[str] = []
        for message in messages:
            for email in EMAIL_PATTERN.findall(message.content):
                if email.lower() not in (p.lower() for p in participants):
                    participants.append(email)
        return participants[:10]

    @staticmethod
    def _extract_time_references(messages: List[ConversationMessage]) -> List[str]:
        references: List[str] = []
        for message in messages:
            for match in TIME_REFERENCE_PATTERN.findall(message.content):
                reference = match.lower()
                if reference not in references:
                    references.append(reference)
        return references[:5]

    @staticmethod
    def _extract_key_topics(messages: List[ConversationMessage], limit: int = 5) -> List[str]:
        words = Counter()
        for message in messages:
            content = EMAIL_PATTERN.sub(" ", message.content)
            for word in _WORD_PATTERN.findall(content):
                lowered = word.lower()
                if lowered not in _STOPWORDS:
                    words[lowered] += 1
        return [word for word, _ in words.most_common(limit)]

    def generate_conversation_summary(self) -> ConversationSummary:
        """Deterministic summary of the whole conversation"""

        messages = self._context.messages
        if not messages:
            return ConversationSummary(summary="No conversation history", compression_ratio=1.0)

        summary = self._synthesize_narrative(messages)
        key_points = [
            _truncate(message.content, SIMPLE_TRUNCATE_AT)
            for message in messages
            if message.role == MessageRole.USER and (
                MEETING_INTENT_PATTERN.search(message.content)
                or EMAIL_PATTERN.search(message.content)
                or TIME_REFERENCE_PATTERN.search(message.content)
            )
        ][-5:]

        original_tokens = estimate_token_count(messages)
        return ConversationSummary(
            summary=summary,
            key_points=key_points,
            meeting_intent=any(MEETING_INTENT_PATTERN.search(message.content) for message in messages),
            participants_mentioned=self._extract_participants(messages),
            time_references_mentioned=self._extract_time_references(messages),
            compression_ratio=_text_tokens(summary) / original_tokens if original_tokens else 1.0
        )

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Token usage figures plus optimisation hints"""

        messages = self._context.messages
        message_count = len(messages)
        total_tokens = estimate_token_count(messages)
        level = self._context.compression_level

        token_efficiency = total_tokens / message_count if message_count else 0
        compression_effectiveness = min(1.0, level * 0.3) if level else 0.0
        context_utilization = total_tokens / self.max_context_tokens

        recommendations: List[Dict[str, Any]] = []
        if context_utilization > 0.8:
            recommendations.append({
                "type": "compression",
                "priority": "high",
                "description": "Context is near token limit. Immediate compression recommended.",
                "estimated_token_savings": int(total_tokens * 0.4)
            })
        if message_count > 20 and level == 0:
            recommendations.append({
                "type": "summarization",
                "priority": "medium",
                "description": "Long conversation detected. Summarization could reduce token usage.",
                "estimated_token_savings": int(total_tokens * 0.6)
            })
        if token_efficiency > 200:
            recommendations.append({
                "type": "compression",
                "priority": "medium",
                "description": "Messages are token-heavy. Compression could improve efficiency.",
                "estimated_token_savings": int(total_tokens * 0.3)
            })
        if level > 2 and compression_effectiveness < 0.5:
            recommendations.append({
                "type": "cleanup",
                "priority": "low",
                "description": "Multiple compressions applied. Consider starting fresh conversation.",
                "estimated_token_savings": int(total_tokens * 0.8)
            })

        return {
            "token_efficiency": token_efficiency,
            "compression_effectiveness": compression_effectiveness,
            "average_message_length": (
                sum(len(message.content) for message in messages) / message_count if message_count else 0
            ),
            "context_utilization": context_utilization,
            "recommendations": recommendations
        }
