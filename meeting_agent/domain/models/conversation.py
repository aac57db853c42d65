from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum
import uuid


class MessageRole(str, Enum):
    """Author of a conversation turn"""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMode(str, Enum):
    """Advisory conversation mode derived from message content"""
    CASUAL = "casual"
    SCHEDULING = "scheduling"
    APPROVAL = "approval"


class ConversationMessage(BaseModel):
    """A single conversation turn, immutable once created"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: Optional[Dict[str, Any]] = None


class ConversationContext(BaseModel):
    """Session-scoped conversation state"""
    messages: List[ConversationMessage] = Field(default_factory=list)
    current_mode: ConversationMode = Field(default=ConversationMode.CASUAL)
    meeting_data: Optional[Dict[str, Any]] = Field(None, description="Meeting data snapshot")
    compression_level: int = Field(default=0, ge=0)


class CompressionStrategy(BaseModel):
    """How many raw messages to keep at each end of the transcript"""
    keep_recent_count: int = Field(gt=0)
    keep_initial_count: int = Field(gt=0)


class CompressionRecommendation(BaseModel):
    should_compress: bool
    reason: str
    recommended_strategy: CompressionStrategy


class CompressedContext(BaseModel):
    """Bounded textual context handed to downstream consumers"""
    compressed_context: str
    token_count: int
    original_token_count: int
    compression_ratio: float
    compression_strategy: str = Field(description="'simple' or 'narrative'")
    tokens_saved: int = 0


class ConversationSummary(BaseModel):
    summary: str
    key_points: List[str] = Field(default_factory=list)
    meeting_intent: bool = False
    participants_mentioned: List[str] = Field(default_factory=list)
    time_references_mentioned: List[str] = Field(default_factory=list)
    compression_ratio: float = 1.0
