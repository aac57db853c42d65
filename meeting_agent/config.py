import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

# Load .env before reading any setting
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    APP_NAME: str = os.getenv("APP_NAME", "Meeting Workflow Agent")
    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "meeting-agent")
    DEBUG: bool = _env_bool("DEBUG", "false")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

    # FastAPI
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    # Attendee validation cache
    CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "300"))
    CACHE_MAX_SIZE: int = int(os.getenv("CACHE_MAX_SIZE", "1000"))
    VALIDATION_BATCH_SIZE: int = int(os.getenv("VALIDATION_BATCH_SIZE", "5"))

    # Conversation context
    MAX_CONTEXT_TOKENS: int = int(os.getenv("MAX_CONTEXT_TOKENS", "4000"))
    COMPRESSION_THRESHOLD: float = float(os.getenv("COMPRESSION_THRESHOLD", "0.7"))

    # Per-collaborator timeouts in seconds
    CALENDAR_TIMEOUT: float = float(os.getenv("CALENDAR_TIMEOUT", "10"))
    DIRECTORY_TIMEOUT: float = float(os.getenv("DIRECTORY_TIMEOUT", "5"))
    AGENDA_TIMEOUT: float = float(os.getenv("AGENDA_TIMEOUT", "30"))
    EVENT_CREATION_TIMEOUT: float = float(os.getenv("EVENT_CREATION_TIMEOUT", "15"))
    POST_MEETING_TIMEOUT: float = float(os.getenv("POST_MEETING_TIMEOUT", "60"))

    # Background persistence
    PERSISTENCE_QUEUE_SIZE: int = int(os.getenv("PERSISTENCE_QUEUE_SIZE", "1000"))
    PERSISTENCE_TIMEOUT: float = float(os.getenv("PERSISTENCE_TIMEOUT", "5"))

    # Collaborators
    MOCK_COLLABORATORS: bool = _env_bool("MOCK_COLLABORATORS", "true")

    def __init__(self, **overrides: Any):
        for name, value in overrides.items():
            key = name.upper()
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {name}")
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in dir(type(self))
            if name.isupper()
        }
