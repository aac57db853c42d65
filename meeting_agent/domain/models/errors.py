from typing import Any, Dict, Optional
from enum import Enum
import asyncio

from pydantic import ValidationError


class ErrorKind(str, Enum):
    """Failure categories the orchestrator knows how to recover from"""
    AUTHENTICATION = "authentication"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK_TIMEOUT = "network_timeout"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class WorkflowError(Exception):
    """Error raised by collaborators and handlers, tagged with its kind at the raise site"""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.details = details or {}

    @property
    def recoverable(self) -> bool:
        """Quota and network failures let the workflow continue in degraded mode"""
        return self.kind in (ErrorKind.QUOTA_EXCEEDED, ErrorKind.NETWORK_TIMEOUT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "kind": self.kind.value,
            "details": self.details
        }


class AgendaParseError(WorkflowError):
    """Agenda input could not be turned into structured agenda content"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, kind=ErrorKind.VALIDATION, details=details)


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception to its error kind without inspecting message text"""

    if isinstance(error, WorkflowError):
        return error.kind
    if isinstance(error, asyncio.TimeoutError):
        return ErrorKind.NETWORK_TIMEOUT
    if isinstance(error, (ValidationError, ValueError)):
        return ErrorKind.VALIDATION
    # PermissionError is an OSError, so it has to be checked first
    if isinstance(error, PermissionError):
        return ErrorKind.AUTHENTICATION
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorKind.NETWORK_TIMEOUT
    return ErrorKind.UNKNOWN
