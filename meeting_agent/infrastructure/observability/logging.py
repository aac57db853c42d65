import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "meeting-agent"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    session_id = structlog.contextvars.get_contextvars().get("session_id")
    if session_id and "session_id" not in event_dict:
        event_dict["session_id"] = session_id

    return event_dict


class WorkflowLogger:
    """Specialized logger for workflow operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_step_execution(
        self,
        session_id: str,
        step: str,
        next_step: str,
        duration_ms: Optional[float] = None,
        requires_user_input: bool = True,
        errors: Optional[int] = None
    ):
        """Log the outcome of a step handler"""

        self.logger.info(
            "step_execution",
            session_id=session_id,
            step=step,
            next_step=next_step,
            duration_ms=duration_ms,
            requires_user_input=requires_user_input,
            errors=errors or 0
        )

    def log_workflow_transition(
        self,
        session_id: str,
        from_step: str,
        to_step: str,
        trigger: Optional[str] = None,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        """Log workflow state transitions"""

        self.logger.info(
            "workflow_transition",
            session_id=session_id,
            from_step=from_step,
            to_step=to_step,
            trigger=trigger,
            state_summary=state_summary or {}
        )

    def log_context_update(
        self,
        session_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log context updates"""

        self.logger.info(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )

    def log_collaborator_call(
        self,
        session_id: str,
        collaborator: str,
        operation: str,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None,
        error_kind: Optional[str] = None
    ):
        """Log a call to an external collaborator"""

        log = self.logger.info if success else self.logger.warning
        log(
            "collaborator_call",
            session_id=session_id,
            collaborator=collaborator,
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            error=error,
            error_kind=error_kind
        )

    def log_recovery(
        self,
        session_id: str,
        step: str,
        error_kind: str,
        next_step: str,
        error: Optional[str] = None
    ):
        """Log a recovery response built from a failure"""

        self.logger.warning(
            "workflow_recovery",
            session_id=session_id,
            step=step,
            error_kind=error_kind,
            next_step=next_step,
            error=error
        )


class MetricsCollector:
    """Collect and export metrics"""

    def __init__(self, logger_name: str = "meeting_agent.metrics"):
        self.metrics: Dict[str, Any] = {}
        self.logger = structlog.get_logger(logger_name)

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0,
                "min": float('inf'),
                "max": 0
            }

        self.metrics[key]["count"] += 1
        self.metrics[key]["sum"] += duration_ms
        self.metrics[key]["min"] = min(self.metrics[key]["min"], duration_ms)
        self.metrics[key]["max"] = max(self.metrics[key]["max"], duration_ms)

        self.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        if name not in self.metrics:
            self.metrics[name] = 0
        self.metrics[name] += value

        self.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Set a gauge metric"""

        self.metrics[name] = value

        self.logger.debug(
            "metric",
            metric_type="gauge",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                summary[key] = {
                    "count": value["count"],
                    "avg": value["sum"] / value["count"] if value["count"] > 0 else 0,
                    "min": value["min"] if value["min"] != float('inf') else 0,
                    "max": value["max"]
                }
            else:
                summary[key] = value

        return summary
