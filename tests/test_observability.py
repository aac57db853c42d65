"""
Tests for metrics collection and log context.
"""
import pytest

from meeting_agent.infrastructure.observability.logging import MetricsCollector, add_service_context


class TestMetricsCollector:
    """Tests for in-process metrics."""

    def test_latency_summary(self):
        metrics = MetricsCollector()
        metrics.record_latency("step.validation", 10)
        metrics.record_latency("step.validation", 30)

        summary = metrics.get_metrics_summary()["latency.step.validation"]
        assert summary == {"count": 2, "avg": 20, "min": 10, "max": 30}

    def test_counters_and_gauges(self):
        metrics = MetricsCollector()
        metrics.increment_counter("workflow.transitions")
        metrics.increment_counter("workflow.transitions", value=2)
        metrics.set_gauge("sessions.active", 3)
        metrics.set_gauge("sessions.active", 1)

        summary = metrics.get_metrics_summary()
        assert summary["workflow.transitions"] == 3
        assert summary["sessions.active"] == 1

    @pytest.mark.asyncio
    async def test_orchestrator_records_steps_and_collaborator_calls(self, orchestrator):
        await orchestrator.process_message("Let's schedule a zoom meeting with alice@example.com")

        summary = orchestrator.metrics.get_metrics_summary()
        assert summary["latency.collaborator.calendar_access.verify_access"]["count"] == 1
        assert summary["latency.step.intent_detection"]["count"] == 1
        assert summary["workflow.transitions"] == 3


class TestServiceContext:
    """Tests for the structlog service context processor."""

    def test_timestamp_added(self):
        event = add_service_context(None, "info", {"event": "hello"})

        assert "timestamp" in event

    def test_existing_fields_kept(self):
        event = add_service_context(None, "info", {"event": "hello", "timestamp": "t", "session_id": "s-1"})

        assert event["timestamp"] == "t"
        assert event["session_id"] == "s-1"
