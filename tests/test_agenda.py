"""
Unit tests for agenda parsing, formatting and fallback.
"""
import pytest

from meeting_agent.domain.models.agenda import (
    ActionItemPriority, AgendaContent, AgendaTopic, FALLBACK_AGENDA_DURATION,
    build_fallback_agenda, coerce_agenda, format_agenda, parse_agenda_text, validate_agenda_text
)
from meeting_agent.domain.models.errors import AgendaParseError, ErrorKind


class TestFallbackAgenda:
    """Tests for the standard agenda template."""

    def test_template_shape(self):
        agenda = build_fallback_agenda("Roadmap review")

        assert agenda.duration == FALLBACK_AGENDA_DURATION == 50
        assert [topic.duration for topic in agenda.topics] == [5, 30, 10, 5]
        assert agenda.topics[1].title == "Roadmap review"
        assert agenda.allocated_minutes == 50
        assert agenda.action_items == []

    def test_untitled_template(self):
        agenda = build_fallback_agenda(None)

        assert agenda.title == "Meeting Agenda"
        assert agenda.topics[1].title == "Main Discussion"


class TestParseAgendaText:
    """Tests for free-form agenda parsing."""

    def test_parses_numbered_topics_and_bullets(self):
        text = (
            "# Sprint planning\n"
            "**Duration:** 45 minutes\n"
            "1. Review last sprint (10 min)\n"
            "   What went well\n"
            "2. **Plan next sprint** (30 min)\n"
            "- Update the board asap\n"
            "- Optional: share slides later\n"
        )
        agenda = parse_agenda_text(text)

        assert agenda.title == "Sprint planning"
        assert agenda.duration == 45
        assert [(topic.title, topic.duration) for topic in agenda.topics] == [
            ("Review last sprint", 10),
            ("Plan next sprint", 30),
        ]
        assert agenda.topics[0].description == "What went well"
        assert [item.priority for item in agenda.action_items] == [
            ActionItemPriority.HIGH, ActionItemPriority.LOW
        ]

    def test_unallocated_time_is_shared(self):
        agenda = parse_agenda_text("1. Intro\n2. Demo\n3. Questions (10 min)", default_duration=60)

        assert [topic.duration for topic in agenda.topics] == [25, 25, 10]

    def test_action_section_numbered_items(self):
        text = "1. Kickoff (15 min)\n## Action Items\n1. Send recap [HIGH]\n"
        agenda = parse_agenda_text(text)

        assert len(agenda.topics) == 1
        assert agenda.action_items[0].task == "Send recap"

    def test_formatted_agenda_round_trips(self):
        original = build_fallback_agenda("Quarterly review")
        parsed = parse_agenda_text(format_agenda(original))

        assert parsed.title == original.title
        assert [(t.title, t.duration) for t in parsed.topics] == [(t.title, t.duration) for t in original.topics]

    @pytest.mark.parametrize("text", ["", "   ", "Just some notes without structure"])
    def test_unparseable_text(self, text):
        with pytest.raises(AgendaParseError) as exc_info:
            parse_agenda_text(text)

        assert exc_info.value.kind == ErrorKind.VALIDATION


class TestCoerceAgenda:
    """Tests for accepting agendas in any supported shape."""

    def test_structured_content_passes_through(self):
        agenda = AgendaContent(title="A", duration=30, topics=[AgendaTopic(title="Only", duration=30)])

        assert coerce_agenda(agenda) is agenda

    def test_dict_is_validated(self):
        agenda = coerce_agenda({"title": "A", "duration": 30, "topics": [{"title": "Only", "duration": 30}]})

        assert agenda.topics[0].title == "Only"

    def test_invalid_dict(self):
        with pytest.raises(AgendaParseError) as exc_info:
            coerce_agenda({"duration": "lots"})

        assert "errors" in exc_info.value.details

    def test_unsupported_type(self):
        with pytest.raises(AgendaParseError):
            coerce_agenda(42)


class TestAgendaTextValidation:
    """Tests for light checks on rendered agenda text."""

    def test_short_agenda(self):
        result = validate_agenda_text("1. Hi")

        assert result["is_valid"] is False
        assert "Consider adding time allocations for agenda items." in result["warnings"]

    def test_formatted_agenda_is_valid(self):
        result = validate_agenda_text(format_agenda(build_fallback_agenda("Review")))

        assert result == {"is_valid": True, "errors": [], "warnings": []}
