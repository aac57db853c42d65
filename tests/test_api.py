"""
Tests for the HTTP and WebSocket surface.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from meeting_agent.application.api.api_server import create_app

BASE = "/api/v1/workflow"


@pytest.fixture
def client(test_settings):
    """Test client with the application lifespan running."""
    with TestClient(create_app(test_settings)) as client:
        yield client


@pytest.fixture
def session_id(client):
    response = client.post(
        f"{BASE}/sessions",
        json={"user_id": "user-1", "email": "organizer@example.com", "session_id": "api-1"}
    )
    assert response.status_code == 201
    return response.json()["session_id"]


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["active_sessions"] == 0
        assert body["active_connections"] == 0


class TestSessions:
    """Tests for session endpoints."""

    def test_create_session(self, client):
        response = client.post(f"{BASE}/sessions", json={"user_id": "user-1", "email": "organizer@example.com"})

        assert response.status_code == 201
        body = response.json()
        assert body["current_step"] == "intent_detection"
        assert body["websocket_url"] == f"/ws/workflow/{body['session_id']}"

    def test_duplicate_session(self, client, session_id):
        response = client.post(
            f"{BASE}/sessions",
            json={"user_id": "user-1", "email": "organizer@example.com", "session_id": session_id}
        )

        assert response.status_code == 409

    def test_unknown_session(self, client):
        response = client.get(f"{BASE}/sessions/nope/state")

        assert response.status_code == 404
        assert response.json() == {"detail": "Session nope not found"}

    def test_delete_session(self, client, session_id):
        assert client.delete(f"{BASE}/sessions/{session_id}").status_code == 204
        assert client.get(f"{BASE}/sessions/{session_id}/state").status_code == 404
        assert client.delete(f"{BASE}/sessions/{session_id}").status_code == 404


class TestWorkflowEndpoints:
    """Tests for driving a workflow over HTTP."""

    def test_message_and_time(self, client, session_id, meeting_start):
        response = client.post(
            f"{BASE}/sessions/{session_id}/messages",
            json={"content": "Let's schedule a zoom meeting with alice@example.com"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["current_step"] == "time_date_collection"
        assert body["ui_block"]["type"] == "time_selection"

        response = client.put(
            f"{BASE}/sessions/{session_id}/meeting-time",
            json={"start_time": meeting_start.isoformat()}
        )
        body = response.json()
        assert body["current_step"] == "meeting_details_collection"
        assert body["validation_errors"] == ["Meeting title is required"]

        state = client.get(f"{BASE}/sessions/{session_id}/state").json()
        assert state["meeting_data"]["attendees"][0]["email"] == "alice@example.com"
        assert state["conversation_mode"] == "scheduling"
        assert state["summary"]["current_step"] == "meeting_details_collection"

        validation = client.get(f"{BASE}/sessions/{session_id}/validation").json()
        assert validation["can_advance"] is False
        assert validation["errors"] == ["Meeting title is required"]

    def test_advance_with_details(self, client, session_id, meeting_start):
        client.post(f"{BASE}/sessions/{session_id}/messages",
                    json={"content": "Let's schedule a zoom meeting with alice@example.com"})
        client.put(f"{BASE}/sessions/{session_id}/meeting-time", json={"start_time": meeting_start.isoformat()})

        response = client.post(
            f"{BASE}/sessions/{session_id}/advance",
            json={"step": "validation", "data": {"title": "Roadmap review"}}
        )

        body = response.json()
        assert body["current_step"] == "validation"
        assert body["next_step"] == "agenda_generation"

    def test_rejected_transition(self, client, session_id):
        response = client.post(
            f"{BASE}/sessions/{session_id}/transition",
            json={"from_step": "intent_detection", "to_step": "creation"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["current_step"] == "intent_detection"
        assert body["validation_errors"]

    def test_unknown_step_is_rejected(self, client, session_id):
        response = client.post(f"{BASE}/sessions/{session_id}/advance", json={"step": "teleport"})

        assert response.status_code == 422

    def test_meeting_type(self, client, session_id):
        response = client.put(
            f"{BASE}/sessions/{session_id}/meeting-type",
            json={"type": "physical", "location": "Room 4"}
        )

        assert response.json()["current_step"] == "time_date_collection"

    def test_unparseable_agenda(self, client, session_id):
        response = client.put(f"{BASE}/sessions/{session_id}/agenda", json={"agenda": "just some notes"})

        assert response.status_code == 422
        assert response.json()["detail"]["kind"] == "validation"

    def test_approve_agenda_without_agenda(self, client, session_id):
        response = client.post(f"{BASE}/sessions/{session_id}/agenda/approve")

        assert response.json()["validation_errors"] == ["No agenda to approve"]

    def test_compressed_context(self, client, session_id):
        client.post(f"{BASE}/sessions/{session_id}/messages", json={"content": "Hello there"})

        body = client.get(f"{BASE}/sessions/{session_id}/context").json()

        assert "U: Hello there" in body["compressed_context"]
        assert body["compression_strategy"] == "simple"
        assert body["stats"]["message_count"] == 1

    def test_cache_stats(self, client):
        body = client.get(f"{BASE}/cache/stats").json()

        assert body["cache"]["size"] == 0
        assert "performance" in body


class TestWebSocket:
    """Tests for the workflow WebSocket."""

    def test_connect_and_send_message(self, client, session_id):
        with client.websocket_connect(f"/ws/workflow/{session_id}") as websocket:
            connected = websocket.receive_json()
            assert connected["type"] == "connection"
            assert connected["status"] == "connected"

            ready = websocket.receive_json()
            assert ready["payload"]["data"]["status"] == "Workflow ready"

            websocket.send_json({"type": "user_message", "content": "Hello"})

            processing = websocket.receive_json()
            assert processing["payload"]["component"] == "progress"
            reply = websocket.receive_json()
            assert reply["type"] == "markdown"
            progress = websocket.receive_json()
            assert progress["payload"]["data"]["current_step"] == "intent_detection"

    def test_unsupported_event(self, client, session_id):
        with client.websocket_connect(f"/ws/workflow/{session_id}") as websocket:
            websocket.receive_json()
            websocket.receive_json()

            websocket.send_json({"type": "bogus"})

            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["error_code"] == "unsupported_event"

    def test_form_submission(self, client, session_id):
        with client.websocket_connect(f"/ws/workflow/{session_id}") as websocket:
            websocket.receive_json()
            websocket.receive_json()

            websocket.send_json({
                "type": "component",
                "payload": {
                    "component": "form_submit",
                    "data": {"form_id": "meeting_type", "values": {"type": "online"}}
                }
            })

            reply = websocket.receive_json()
            assert reply["type"] == "markdown"

        state = client.get(f"{BASE}/sessions/{session_id}/state").json()
        assert state["current_step"] == "time_date_collection"
        assert state["meeting_data"]["type"] == "online"

    def test_unknown_session_is_closed(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/workflow/nope") as websocket:
                websocket.receive_json()
