"""Tests for API endpoints."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from chatstream.errors import ModelCallError
from chatstream.main import app
from chatstream.models.llm import TextDelta, ToolDirective
from chatstream.services.chat_store import get_chat_store
from chatstream.services.llm import get_model_router
from chatstream.services.orchestrator import get_orchestrator


@pytest.fixture
def client(orchestrator, store, router):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_chat_store] = lambda: store
    app.dependency_overrides[get_model_router] = lambda: router
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


ALICE = {"X-User-Id": "alice"}


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self, client):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self, client):
        """Test that health check returns expected JSON structure."""
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data


class TestChatEndpoints:
    """Tests for chat creation, turns and replay."""

    def test_create_chat(self, client):
        """Test that a new chat gets a fresh identifier."""
        first = client.post("/chats").json()["chat_id"]
        second = client.post("/chats").json()["chat_id"]
        assert first and first != second

    def test_submit_turn(self, client, model_client):
        """Test a plain text turn."""
        model_client.script(TextDelta("Hello!"))

        response = client.post("/chats/chat1/turns", json={"message": "hi"}, headers=ALICE)

        assert response.status_code == 200
        data = response.json()
        assert data["chat_id"] == "chat1"
        assert data["view"] == {"kind": "text", "id": "chat1-1", "text": "Hello!", "streaming": False}

    def test_replay_after_tool_turn(self, client, model_client):
        """Test that replaying a chat returns the same views the turn produced."""
        model_client.script(ToolDirective(tool_name="wikipediaSearch", call_id="c1", args={"query": "Alan Turing"}))
        model_client.script(TextDelta("Turing was a mathematician."))

        turn = client.post("/chats/chat1/turns", json={"message": "Who was Turing?"}, headers=ALICE).json()
        chat = client.get("/chats/chat1", headers=ALICE).json()

        assert chat["title"] == "Who was Turing?"
        assert chat["path"] == "/chat/chat1"
        assert [view["kind"] for view in chat["views"]] == ["user", "tool", "tool"]
        assert chat["views"][-1] == turn["view"]
        assert chat["views"][1]["payload"] == {"title": "Alan Turing", "query": "Alan Turing"}

    def test_list_and_delete_chats(self, client, model_client):
        """Test listing and deleting the caller's chats."""
        model_client.script(TextDelta("ok"))
        client.post("/chats/chat1/turns", json={"message": "hi"}, headers=ALICE)

        chats = client.get("/chats", headers=ALICE).json()
        assert [chat["id"] for chat in chats] == ["chat1"]
        assert client.get("/chats").json() == []

        assert client.delete("/chats/chat1", headers={"X-User-Id": "bob"}).status_code == 404
        assert client.delete("/chats/chat1", headers=ALICE).status_code == 204
        assert client.get("/chats/chat1", headers=ALICE).status_code == 404

    def test_other_users_chat_is_not_found(self, client, model_client):
        """Test that chats are scoped to their owner."""
        model_client.script(TextDelta("ok"))
        client.post("/chats/chat1/turns", json={"message": "hi"}, headers=ALICE)

        assert client.get("/chats/chat1", headers={"X-User-Id": "bob"}).status_code == 404
        response = client.post("/chats/chat1/turns", json={"message": "hi"}, headers={"X-User-Id": "bob"})
        assert response.status_code == 404

    def test_model_failure_returns_502(self, client, model_client):
        """Test that a model failure maps to a bad gateway response."""
        model_client.script(ModelCallError("gpt-4o", "upstream timeout"))

        response = client.post("/chats/chat1/turns", json={"message": "hi"}, headers=ALICE)

        assert response.status_code == 502
        assert "upstream" not in response.json()["detail"]

    def test_invalid_input_returns_400(self, client):
        """Test that bad chat ids and empty messages are rejected."""
        assert client.post("/chats/bad.id/turns", json={"message": "hi"}).status_code == 400
        assert client.post("/chats/chat1/turns", json={"message": ""}).status_code == 400

    def test_invalid_image_returns_422(self, client):
        """Test that malformed attachments fail request validation."""
        response = client.post("/chats/chat1/turns", json={"message": "hi", "images": ["%%%"]})
        assert response.status_code == 422


class TestStreamingEndpoint:
    """Tests for the NDJSON streaming endpoint."""

    def test_stream_events(self, client, model_client):
        """Test that updates stream in order and end with the final view."""
        model_client.script(TextDelta("Hel"), TextDelta("lo"))

        response = client.post("/chats/chat1/turns/stream", json={"message": "hi"}, headers=ALICE)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["event"] for e in events] == ["update", "update", "done"]
        assert events[0]["view"]["text"] == "Hel"
        assert events[-1]["view"] == {"kind": "text", "id": "chat1-1", "text": "Hello", "streaming": False}

    def test_stream_error_event(self, client, model_client):
        """Test that a failed turn ends the stream with an error event."""
        model_client.script(ModelCallError("gpt-4o", "upstream timeout"))

        response = client.post("/chats/chat1/turns/stream", json={"message": "hi"}, headers=ALICE)

        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert events[-1]["event"] == "error"
        assert "upstream" not in events[-1]["message"]

    @pytest.mark.parametrize("message", ["", "a" * 2001])
    def test_invalid_message_ends_stream_with_error(self, client, model_client, message):
        """Test that a rejected message still terminates the stream."""
        response = client.post("/chats/chat1/turns/stream", json={"message": message}, headers=ALICE)

        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["event"] for e in events] == ["error"]
        assert "Message" in events[0]["message"]
        assert model_client.calls == []


class TestGenerateEndpoint:
    """Tests for single prompt completions."""

    def test_generate(self, client, model_client):
        """Test that a prompt is answered with plain text."""
        model_client.completions.append("Forty-two.")

        response = client.post("/generate", json={"prompt": "Meaning of life?", "model": "o1-mini"})

        assert response.status_code == 200
        assert response.json() == {"res": "Forty-two."}
        assert model_client.complete_prompts == ["Meaning of life?"]

    def test_generate_requires_prompt(self, client):
        """Test that an empty prompt is rejected."""
        response = client.post("/generate", json={"prompt": " ", "model": "o1-mini"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Both prompt and model are required"

    def test_generate_model_failure_returns_502(self, client, model_client):
        """Test that a model failure maps to a bad gateway response."""
        model_client.completions.append(ModelCallError("o1-mini", "overloaded"))

        assert client.post("/generate", json={"prompt": "hi"}).status_code == 502


class TestLifespan:
    """Tests for application startup and shutdown."""

    def test_clients_closed_on_shutdown(self):
        """Test that shared provider and knowledge clients are closed on shutdown."""
        with (
            patch("chatstream.main.close_model_router", new_callable=AsyncMock) as close_router,
            patch("chatstream.main.close_openai_client", new_callable=AsyncMock) as close_openai,
            patch("chatstream.main.close_knowledge_client", new_callable=AsyncMock) as close_knowledge,
        ):
            with TestClient(app):
                close_router.assert_not_awaited()

            close_router.assert_awaited_once()
            close_openai.assert_awaited_once()
            close_knowledge.assert_awaited_once()


class TestAPIDocumentation:
    """Tests for API documentation endpoints."""

    def test_openapi_json_available(self, client):
        """Test that OpenAPI JSON specification is available."""
        response = client.get("/openapi.json")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"

    def test_swagger_ui_available(self, client):
        """Test that Swagger UI is available."""
        response = client.get("/docs")
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
