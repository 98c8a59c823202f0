"""
Tests for the webhook and health endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from rag_relay.api.webhook import parse_chat_command
from rag_relay.main import create_app
from rag_relay.models import DisableRag, EnableRag, SearchQuery
from rag_relay.websocket import connection_manager


class FakeOrchestrator:
    def __init__(self):
        self.queries = []

    async def test_query(self, query):
        self.queries.append(query)
        return []


class FakePair:
    """Minimal stand-in for a tracked ConnectionPair."""

    def __init__(self, session_id):
        self.session_id = session_id
        self.rag_enabled = False

    def set_rag_enabled(self, enabled):
        self.rag_enabled = enabled
        return False

    def get_telemetry(self):
        return {"session_id": self.session_id, "rag_enabled": self.rag_enabled}


def chat_message(text):
    return {
        "event": "participant_events.chat_message",
        "data": {"data": {"data": {"text": text}, "participant": {"name": "Alice"}}},
    }


@pytest.fixture
def orchestrator():
    return FakeOrchestrator()


@pytest.fixture
def pairs():
    tracked = [FakePair("a"), FakePair("b")]
    for pair in tracked:
        connection_manager.register(pair)
    yield tracked
    for pair in tracked:
        connection_manager.unregister(pair.session_id)


@pytest.fixture
def client(orchestrator):
    app = create_app(orchestrator=orchestrator, session_factory=lambda on_event, on_close: None)
    with TestClient(app) as test_client:
        yield test_client


class TestParseChatCommand:
    """Chat text → control command."""

    def test_rag_on(self):
        assert isinstance(parse_chat_command("please turn RAG ON"), EnableRag)

    def test_rag_off(self):
        assert isinstance(parse_chat_command("Rag off now"), DisableRag)

    def test_rag_test_with_query(self):
        command = parse_chat_command("rag test vacation policy")
        assert isinstance(command, SearchQuery)
        assert command.query == "vacation policy"

    def test_rag_test_without_query(self):
        command = parse_chat_command("RAG TEST")
        assert command.query == "test query"

    def test_rag_on_checked_first(self):
        assert isinstance(parse_chat_command("rag on and rag off"), EnableRag)

    def test_unrelated_text(self):
        assert parse_chat_command("hello everyone") is None


class TestWebhookEndpoint:

    def test_rag_on_broadcasts(self, client, pairs):
        response = client.post("/webhook", json=chat_message("rag on"))

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert all(pair.rag_enabled for pair in pairs)

    def test_rag_off_broadcasts(self, client, pairs):
        for pair in pairs:
            pair.rag_enabled = True

        response = client.post("/webhook", json=chat_message("rag off"))

        assert response.status_code == 200
        assert not any(pair.rag_enabled for pair in pairs)

    def test_rag_test_runs_query(self, client, orchestrator, pairs):
        response = client.post("/webhook", json=chat_message("rag test refund policy"))

        assert response.status_code == 200
        assert orchestrator.queries == ["refund policy"]
        assert not any(pair.rag_enabled for pair in pairs)

    def test_other_events_acknowledged(self, client, pairs):
        response = client.post("/webhook", json={"event": "meeting.started", "data": {}})

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert not any(pair.rag_enabled for pair in pairs)

    def test_plain_chat_acknowledged(self, client, orchestrator):
        response = client.post("/webhook", json=chat_message("hi all"))

        assert response.status_code == 200
        assert orchestrator.queries == []

    def test_malformed_chat_payload_rejected(self, client):
        response = client.post(
            "/webhook",
            json={"event": "participant_events.chat_message", "data": {"data": {}}},
        )
        assert response.status_code == 400

    def test_missing_event_rejected(self, client):
        response = client.post("/webhook", json={"data": {}})
        assert response.status_code == 422


class TestHealthEndpoint:

    def test_health_reports_connections(self, client, pairs):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["active_connections"] == 2
        assert {c["session_id"] for c in body["connections"]} == {"a", "b"}
