"""
Tests for the browser websocket route.

The upstream session is an echo fake: every event forwarded to it comes back
as a provider event, so the test client can observe what was relayed.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from rag_relay.main import create_app
from rag_relay.websocket import connection_manager


class EchoSession:
    """Upstream stand-in that echoes each forwarded event back to the pair."""

    def __init__(self, on_event, on_close, connect_delay=0.0):
        self.on_event = on_event
        self.on_close = on_close
        self.connect_delay = connect_delay
        self.is_connected = False
        self.sent = []
        self.disconnected = False

    async def connect(self):
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        self.is_connected = True

    async def send(self, event):
        self.sent.append(event)
        await self.on_event({"type": "echo", "of": event})

    async def inject_assistant_message(self, text):
        pass

    async def disconnect(self):
        self.disconnected = True
        self.is_connected = False


class FakeOrchestrator:
    async def test_query(self, query):
        return []


@pytest.fixture
def sessions():
    return []


@pytest.fixture
def client(sessions):
    def factory(on_event, on_close):
        session = EchoSession(on_event, on_close, connect_delay=0.05)
        sessions.append(session)
        return session

    app = create_app(orchestrator=FakeOrchestrator(), session_factory=factory)
    with TestClient(app) as test_client:
        yield test_client


def echoed(ws):
    message = ws.receive_json()
    assert message["type"] == "echo"
    return message["of"]


class TestRelayEndpoint:
    """Browser ↔ upstream relay through the real route."""

    def test_early_frames_replayed_in_order(self, client, sessions):
        with client.websocket_connect("/") as ws:
            for n in range(3):
                ws.send_json({"type": "session.update", "n": n})

            assert [echoed(ws)["n"] for _ in range(3)] == [0, 1, 2]

        assert [e["n"] for e in sessions[0].sent] == [0, 1, 2]

    def test_binary_and_invalid_frames_do_not_close_connection(self, client, sessions):
        with client.websocket_connect("/") as ws:
            ws.send_bytes(b'{"type": "session.update", "n": 0}')
            ws.send_bytes(b"\xff\xfe\x00")
            ws.send_text("not json")
            ws.send_text('{"no_type": true}')
            ws.send_text('{"type": "input_audio_buffer.append", "audio": "AAAA"}')
            ws.send_text('{"type": "input_audio_buffer.commit"}')

            assert echoed(ws) == {"type": "session.update", "n": 0}
            assert echoed(ws)["type"] == "input_audio_buffer.append"
            assert echoed(ws)["type"] == "input_audio_buffer.commit"

        assert len(sessions[0].sent) == 3

    def test_pair_registered_while_connected(self, client, sessions):
        before = connection_manager.get_session_count()

        with client.websocket_connect("/") as ws:
            ws.send_json({"type": "session.update"})
            echoed(ws)

            assert connection_manager.get_session_count() == before + 1
            health = client.get("/health").json()
            assert health["active_connections"] == before + 1

    def test_disconnect_unregisters_and_closes_session(self, client, sessions):
        before = connection_manager.get_session_count()

        with client.websocket_connect("/") as ws:
            ws.send_json({"type": "session.update"})
            echoed(ws)

        assert connection_manager.get_session_count() == before
        assert sessions[0].disconnected
