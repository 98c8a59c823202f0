"""
Tests for the two websocket ends of a connection pair:
RealtimeSessionConnection (upstream) and ClientChannel (browser).
"""

import json

import pytest
from starlette.websockets import WebSocketState

from rag_relay.errors import SessionConnectionError
from rag_relay.realtime import session_connection
from rag_relay.realtime.client_channel import ClientChannel, parse_client_message
from rag_relay.realtime.session_connection import RealtimeSessionConnection


class FakeUpstreamSocket:
    """Plays back canned server frames, records sent frames."""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame


class EventCollector:
    def __init__(self):
        self.events = []
        self.closed = 0

    async def on_event(self, event):
        self.events.append(event)

    async def on_close(self):
        self.closed += 1


def make_session(collector, **kwargs):
    return RealtimeSessionConnection(
        url="wss://example.test/v1/realtime?model=m",
        api_key="sk-test",
        on_event=collector.on_event,
        on_close=collector.on_close,
        injection_delay_ms=0,
        **kwargs
    )


class TestRealtimeSessionConnection:

    def test_headers(self):
        session = make_session(EventCollector(), organization_id="org-1")
        headers = session._headers()

        assert headers["Authorization"] == "Bearer sk-test"
        assert headers["OpenAI-Beta"] == "realtime=v1"
        assert headers["OpenAI-Organization"] == "org-1"
        assert "OpenAI-Project" not in headers

    @pytest.mark.asyncio
    async def test_send_requires_connection(self):
        session = make_session(EventCollector())

        with pytest.raises(SessionConnectionError):
            await session.send({"type": "session.update"})

    @pytest.mark.asyncio
    async def test_connect_failure_raises(self, monkeypatch):
        async def refuse(*args, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(session_connection, "connect", refuse)
        session = make_session(EventCollector())

        with pytest.raises(SessionConnectionError):
            await session.connect()
        assert session.connection_status == "disconnected"

    @pytest.mark.asyncio
    async def test_events_dispatched_in_order_then_close_reported(self, monkeypatch):
        frames = [
            json.dumps({"type": "session.created"}),
            "not json",
            json.dumps(["not", "an", "object"]),
            json.dumps({"type": "response.done"}),
        ]
        socket = FakeUpstreamSocket(frames)

        async def fake_connect(url, **kwargs):
            assert kwargs["additional_headers"]["OpenAI-Beta"] == "realtime=v1"
            return socket

        monkeypatch.setattr(session_connection, "connect", fake_connect)
        collector = EventCollector()
        session = make_session(collector)

        await session.connect()
        await session._receive_task

        assert [e["type"] for e in collector.events] == ["session.created", "response.done"]
        assert collector.closed == 1
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(self, monkeypatch):
        socket = FakeUpstreamSocket([json.dumps({"type": "a"}), json.dumps({"type": "b"})])

        async def fake_connect(url, **kwargs):
            return socket

        monkeypatch.setattr(session_connection, "connect", fake_connect)
        seen = []

        async def flaky(event):
            seen.append(event["type"])
            if event["type"] == "a":
                raise RuntimeError("handler bug")

        session = RealtimeSessionConnection(url="wss://x", api_key="k", on_event=flaky)
        await session.connect()
        await session._receive_task

        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_inject_sends_item_then_response(self):
        session = make_session(EventCollector())
        socket = FakeUpstreamSocket()
        session.ws = socket
        session.is_connected = True

        await session.inject_assistant_message("You get 25 days.")

        assert [e["type"] for e in socket.sent] == ["conversation.item.create", "response.create"]
        assert socket.sent[0]["item"]["role"] == "assistant"
        assert socket.sent[0]["item"]["content"][0]["text"] == "You get 25 days."

    @pytest.mark.asyncio
    async def test_local_disconnect_does_not_report_remote_close(self):
        collector = EventCollector()
        session = make_session(collector)
        socket = FakeUpstreamSocket()
        session.ws = socket
        session.is_connected = True

        await session.disconnect()
        await session.disconnect()

        assert socket.closed
        assert collector.closed == 0
        assert session.connection_status == "closing"


class FakeBrowserSocket:
    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self.client_state = WebSocketState.CONNECTED
        self.close_codes = []

    async def accept(self):
        pass

    async def receive(self):
        if not self.frames:
            return {"type": "websocket.disconnect", "code": 1001}
        frame = self.frames.pop(0)
        if isinstance(frame, bytes):
            return {"type": "websocket.receive", "bytes": frame}
        return {"type": "websocket.receive", "text": frame}

    async def send_text(self, data):
        self.sent.append(data)

    async def close(self, code=1000):
        self.close_codes.append(code)
        self.client_state = WebSocketState.DISCONNECTED


class TestParseClientMessage:

    def test_valid_event(self):
        assert parse_client_message('{"type": "session.update", "session": {}}') == {
            "type": "session.update",
            "session": {},
        }

    @pytest.mark.parametrize("raw", [
        "{not json",
        "[]",
        '"text"',
        '{"session": {}}',
        '{"type": 5}',
    ])
    def test_invalid_messages_dropped(self, raw):
        assert parse_client_message(raw) is None


class TestClientChannel:

    @pytest.mark.asyncio
    async def test_messages_until_disconnect(self):
        channel = ClientChannel(FakeBrowserSocket(["one", "two"]))

        received = [raw async for raw in channel.messages()]

        assert received == ["one", "two"]
        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_binary_frames_decoded_as_text(self):
        channel = ClientChannel(FakeBrowserSocket([b'{"type": "session.update"}', "two"]))

        received = [raw async for raw in channel.messages()]

        assert received == ['{"type": "session.update"}', "two"]

    @pytest.mark.asyncio
    async def test_undecodable_binary_frame_skipped(self):
        channel = ClientChannel(FakeBrowserSocket([b"\xff\xfe\x00", "after"]))

        received = [raw async for raw in channel.messages()]

        assert received == ["after"]

    @pytest.mark.asyncio
    async def test_send_serializes_json(self):
        socket = FakeBrowserSocket()
        channel = ClientChannel(socket)

        assert await channel.send({"type": "response.done"}) is True
        assert json.loads(socket.sent[0]) == {"type": "response.done"}

    @pytest.mark.asyncio
    async def test_send_after_close_returns_false(self):
        socket = FakeBrowserSocket()
        channel = ClientChannel(socket)

        await channel.close()
        await channel.close()

        assert socket.close_codes == [1000]
        assert await channel.send({"type": "x"}) is False
