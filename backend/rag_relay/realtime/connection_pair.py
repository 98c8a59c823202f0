"""
Connection pair - one browser client bound to one Realtime session.

Relay: Realtime API event -> TurnInterceptor -> browser
Relay: browser event -> TurnInterceptor -> Realtime API

Client messages that arrive before the upstream session is ready are queued
and replayed in arrival order once it is.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Protocol, Set

from rag_relay.errors import SessionConnectionError
from rag_relay.models import ConnectionState
from rag_relay.orchestration.retrieval_orchestrator import RetrievalOrchestrator
from rag_relay.orchestration.turn_interceptor import TurnInterceptor
from rag_relay.realtime.client_channel import parse_client_message
from rag_relay.state_machine import InterceptState

logger = logging.getLogger(__name__)


class ClientSink(Protocol):
    async def send(self, event: dict) -> bool: ...

    async def close(self, code: int = 1000) -> None: ...


class UpstreamSession(Protocol):
    is_connected: bool

    async def connect(self) -> None: ...

    async def send(self, event: dict) -> None: ...

    async def inject_assistant_message(self, text: str) -> None: ...

    async def disconnect(self) -> None: ...


SessionFactory = Callable[
    [Callable[[dict], Awaitable[None]], Callable[[], Awaitable[None]]],
    UpstreamSession,
]


class ConnectionPair:
    """
    Owns all per-connection state: RAG gate, turn interceptor, outbound queue
    and in-flight RAG tasks. Nothing here is shared with other pairs.
    """

    def __init__(
        self,
        session_id: str,
        client: ClientSink,
        orchestrator: RetrievalOrchestrator,
        session_factory: SessionFactory,
    ):
        """
        Args:
            session_id: Unique id of this pair
            client: Downstream browser channel
            orchestrator: Shared retrieval orchestrator
            session_factory: Builds the upstream session from (on_event, on_close)
        """
        self.session_id = session_id
        self.client = client
        self.orchestrator = orchestrator

        self.state = ConnectionState()
        self.interceptor = TurnInterceptor(
            session_id=session_id,
            connection_state=self.state,
            on_turn_finalized=self._launch_rag_turn,
        )
        self.interceptor.state_machine.register_on_transition(self._count_transition)
        self.session = session_factory(self._on_provider_event, self._on_provider_close)

        self._pending: Deque[str] = deque()
        self._ready = False
        self._closed = False
        self._rag_tasks: Set[asyncio.Task] = set()

        self.connected_at = int(time.time() * 1000)
        self._stats = {
            "events_relayed": 0,
            "events_suppressed": 0,
            "client_messages_forwarded": 0,
            "client_messages_dropped": 0,
            "rag_turns": 0,
        }

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def open(self) -> bool:
        """
        Connect upstream, then replay queued client messages.

        Returns:
            True if the session is ready, False if the pair was closed instead
        """
        logger.info(f"[{self.session_id}] Connecting to OpenAI...")
        try:
            await self.session.connect()
        except SessionConnectionError as e:
            logger.error(f"[{self.session_id}] Error connecting to OpenAI: {e}")
            await self.close()
            return False
        except Exception as e:
            logger.error(f"[{self.session_id}] Unexpected error connecting to OpenAI: {e}", exc_info=True)
            await self.close()
            return False

        if self._closed:
            await self.session.disconnect()
            return False

        logger.info(f"[{self.session_id}] Connected to OpenAI successfully, replaying {len(self._pending)} queued messages")

        # Messages arriving during the replay are appended and drained here too
        while self._pending:
            await self._forward_client_message(self._pending.popleft())
        self._ready = True
        return True

    async def handle_client_message(self, raw: str):
        """Queue or forward one raw client frame."""
        if self._closed:
            return

        if not self._ready:
            self._pending.append(raw)
            return

        await self._forward_client_message(raw)

    def set_rag_enabled(self, enabled: bool) -> bool:
        """
        Toggle the RAG gate. Disabling also cancels an armed or processing turn.

        Returns:
            True if an in-flight turn was interrupted
        """
        self.state.rag_enabled = enabled
        if enabled:
            return False
        return self.interceptor.reset(reason="rag off")

    async def close(self):
        """Tear down the pair: cancel RAG work, close both connections, drop state."""
        if self._closed:
            return
        self._closed = True

        for task in list(self._rag_tasks):
            task.cancel()

        await self.session.disconnect()
        await self.client.close()
        self._pending.clear()

        duration_ms = int(time.time() * 1000) - self.connected_at
        logger.info(f"[{self.session_id}] Connection pair closed after {duration_ms}ms: {self._stats}")

    def get_telemetry(self) -> dict:
        return {
            "session_id": self.session_id,
            "rag_enabled": self.state.rag_enabled,
            "intercept_state": self.interceptor.state.value,
            "ready": self._ready,
            **self._stats,
        }

    async def _forward_client_message(self, raw: str):
        event = parse_client_message(raw)
        if event is None:
            return

        if not self.interceptor.on_client_event(event):
            self._stats["client_messages_dropped"] += 1
            return

        try:
            await self.session.send(event)
            self._stats["client_messages_forwarded"] += 1
        except SessionConnectionError as e:
            logger.warning(f"[{self.session_id}] Could not forward {event['type']}: {e}")

    async def _on_provider_event(self, event: dict):
        if not self.interceptor.on_provider_event(event):
            self._stats["events_suppressed"] += 1
            return

        logger.debug(f'[{self.session_id}] Relaying "{event.get("type")}" to client')
        if await self.client.send(event):
            self._stats["events_relayed"] += 1

    async def _on_provider_close(self):
        logger.info(f"[{self.session_id}] OpenAI closed the session - closing client")
        await self.close()

    def _launch_rag_turn(self, transcript: str, turn_id: int):
        task = asyncio.create_task(
            self.orchestrator.run(
                self.session,
                transcript,
                on_finished=lambda: self.interceptor.finish_processing(turn_id),
            ),
            name=f"rag-turn-{self.session_id}-{turn_id}",
        )
        self._rag_tasks.add(task)
        task.add_done_callback(self._rag_tasks.discard)

    def _count_transition(self, from_state: InterceptState, to_state: InterceptState):
        if to_state == InterceptState.PROCESSING:
            self._stats["rag_turns"] += 1

    def __repr__(self) -> str:
        return (
            f"ConnectionPair(session_id={self.session_id}, ready={self._ready}, "
            f"state={self.interceptor.state.value})"
        )
