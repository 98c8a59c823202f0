"""
Turn Interceptor - decides, per inbound event, what the relay does with it.

One instance per connection pair. Every provider event and every client event
passes through here, in arrival order:

- pass through unmodified (the default)
- accumulate transcript fragments of an armed turn
- suppress provider responses while a RAG answer is being prepared
- trigger the retrieval side-channel when the user's utterance is finalized

State Flow:
IDLE → TURN_ARMED → CAPTURING → PROCESSING → IDLE
         ↑ speech restarted ↓
         └──────────────────┘

Critical: once a turn is in PROCESSING, the retrieval side-channel owns the
answer. Neither the provider's own default response nor a client-issued
response.create may reach the other side until processing is cleared.
"""

import logging
from typing import Callable

from rag_relay.models import (
    ClientEventKind,
    ConnectionState,
    ProviderEventKind,
    classify_client_event,
    classify_provider_event,
)
from rag_relay.orchestration.transcript_buffer import TranscriptBuffer
from rag_relay.state_machine import InterceptState, StateMachine

logger = logging.getLogger(__name__)

_ARMED_STATES = frozenset({InterceptState.TURN_ARMED, InterceptState.CAPTURING})
_SUPPRESSED_WHILE_PROCESSING = frozenset({
    ProviderEventKind.RESPONSE,
    ProviderEventKind.ASSISTANT_ITEM_CREATED,
})


class TurnInterceptor:
    """
    Interception state machine for one client/provider connection pair.

    Decisions are synchronous so a single event is fully handled before the
    next event of the same pair is looked at.
    """

    def __init__(
        self,
        session_id: str,
        connection_state: ConnectionState,
        on_turn_finalized: Callable[[str, int], None],
    ):
        """
        Args:
            session_id: Connection pair identifier (for logging)
            connection_state: RAG gate shared with the control channel
            on_turn_finalized: Called with (transcript, turn_id) when a turn
                enters PROCESSING. Must not block; it schedules retrieval.
        """
        self.session_id = session_id
        self.connection_state = connection_state
        self._on_turn_finalized = on_turn_finalized

        self.state_machine = StateMachine()
        self.transcript_buffer = TranscriptBuffer()
        self._turn_id = 0

        self.state_machine.register_on_enter(InterceptState.IDLE, self.transcript_buffer.clear)

    @property
    def state(self) -> InterceptState:
        return self.state_machine.current_state

    @property
    def rag_armed_this_turn(self) -> bool:
        return self.state in _ARMED_STATES

    @property
    def rag_processing(self) -> bool:
        return self.state == InterceptState.PROCESSING

    @property
    def current_turn_id(self) -> int:
        return self._turn_id

    def on_provider_event(self, event: dict) -> bool:
        """
        Classify a provider event and update turn state.

        Args:
            event: Parsed Realtime API server event

        Returns:
            True if the event should be relayed to the client
        """
        kind = classify_provider_event(event)

        if kind == ProviderEventKind.SPEECH_STARTED:
            self._handle_speech_started()
            return True

        if kind == ProviderEventKind.TRANSCRIPT_DELTA:
            fragment = event.get("delta")
            if self.rag_armed_this_turn and isinstance(fragment, str):
                self._capture_fragment(fragment)
            return True

        if kind == ProviderEventKind.TRANSCRIPT_DONE:
            if self.rag_armed_this_turn:
                return self._finalize_turn()
            return True

        if kind in _SUPPRESSED_WHILE_PROCESSING and self.rag_processing:
            logger.debug(
                f"[{self.session_id}] Suppressing {event.get('type')} while RAG turn {self._turn_id} is processing"
            )
            return False

        return True

    def on_client_event(self, event: dict) -> bool:
        """
        Filter a client event before it is forwarded upstream.

        Args:
            event: Parsed client event

        Returns:
            True if the event should be forwarded to the provider
        """
        if classify_client_event(event) == ClientEventKind.RESPONSE_CREATE:
            if self.rag_armed_this_turn or self.rag_processing:
                logger.info(
                    f"[{self.session_id}] Dropping client response.create during RAG turn "
                    f"{self._turn_id} ({self.state.value})"
                )
                return False
        return True

    def finish_processing(self, turn_id: int) -> bool:
        """
        Completion callback for the retrieval side-channel.

        Idempotent: only the first call for the current processing turn has an
        effect. Calls for a turn that was already reset are ignored.

        Args:
            turn_id: Turn the finished retrieval belonged to

        Returns:
            True if the turn was still current and processing was cleared
        """
        if turn_id != self._turn_id or not self.rag_processing:
            logger.info(
                f"[{self.session_id}] RAG turn {turn_id} finished after it was cancelled "
                f"(current turn {self._turn_id}, state {self.state.value})"
            )
            return False

        self.state_machine.transition(InterceptState.IDLE, reason=f"rag turn {turn_id} finished")
        return True

    def reset(self, reason: str = "rag off") -> bool:
        """
        Force-reset any armed or processing turn to IDLE.

        In-flight retrieval is not cancelled; its completion callback becomes
        a no-op.

        Returns:
            True if a turn was interrupted
        """
        interrupted = self.state_machine.reset(reason=reason)
        self.transcript_buffer.clear()
        if interrupted:
            logger.info(f"[{self.session_id}] RAG turn {self._turn_id} reset ({reason})")
        return interrupted

    def _handle_speech_started(self):
        if not self.connection_state.rag_enabled:
            return

        if self.rag_processing:
            logger.debug(f"[{self.session_id}] Speech started while turn {self._turn_id} is processing - not arming")
            return

        self._turn_id += 1
        self.transcript_buffer.clear()
        self.state_machine.transition(InterceptState.TURN_ARMED, reason=f"speech started, turn {self._turn_id}")

    def _capture_fragment(self, fragment: str):
        self.transcript_buffer.append(fragment)
        if self.state == InterceptState.TURN_ARMED:
            self.state_machine.transition(InterceptState.CAPTURING, reason="first transcript fragment")

    def _finalize_turn(self) -> bool:
        transcript = self.transcript_buffer.get_query_text()

        if not transcript:
            logger.info(f"[{self.session_id}] Empty transcript for turn {self._turn_id} - not using RAG")
            self.state_machine.transition(InterceptState.IDLE, reason="empty transcript")
            return True

        self.transcript_buffer.lock()
        self.state_machine.transition(InterceptState.PROCESSING, reason="transcript finalized")
        logger.info(f"[{self.session_id}] RAG turn {self._turn_id} finalized: {transcript[:80]!r}")

        try:
            self._on_turn_finalized(transcript, self._turn_id)
        except Exception as e:
            logger.error(f"[{self.session_id}] Failed to dispatch RAG turn {self._turn_id}: {e}", exc_info=True)
            self.state_machine.reset(reason="dispatch failed")
            return True

        return False
