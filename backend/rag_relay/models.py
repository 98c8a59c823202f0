"""
Pydantic models and event classification for the relay.

Provider and client events are relayed as raw dicts so unknown fields survive
untouched. The relay only needs to know which lifecycle kind an event belongs
to, so events are decoded into a closed set of kinds with an explicit
PASSTHROUGH member for everything else.
"""

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field


# ============================================================================
# Realtime API event types
# ============================================================================

SPEECH_STARTED = "input_audio_buffer.speech_started"
SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
TRANSCRIPT_DELTA = "conversation.item.input_audio_transcription.delta"
TRANSCRIPT_DONE = "conversation.item.input_audio_transcription.completed"
CONVERSATION_ITEM_CREATED = "conversation.item.created"
RESPONSE_PREFIX = "response."

CONVERSATION_ITEM_CREATE = "conversation.item.create"
RESPONSE_CREATE = "response.create"


class ProviderEventKind(str, Enum):
    """Lifecycle kinds the interceptor distinguishes on the provider stream."""
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    TRANSCRIPT_DELTA = "transcript_delta"
    TRANSCRIPT_DONE = "transcript_done"
    RESPONSE = "response"
    ASSISTANT_ITEM_CREATED = "assistant_item_created"
    PASSTHROUGH = "passthrough"


class ClientEventKind(str, Enum):
    """Kinds the interceptor distinguishes on the client stream."""
    RESPONSE_CREATE = "response_create"
    PASSTHROUGH = "passthrough"


_PROVIDER_KINDS = {
    SPEECH_STARTED: ProviderEventKind.SPEECH_STARTED,
    SPEECH_STOPPED: ProviderEventKind.SPEECH_STOPPED,
    TRANSCRIPT_DELTA: ProviderEventKind.TRANSCRIPT_DELTA,
    TRANSCRIPT_DONE: ProviderEventKind.TRANSCRIPT_DONE,
}


def classify_provider_event(event: dict) -> ProviderEventKind:
    """
    Decode a provider event into its lifecycle kind.

    Args:
        event: Parsed Realtime API server event

    Returns:
        The matching ProviderEventKind, PASSTHROUGH for anything unrecognized
    """
    event_type = event.get("type")
    if not isinstance(event_type, str):
        return ProviderEventKind.PASSTHROUGH

    kind = _PROVIDER_KINDS.get(event_type)
    if kind is not None:
        return kind

    if event_type.startswith(RESPONSE_PREFIX):
        return ProviderEventKind.RESPONSE

    if event_type == CONVERSATION_ITEM_CREATED:
        item = event.get("item") or {}
        if isinstance(item, dict) and item.get("role") == "assistant":
            return ProviderEventKind.ASSISTANT_ITEM_CREATED

    return ProviderEventKind.PASSTHROUGH


def classify_client_event(event: dict) -> ClientEventKind:
    """Decode a client event into the kinds the interceptor cares about."""
    if event.get("type") == RESPONSE_CREATE:
        return ClientEventKind.RESPONSE_CREATE
    return ClientEventKind.PASSTHROUGH


# ============================================================================
# Outbound commands (relay → provider)
# ============================================================================

def build_assistant_message_item(text: str) -> dict:
    """
    Build a conversation.item.create command carrying an assistant message.

    Args:
        text: Message text the assistant should own

    Returns:
        Realtime API client event dict
    """
    return {
        "type": CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "message",
            "role": "assistant",
            "content": [{"type": "text", "text": text}],
        },
    }


def build_speak_response(text: str) -> dict:
    """Build a response.create command asking the model to voice `text`."""
    return {
        "type": RESPONSE_CREATE,
        "response": {
            "modalities": ["audio", "text"],
            "instructions": (
                "Say the following message to the user naturally, word for word, "
                f"without adding anything: {text}"
            ),
        },
    }


# ============================================================================
# Per-connection state
# ============================================================================

class ConnectionState(BaseModel):
    """RAG gate for one connection. Mutated only by control commands."""
    rag_enabled: bool = Field(
        default=False,
        description="True when RAG interception is armed for this connection"
    )


# ============================================================================
# Retrieval
# ============================================================================

class Document(BaseModel):
    """Single knowledge base search result."""
    content: str = Field(
        ...,
        description="Document text"
    )
    score: Optional[float] = Field(
        None,
        description="Similarity score reported by the vector store"
    )
    source: Optional[str] = Field(
        None,
        description="Filename or other origin of the document"
    )


# ============================================================================
# Control commands (webhook → connections)
# ============================================================================

class EnableRag(BaseModel):
    """Arm RAG interception."""
    type: Literal["enable_rag"] = "enable_rag"


class DisableRag(BaseModel):
    """Disarm RAG interception and cancel any in-flight turn."""
    type: Literal["disable_rag"] = "disable_rag"


class SearchQuery(BaseModel):
    """Run a retrieval outside of a voice turn and log the results."""
    type: Literal["search_query"] = "search_query"
    query: str = Field(
        ...,
        description="Query text sent to the knowledge base"
    )


ControlCommand = Union[EnableRag, DisableRag, SearchQuery]


# ============================================================================
# Webhook payloads
# ============================================================================

class WebhookRequest(BaseModel):
    """Body posted by the chat platform webhook."""
    event: str = Field(
        ...,
        description="Event name, e.g. participant_events.chat_message"
    )
    data: dict[str, Any] = Field(default_factory=dict)


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the webhook caller."""
    success: bool = True
