"""
Webhook endpoint for RAG chat commands (separate from speech).

Chat messages containing "rag on", "rag off" or "rag test <query>" toggle
interception on every tracked connection or run a test search.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from ..models import (
    ControlCommand,
    DisableRag,
    EnableRag,
    SearchQuery,
    WebhookRequest,
    WebhookResponse,
)
from ..websocket import connection_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])

CHAT_MESSAGE_EVENT = "participant_events.chat_message"
_RAG_TEST_PATTERN = re.compile(r"rag test", re.IGNORECASE)


def parse_chat_command(text: str) -> Optional[ControlCommand]:
    """
    Map a chat message to a control command.

    Args:
        text: Raw chat message text

    Returns:
        The matching command, or None if the message is not a RAG command
    """
    lowered = text.lower()
    if "rag on" in lowered:
        return EnableRag()
    if "rag off" in lowered:
        return DisableRag()
    if "rag test" in lowered:
        query = _RAG_TEST_PATTERN.sub("", text, count=1).strip()
        return SearchQuery(query=query or "test query")
    return None


def _extract_chat_message(data: dict) -> tuple[str, str]:
    """Pull (text, sender name) out of a chat message webhook payload."""
    try:
        message = data["data"]
        text = message["data"]["text"]
        sender = message.get("participant") or {}
    except (KeyError, TypeError) as e:
        raise HTTPException(status_code=400, detail=f"Malformed chat message payload: missing {e}")

    if not isinstance(text, str):
        raise HTTPException(status_code=400, detail="Chat message text must be a string")
    sender_name = sender.get("name", "unknown") if isinstance(sender, dict) else "unknown"
    return text, sender_name


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(body: WebhookRequest, request: Request):
    """
    Receive chat platform events and apply RAG commands.

    Returns:
        {"success": true} once the command (if any) has been applied
    """
    try:
        logger.info(f"Webhook received: {body.model_dump_json()}")

        if body.event != CHAT_MESSAGE_EVENT:
            return WebhookResponse()

        text, sender = _extract_chat_message(body.data)
        logger.info(f'Received chat message: "{text}" from {sender}')

        command = parse_chat_command(text)
        if isinstance(command, SearchQuery):
            orchestrator = request.app.state.orchestrator
            await orchestrator.test_query(command.query)
        elif command is not None:
            connection_manager.apply_control_command(command)

        return WebhookResponse()

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
