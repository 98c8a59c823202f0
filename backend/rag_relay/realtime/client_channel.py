"""
Browser client channel - the downstream half of a connection pair.
"""

import json
import logging
from typing import AsyncIterator, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


def parse_client_message(raw: str) -> Optional[dict]:
    """
    Parse a raw client frame into an event dict.

    Args:
        raw: Text frame from the browser

    Returns:
        Event dict, or None if the frame is not a JSON object with a string `type`
    """
    try:
        event = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Error parsing event from client: {e} | data={raw!r:.200}")
        return None

    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        logger.warning(f"Dropping client message without a type: {raw!r:.200}")
        return None

    return event


class ClientChannel:
    """Wraps the browser websocket: inbound text frames, outbound JSON events."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self.websocket.client_state == WebSocketState.CONNECTED

    async def accept(self):
        await self.websocket.accept()

    async def messages(self) -> AsyncIterator[str]:
        """
        Yield raw frames as text until the client disconnects.

        Binary frames are decoded as UTF-8; frames that cannot be decoded are
        dropped with a warning.
        """
        try:
            while True:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(code=message.get("code", 1000), reason=message.get("reason"))

                text = message.get("text")
                if text is None:
                    data = message.get("bytes")
                    if data is None:
                        continue
                    try:
                        text = data.decode("utf-8")
                    except UnicodeDecodeError as e:
                        logger.warning(f"Dropping undecodable binary frame from client: {e}")
                        continue
                yield text
        except WebSocketDisconnect as e:
            logger.info(f"Client disconnected (code={e.code})")
        except RuntimeError as e:
            if not self._closed:
                raise
            logger.debug(f"Client channel closed locally: {e}")
        finally:
            self._closed = True

    async def send(self, event: dict) -> bool:
        """
        Send an event to the browser.

        Returns:
            True if sent, False if the client is gone
        """
        if not self.is_open:
            return False

        try:
            await self.websocket.send_text(json.dumps(event))
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.warning(f"Client disconnected while sending {event.get('type', 'unknown')}: {e}")
            self._closed = True
            return False

    async def close(self, code: int = 1000):
        """Close the browser connection if still open."""
        if self._closed:
            return
        self._closed = True
        if self.websocket.client_state == WebSocketState.CONNECTED:
            try:
                await self.websocket.close(code=code)
            except RuntimeError as e:
                logger.debug(f"Client websocket already closed: {e}")
