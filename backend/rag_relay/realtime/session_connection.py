"""
OpenAI Realtime API session connection.

Owns one upstream websocket per browser client. Inbound server events are
decoded and handed to `on_event` in arrival order; outbound client events are
sent as JSON text frames.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from rag_relay.errors import SessionConnectionError
from rag_relay.models import build_assistant_message_item, build_speak_response

logger = logging.getLogger(__name__)


class RealtimeSessionConnection:
    """
    Manages the websocket connection to the OpenAI Realtime API.

    Features:
    - Sequential delivery of server events to a single callback
    - Close notification when the provider ends the session
    - Two-step assistant message injection (item, then response)
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        on_event: Callable[[dict], Awaitable[None]],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
        injection_delay_ms: int = 200,
        organization_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ):
        """
        Initialize Realtime session connection.

        Args:
            url: Realtime websocket URL including the model parameter
            api_key: OpenAI API key
            on_event: Callback for each decoded server event
            on_close: Callback when the provider closes the connection
            injection_delay_ms: Pause between creating an assistant item and
                asking the model to speak it
            organization_id: Optional OpenAI organization header
            project_id: Optional OpenAI project header
        """
        self.url = url
        self.api_key = api_key
        self.on_event = on_event
        self.on_close = on_close
        self.injection_delay_ms = injection_delay_ms
        self.organization_id = organization_id
        self.project_id = project_id

        self.ws: Optional[ClientConnection] = None
        self.is_connected = False
        self.is_closing = False
        self._receive_task: Optional[asyncio.Task] = None
        self._events_received = 0

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        if self.organization_id:
            headers["OpenAI-Organization"] = self.organization_id
        if self.project_id:
            headers["OpenAI-Project"] = self.project_id
        return headers

    async def connect(self):
        """
        Establish the websocket connection and start receiving.

        Raises:
            SessionConnectionError: If the connection cannot be established
        """
        if self.is_connected:
            logger.warning("Already connected to Realtime API")
            return

        try:
            self.ws = await connect(
                self.url,
                additional_headers=self._headers(),
                ping_interval=20,
                ping_timeout=10,
                max_size=None,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.error(f"Failed to connect to Realtime API: {e}")
            raise SessionConnectionError(f"Connection failed: {e}") from e

        self.is_connected = True
        logger.info(f"Connected to Realtime API | URL: {self.url}")

        self._receive_task = asyncio.create_task(self._receive_loop())

    async def send(self, event: dict):
        """
        Send a client event to the Realtime API.

        Args:
            event: Event dict with a `type` field

        Raises:
            SessionConnectionError: If the session is not connected
        """
        if not self.is_connected or self.ws is None:
            raise SessionConnectionError("Realtime session is not connected")

        logger.debug(f"Sending {event.get('type', 'unknown')} to Realtime API")
        try:
            await self.ws.send(json.dumps(event))
        except ConnectionClosed as e:
            raise SessionConnectionError(f"Realtime session closed while sending: {e}") from e

    async def inject_assistant_message(self, text: str):
        """
        Make the model speak `text` as its own turn.

        Creates an assistant conversation item, waits for the provider to
        register it, then requests an audio response for it.
        """
        await self.send(build_assistant_message_item(text))
        await asyncio.sleep(self.injection_delay_ms / 1000)
        await self.send(build_speak_response(text))
        logger.info(f"Injected assistant message ({len(text)} chars)")

    async def disconnect(self):
        """Gracefully close the Realtime connection."""
        if self.is_closing:
            return

        self.is_closing = True
        self.is_connected = False

        if self.ws:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error during Realtime disconnect: {e}")

        if self._receive_task and not self._receive_task.done():
            if self._receive_task is not asyncio.current_task():
                self._receive_task.cancel()
                try:
                    await self._receive_task
                except asyncio.CancelledError:
                    pass

        logger.info(f"Disconnected from Realtime API after {self._events_received} events")

    async def _receive_loop(self):
        """Continuously receive and dispatch server events until the socket closes."""
        try:
            async for message in self.ws:
                await self._process_message(message)
        except asyncio.CancelledError:
            logger.debug("Realtime receive loop cancelled")
            raise
        except ConnectionClosed as e:
            logger.info(f"Realtime connection closed: {e}")
        except Exception as e:
            logger.error(f"Fatal error in Realtime receive loop: {e}", exc_info=True)

        await self._handle_remote_close()

    async def _process_message(self, message):
        try:
            event = json.loads(message)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Failed to decode Realtime message: {e}")
            return

        if not isinstance(event, dict):
            logger.warning(f"Ignoring non-object Realtime message: {message!r:.100}")
            return

        self._events_received += 1
        try:
            await self.on_event(event)
        except Exception as e:
            logger.error(f"Error handling Realtime event {event.get('type')}: {e}", exc_info=True)

    async def _handle_remote_close(self):
        if self.is_closing:
            return

        self.is_connected = False
        logger.info("Realtime API closed the session")
        if self.on_close:
            await self.on_close()

    @property
    def connection_status(self) -> str:
        """Get current connection status."""
        if self.is_closing:
            return "closing"
        elif self.is_connected:
            return "connected"
        else:
            return "disconnected"
