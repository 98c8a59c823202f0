"""
Browser websocket endpoint: one connection pair per client socket.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, WebSocket

from ..realtime.client_channel import ClientChannel
from ..realtime.connection_pair import ConnectionPair
from ..websocket import connection_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/")
async def relay_endpoint(websocket: WebSocket):
    """
    Relay a browser client to its own Realtime session.

    The upstream session is opened in the background; client messages that
    arrive first are queued by the pair.
    """
    client = ClientChannel(websocket)
    await client.accept()

    pair = ConnectionPair(
        session_id=str(uuid.uuid4()),
        client=client,
        orchestrator=websocket.app.state.orchestrator,
        session_factory=websocket.app.state.session_factory,
    )
    connection_manager.register(pair)
    open_task = asyncio.create_task(pair.open())

    try:
        async for raw in client.messages():
            await pair.handle_client_message(raw)
    finally:
        if not open_task.done():
            open_task.cancel()
            try:
                await open_task
            except asyncio.CancelledError:
                pass
        await pair.close()
        connection_manager.unregister(pair.session_id)
