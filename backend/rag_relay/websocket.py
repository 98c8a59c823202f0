"""
Connection registry and control-command fan-out.
Tracks live connection pairs and applies RAG toggles to them.
"""

import logging
from typing import Dict, Optional

from rag_relay.models import ControlCommand, DisableRag, EnableRag
from rag_relay.realtime.connection_pair import ConnectionPair

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages active connection pairs.

    Responsibilities:
    - Track active pairs (session_id → ConnectionPair)
    - Apply RAG on/off commands to every pair, or to one session
    - Report per-pair telemetry
    """

    def __init__(self):
        """Initialize connection manager."""
        # Active pairs: session_id → ConnectionPair
        self.active_connections: Dict[str, ConnectionPair] = {}

        logger.info("ConnectionManager initialized")

    def register(self, pair: ConnectionPair):
        """
        Start tracking a connection pair.

        Args:
            pair: Newly created connection pair
        """
        self.active_connections[pair.session_id] = pair
        logger.info(
            f"Client connected: session_id={pair.session_id}, "
            f"total_connections={len(self.active_connections)}"
        )

    def unregister(self, session_id: str):
        """
        Stop tracking a connection pair.

        Args:
            session_id: Session ID to remove
        """
        if self.active_connections.pop(session_id, None) is None:
            logger.warning(f"Attempted to unregister non-existent session: {session_id}")
            return

        logger.info(
            f"Client disconnected: session_id={session_id}, "
            f"remaining_connections={len(self.active_connections)}"
        )

    def apply_control_command(
        self,
        command: ControlCommand,
        session_id: Optional[str] = None
    ) -> int:
        """
        Apply a RAG toggle to tracked connections.

        Args:
            command: EnableRag or DisableRag
            session_id: Restrict to one session; None broadcasts to all

        Returns:
            Number of connections the command was applied to
        """
        if isinstance(command, EnableRag):
            enabled = True
        elif isinstance(command, DisableRag):
            enabled = False
        else:
            raise ValueError(f"Not a connection toggle: {command.type}")

        if session_id is not None:
            pair = self.active_connections.get(session_id)
            targets = [pair] if pair else []
        else:
            targets = list(self.active_connections.values())

        interrupted = 0
        for pair in targets:
            if pair.set_rag_enabled(enabled):
                interrupted += 1

        logger.info(
            f"RAG mode {'activated' if enabled else 'deactivated'} on {len(targets)} connections"
            + (f" ({interrupted} in-flight turns reset)" if interrupted else "")
        )
        return len(targets)

    def get_session_count(self) -> int:
        """Get count of active sessions."""
        return len(self.active_connections)

    def get_telemetry(self) -> list[dict]:
        """Telemetry snapshot for every tracked pair."""
        return [pair.get_telemetry() for pair in self.active_connections.values()]

    def session_exists(self, session_id: str) -> bool:
        """
        Check if session exists.

        Args:
            session_id: Session ID

        Returns:
            True if session exists, False otherwise
        """
        return session_id in self.active_connections


# Global connection manager instance
connection_manager = ConnectionManager()
