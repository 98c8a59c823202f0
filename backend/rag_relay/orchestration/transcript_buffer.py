"""
Transcript buffer for the user utterance of an armed RAG turn.

Fragments are appended in arrival order with no reordering or deduplication.
The buffer is locked once the turn is handed to retrieval so late fragments
cannot change the query.
"""

import logging
from typing import List

logger = logging.getLogger(__name__)


class TranscriptBuffer:
    """
    Accumulates transcript delta fragments for the current turn.

    Key Features:
    - Plain concatenation of fragments (the provider sends deltas, not snapshots)
    - Buffer locking while the turn is being processed
    """

    def __init__(self):
        self._fragments: List[str] = []
        self._is_locked = False

    def append(self, fragment: str):
        """
        Append a transcript fragment.

        Args:
            fragment: Delta text exactly as received
        """
        if self._is_locked:
            logger.warning("Buffer is locked - ignoring transcript fragment")
            return

        self._fragments.append(fragment)
        logger.debug(f"Appended transcript fragment: {fragment[:50]!r}")

    def get_text(self) -> str:
        """Concatenation of all fragments, untrimmed."""
        return "".join(self._fragments)

    def get_query_text(self) -> str:
        """Concatenated text with surrounding whitespace removed."""
        return self.get_text().strip()

    def lock(self):
        """Lock the buffer while the turn is processed."""
        self._is_locked = True
        logger.debug("Buffer locked")

    def is_locked(self) -> bool:
        """Check if buffer is currently locked."""
        return self._is_locked

    def is_empty(self) -> bool:
        """True when no non-whitespace text has been captured."""
        return not self.get_query_text()

    def clear(self):
        """Clear all fragments and unlock."""
        self._fragments.clear()
        self._is_locked = False
        logger.debug("Buffer cleared")

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    def __repr__(self) -> str:
        locked_status = "locked" if self._is_locked else "unlocked"
        return f"TranscriptBuffer(fragments={self.fragment_count}, {locked_status})"
