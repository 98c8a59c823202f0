"""
Exception types raised by the relay and its RAG side-channel.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class SessionConnectionError(RelayError):
    """Upstream Realtime session could not be established or is not open."""


class RetrievalError(RelayError):
    """Knowledge base search failed."""


class CompletionError(RelayError):
    """Completion request failed or returned no usable answer."""
