"""
Realtime speech relay with a retrieval-augmented side-channel.
"""

__version__ = "0.1.0"
