"""
Shared test setup.

Settings are instantiated at import time, so the required keys must exist
before any rag_relay module that reads configuration is imported.
"""

import os

os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("PINECONE_API_KEY", "test-pinecone-key")
os.environ.setdefault("INJECTION_DELAY_MS", "0")
