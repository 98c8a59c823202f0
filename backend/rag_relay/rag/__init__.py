"""
RAG (Retrieval-Augmented Generation) module for knowledge base lookups.
"""

from .vector_store import PineconeVectorStore
from .retriever import KnowledgeRetriever

__all__ = [
    "PineconeVectorStore",
    "KnowledgeRetriever",
]
