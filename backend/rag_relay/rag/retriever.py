"""
RAG retriever: embeds the spoken query and searches the knowledge base.
"""

from typing import Dict, List
from openai import AsyncOpenAI, OpenAIError
import logging

from rag_relay.errors import RetrievalError
from rag_relay.models import Document
from .vector_store import PineconeVectorStore

logger = logging.getLogger(__name__)


class KnowledgeRetriever:
    """Handle query embedding and document retrieval for RAG."""

    def __init__(
        self,
        vector_store: PineconeVectorStore,
        openai_client: AsyncOpenAI,
        embedding_model: str = "text-embedding-3-small",
        min_similarity: float = 0.0,
        cache_size: int = 100,
    ):
        """
        Initialize RAG retriever.

        Args:
            vector_store: Pinecone vector store instance
            openai_client: OpenAI async client for query embeddings
            embedding_model: Embedding model name
            min_similarity: Minimum similarity score (0-1)
            cache_size: Number of query embeddings kept in memory
        """
        self.vector_store = vector_store
        self.openai_client = openai_client
        self.embedding_model = embedding_model
        self.min_similarity = min_similarity
        self.max_cache_size = cache_size

        # Simple in-memory cache for query embeddings
        self._embedding_cache: Dict[str, List[float]] = {}

        logger.info(
            f"Initialized KnowledgeRetriever: embedding={embedding_model}, "
            f"min_similarity={min_similarity}"
        )

    async def search(self, query: str, limit: int = 2) -> List[Document]:
        """
        Retrieve the documents most relevant to a query.

        Args:
            query: Raw user transcript
            limit: Maximum number of documents

        Returns:
            Documents ordered by relevance (possibly empty)

        Raises:
            RetrievalError: If embedding or search fails
        """
        logger.info(f"Starting knowledge base search: query={query[:50]!r}, limit={limit}")

        query_embedding = await self._get_query_embedding(query)
        documents = await self.vector_store.search(
            query_embedding=query_embedding,
            top_k=limit,
            min_score=self.min_similarity
        )
        return documents[:limit]

    async def _get_query_embedding(self, query: str) -> List[float]:
        """
        Generate embedding for query with caching.

        Args:
            query: Query text

        Returns:
            Embedding vector
        """
        # Normalize query for cache key
        cache_key = query.lower().strip()

        if cache_key in self._embedding_cache:
            logger.debug("Cache hit for query embedding")
            return self._embedding_cache[cache_key]

        try:
            response = await self.openai_client.embeddings.create(
                model=self.embedding_model,
                input=query,
            )
        except OpenAIError as e:
            logger.error(f"Failed to generate query embedding: {e}")
            raise RetrievalError(f"Embedding request failed: {e}") from e

        if not response.data:
            raise RetrievalError("Embedding response contained no vectors")
        embedding = response.data[0].embedding

        # Cache for future queries (limit cache size)
        if len(self._embedding_cache) >= self.max_cache_size:
            # Remove oldest entry (simple FIFO)
            oldest_key = next(iter(self._embedding_cache))
            del self._embedding_cache[oldest_key]

        self._embedding_cache[cache_key] = embedding
        logger.debug("Generated and cached query embedding")
        return embedding

    def clear_cache(self):
        """Clear the embedding cache."""
        self._embedding_cache.clear()
        logger.info("Cleared embedding cache")

    @property
    def cache_size(self) -> int:
        """Get current cache size."""
        return len(self._embedding_cache)
