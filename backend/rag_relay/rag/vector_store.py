"""
Pinecone vector store interface for RAG lookups.
"""

from pinecone import Pinecone
from typing import Any, List, Optional
import asyncio
import logging

from rag_relay.errors import RetrievalError
from rag_relay.models import Document

logger = logging.getLogger(__name__)


class PineconeVectorStore:
    """Read-only interface to the knowledge base index."""

    def __init__(
        self,
        api_key: str,
        index_name: str,
        namespace: Optional[str] = None,
        index: Any = None,
    ):
        """
        Initialize Pinecone vector store.

        Args:
            api_key: Pinecone API key
            index_name: Name of the index to query
            namespace: Optional namespace inside the index
            index: Pre-built index handle (skips client construction)
        """
        self.index_name = index_name
        self.namespace = namespace

        if index is None:
            pc = Pinecone(api_key=api_key)
            index = pc.Index(index_name)
        self.index = index

        logger.info(f"Initialized Pinecone: index={index_name}, namespace={namespace}")

    async def search(
        self,
        query_embedding: List[float],
        top_k: int = 2,
        min_score: float = 0.0
    ) -> List[Document]:
        """
        Search for similar vectors in Pinecone.

        Args:
            query_embedding: Query vector embedding
            top_k: Number of results to return
            min_score: Minimum similarity score (0-1)

        Returns:
            Documents ordered by similarity

        Raises:
            RetrievalError: If the query fails
        """
        query_kwargs = {
            "vector": query_embedding,
            "top_k": top_k,
            "include_metadata": True,
        }
        if self.namespace:
            query_kwargs["namespace"] = self.namespace

        try:
            # Pinecone's client is synchronous - keep it off the event loop
            results = await asyncio.to_thread(self.index.query, **query_kwargs)
        except Exception as e:
            logger.error(f"Pinecone search failed: {e}")
            raise RetrievalError(f"Vector search failed: {e}") from e

        if results.matches:
            top_scores = [f"{m.score:.3f}" for m in results.matches[:5]]
            logger.info(f"📊 Top similarity scores: {', '.join(top_scores)}")

        documents = []
        for match in results.matches:
            if match.score is not None and match.score < min_score:
                continue
            metadata = match.metadata or {}
            content = metadata.get("text") or metadata.get("content") or ""
            if not content:
                logger.debug(f"Skipping match {match.id} without text metadata")
                continue
            documents.append(Document(
                content=content,
                score=match.score,
                source=metadata.get("filename") or metadata.get("source"),
            ))

        logger.info(
            f"Search returned {len(documents)} results above score {min_score} "
            f"(total matches: {len(results.matches)})"
        )
        return documents
