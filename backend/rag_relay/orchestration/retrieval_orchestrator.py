"""
Retrieval Orchestrator - answers a finalized voice turn from the knowledge base.

Runs out-of-band as a task per RAG turn:
1. Search the knowledge base with the transcript
2. Build a bounded context from the top documents
3. Ask the completion model for a short spoken answer
4. Clear the processing gate, then inject the answer as an assistant turn

The gate is always cleared before injection so the provider's lifecycle events
for the injected answer are relayed to the client instead of suppressed.
"""

import asyncio
import logging
from typing import Callable, Protocol, Sequence

from rag_relay.errors import CompletionError, RetrievalError
from rag_relay.models import Document

logger = logging.getLogger(__name__)

NO_RESULTS_FALLBACK = (
    "I couldn't find anything about that in the knowledge base."
)
ERROR_FALLBACK = (
    "Sorry, I ran into a problem looking that up. Could you ask me again?"
)

SYSTEM_PROMPT = (
    "You are a helpful voice assistant answering questions from a knowledge base. "
    "Answer using only the information in the context below. "
    "Keep the answer short and natural for speech (2-3 sentences), no lists or markdown. "
    "If the context does not contain the answer, say you don't have that information."
)


class Retriever(Protocol):
    async def search(self, query: str, limit: int) -> Sequence[Document]: ...


class Completer(Protocol):
    async def complete(
        self, system: str, user: str, max_output_tokens: int, temperature: float
    ) -> str: ...


class AssistantMessageSink(Protocol):
    async def inject_assistant_message(self, text: str) -> None: ...


def build_context(documents: Sequence[Document], chars_per_document: int) -> str:
    """
    Build the completion context from retrieved documents.

    Each document is truncated to `chars_per_document` characters and labelled
    by its position, documents separated by a blank line.
    """
    return "\n\n".join(
        f"Document {position}: {document.content[:chars_per_document]}"
        for position, document in enumerate(documents, start=1)
    )


def build_system_prompt(context: str) -> str:
    return f"{SYSTEM_PROMPT}\n\nContext:\n{context}"


class RetrievalOrchestrator:
    """
    Performs retrieval + completion for one RAG turn and injects the result.

    Shared by all connections; per-turn state lives in the `run` call.
    """

    def __init__(
        self,
        retriever: Retriever,
        completion_client: Completer,
        top_k: int = 2,
        context_chars_per_document: int = 300,
        max_output_tokens: int = 200,
        temperature: float = 0.7,
        timeout_ms: int = 15000,
    ):
        self.retriever = retriever
        self.completion_client = completion_client
        self.top_k = top_k
        self.context_chars_per_document = context_chars_per_document
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.timeout_ms = timeout_ms

    async def run(
        self,
        session: AssistantMessageSink,
        transcript: str,
        on_finished: Callable[[], bool],
    ) -> None:
        """
        Answer one RAG turn. Never raises except on cancellation.

        Args:
            session: Upstream session the answer is injected into
            transcript: Finalized user transcript (query)
            on_finished: Clears the processing gate. Returns False when the
                turn was cancelled meanwhile, in which case nothing is injected.
        """
        start = asyncio.get_running_loop().time()
        logger.info(f"🔍 RAG turn started: {transcript[:80]!r}")

        try:
            answer = await asyncio.wait_for(
                self._answer(transcript),
                timeout=self.timeout_ms / 1000
            )
        except asyncio.CancelledError:
            on_finished()
            raise
        except asyncio.TimeoutError:
            logger.warning(f"RAG turn timed out after {self.timeout_ms}ms - using error fallback")
            answer = ERROR_FALLBACK
        except (RetrievalError, CompletionError) as e:
            logger.error(f"RAG turn failed: {e}")
            answer = ERROR_FALLBACK
        except Exception as e:
            logger.error(f"Unexpected error in RAG turn: {e}", exc_info=True)
            answer = ERROR_FALLBACK

        elapsed_ms = (asyncio.get_running_loop().time() - start) * 1000
        if not on_finished():
            logger.info(f"RAG turn cancelled after {elapsed_ms:.0f}ms - not injecting answer")
            return

        logger.info(f"✅ RAG answer ready in {elapsed_ms:.0f}ms: {answer[:80]!r}")
        try:
            await session.inject_assistant_message(answer)
        except Exception as e:
            logger.error(f"Failed to inject RAG answer: {e}")

    async def _answer(self, transcript: str) -> str:
        documents = await self.retriever.search(transcript, limit=self.top_k)

        if not documents:
            logger.info("No documents found - using no-results fallback")
            return NO_RESULTS_FALLBACK

        logger.info(f"Retrieved {len(documents)} documents")
        context = build_context(documents[:self.top_k], self.context_chars_per_document)

        answer = await self.completion_client.complete(
            system=build_system_prompt(context),
            user=transcript,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        if not answer or not answer.strip():
            raise CompletionError("Completion returned an empty answer")
        return answer.strip()

    async def test_query(self, query: str) -> list[Document]:
        """
        Run a retrieval outside of a voice turn and log what came back.

        Errors are logged and reported as an empty result.
        """
        logger.info(f"Testing RAG search: {query!r}")
        try:
            documents = list(await self.retriever.search(query, limit=self.top_k))
        except RetrievalError as e:
            logger.error(f"RAG test search failed: {e}")
            return []

        logger.info(f"RAG test returned {len(documents)} documents")
        for position, document in enumerate(documents, start=1):
            logger.info(
                f"  [{position}] score={document.score} source={document.source} | "
                f"{document.content[:80]}"
            )
        return documents
