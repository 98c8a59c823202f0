"""
FastAPI application: browser relay websocket, RAG webhook and health check.

Run with: python -m rag_relay.main
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from openai import AsyncOpenAI

from rag_relay.api import relay, webhook
from rag_relay.config import settings
from rag_relay.llm.openai_client import CompletionClient
from rag_relay.orchestration.retrieval_orchestrator import RetrievalOrchestrator
from rag_relay.rag import KnowledgeRetriever, PineconeVectorStore
from rag_relay.realtime.connection_pair import SessionFactory
from rag_relay.realtime.session_connection import RealtimeSessionConnection
from rag_relay.websocket import connection_manager

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def build_session_factory() -> SessionFactory:
    """Factory for upstream Realtime sessions configured from settings."""
    def factory(on_event, on_close) -> RealtimeSessionConnection:
        return RealtimeSessionConnection(
            url=settings.realtime_ws_url,
            api_key=settings.openai_api_key,
            on_event=on_event,
            on_close=on_close,
            injection_delay_ms=settings.injection_delay_ms,
            organization_id=settings.openai_organization_id,
            project_id=settings.openai_project_id,
        )
    return factory


def build_orchestrator(completion_client: CompletionClient) -> RetrievalOrchestrator:
    """Wire Pinecone + OpenAI embeddings + completion into the orchestrator."""
    vector_store = PineconeVectorStore(
        api_key=settings.pinecone_api_key,
        index_name=settings.pinecone_index_name,
        namespace=settings.pinecone_namespace,
    )
    retriever = KnowledgeRetriever(
        vector_store=vector_store,
        openai_client=AsyncOpenAI(
            api_key=settings.openai_api_key,
            organization=settings.openai_organization_id,
            project=settings.openai_project_id,
        ),
        embedding_model=settings.openai_embedding_model,
        min_similarity=settings.rag_min_similarity,
    )
    return RetrievalOrchestrator(
        retriever=retriever,
        completion_client=completion_client,
        top_k=settings.rag_top_k,
        context_chars_per_document=settings.rag_context_chars_per_document,
        max_output_tokens=settings.rag_max_output_tokens,
        temperature=settings.rag_temperature,
        timeout_ms=settings.rag_timeout_ms,
    )


def create_app(
    orchestrator: Optional[RetrievalOrchestrator] = None,
    session_factory: Optional[SessionFactory] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        orchestrator: Pre-built orchestrator (built from settings when None)
        session_factory: Upstream session factory (built from settings when None)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        completion_client = None
        if orchestrator is None:
            completion_client = CompletionClient(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                organization_id=settings.openai_organization_id,
                project_id=settings.openai_project_id,
            )
            app.state.orchestrator = build_orchestrator(completion_client)
        else:
            app.state.orchestrator = orchestrator
        app.state.session_factory = session_factory or build_session_factory()

        logger.info(f"RAG relay started (environment={settings.environment})")
        try:
            yield
        finally:
            if completion_client is not None:
                await completion_client.close()
            logger.info("RAG relay stopped")

    app = FastAPI(title="Realtime RAG Relay", lifespan=lifespan)
    app.include_router(webhook.router)
    app.include_router(relay.router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "active_connections": connection_manager.get_session_count(),
            "connections": connection_manager.get_telemetry(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "rag_relay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.is_development,
    )
