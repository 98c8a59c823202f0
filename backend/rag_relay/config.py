"""
Relay configuration from environment variables (and .env in development).
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Relay settings. Required: OPENAI_API_KEY and PINECONE_API_KEY.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # OpenAI
    openai_api_key: str = Field(
        ...,
        description="OpenAI API key for the Realtime, completion and embedding APIs"
    )
    openai_organization_id: Optional[str] = Field(
        default=None,
        description="OpenAI organization ID"
    )
    openai_project_id: Optional[str] = Field(
        default=None,
        description="OpenAI project ID for usage tracking"
    )
    openai_realtime_url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Realtime API websocket endpoint"
    )
    openai_realtime_model: str = Field(
        default="gpt-4o-realtime-preview",
        description="Realtime speech model the relay connects to"
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Chat completion model used to answer RAG turns"
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model used for retrieval queries"
    )

    # Pinecone (RAG)
    pinecone_api_key: str = Field(
        ...,
        description="Pinecone API key for vector database"
    )
    pinecone_index_name: str = Field(
        default="voice-agent-kb",
        description="Pinecone index name for knowledge base"
    )
    pinecone_namespace: Optional[str] = Field(
        default=None,
        description="Optional Pinecone namespace to query"
    )

    # RAG Settings
    rag_top_k: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum number of documents retrieved per turn"
    )
    rag_min_similarity: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Minimum similarity score for retrieval"
    )
    rag_context_chars_per_document: int = Field(
        default=300,
        ge=50,
        le=4000,
        description="Characters of each document included in the completion context"
    )
    rag_max_output_tokens: int = Field(
        default=200,
        ge=16,
        le=2000,
        description="Max tokens requested from the completion model"
    )
    rag_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for RAG answers"
    )
    rag_timeout_ms: int = Field(
        default=15000,
        ge=1000,
        le=120000,
        description="Upper bound for retrieval + completion before falling back"
    )
    injection_delay_ms: int = Field(
        default=200,
        ge=0,
        le=2000,
        description="Delay between creating the assistant item and asking the model to speak it"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Environment: development, staging, or production"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    # Server Settings
    host: str = Field(
        default="0.0.0.0",
        description="Server host address"
    )
    port: int = Field(
        default=3002,
        ge=1000,
        le=65535,
        description="Server port (websocket relay and webhook)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = ["development", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v_lower

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def realtime_ws_url(self) -> str:
        """Full Realtime API URL including the model query parameter."""
        return f"{self.openai_realtime_url}?model={self.openai_realtime_model}"


# Global settings instance
settings = Settings()
