"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ragdesk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/ragdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    storage_backend: str = Field(
        default="database",
        description="Conversation store backend: 'database' or 'memory'"
    )

    # ========== LLM Provider ==========
    llm_provider: str = Field(
        default="openai",
        description="Provider for embeddings and generation: 'openai', 'zai' or 'mock'"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")

    llm_model: str = Field(default="gpt-4.1", description="Model for answer generation")
    rerank_model: str = Field(default="gpt-4.1", description="Model for LLM reranking")
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model"
    )
    embedding_dimension: int = Field(default=1536, description="Embedding vector dimension", ge=8)
    llm_temperature: float = Field(default=0.1, description="Answer temperature", ge=0.0, le=1.0)
    answer_max_tokens: int = Field(default=300, description="Max tokens for answers", ge=1, le=8000)
    rerank_max_tokens: int = Field(default=1000, description="Max tokens for rerank judgments", ge=1, le=8000)
    llm_max_retries: int = Field(
        default=3,
        description="Provider-side retries with backoff on rate limits",
        ge=0,
        le=10
    )

    # ========== Stage Timeouts (seconds) ==========
    embedding_timeout_seconds: float = Field(default=10.0, ge=0.1, le=120)
    search_timeout_seconds: float = Field(default=10.0, ge=0.1, le=120)
    rerank_timeout_seconds: float = Field(default=30.0, ge=0.1, le=300)
    generation_timeout_seconds: float = Field(default=30.0, ge=0.1, le=300)
    gateway_timeout_seconds: float = Field(default=10.0, ge=0.1, le=60)

    # ========== Retrieval ==========
    retrieval_limit: int = Field(default=12, description="Max retrieval candidates", ge=1, le=50)
    retrieval_threshold: float = Field(
        default=0.2,
        description="Minimum combined score for a candidate",
        ge=0.0,
        le=1.0
    )
    retrieval_blend_weight: float = Field(
        default=0.65,
        description="Share of the combined score given to vector similarity",
        ge=0.0,
        le=1.0
    )
    query_max_chars: int = Field(default=4000, description="Query truncation before embedding", ge=100)

    # ========== Rerank / Generation ==========
    rerank_top_n: int = Field(default=5, description="Max documents kept after reranking", ge=1, le=10)
    rerank_content_chars: int = Field(default=800, ge=100, le=4000)
    context_content_chars: int = Field(default=700, ge=100, le=4000)
    history_window: int = Field(default=10, description="Messages of history given to the generator", ge=0, le=50)

    # ========== Zilliz Cloud (Managed Milvus) ==========
    knowledge_index_backend: str = Field(
        default="milvus",
        description="Hybrid search backend: 'milvus' or 'memory'"
    )
    zilliz_uri: str = Field(default="", description="Zilliz Cloud / Milvus URI")
    zilliz_api_key: str = Field(default="", description="Zilliz Cloud API key")
    milvus_collection_name: str = Field(default="knowledge_documents", description="Milvus collection name")

    # ========== Z-API Messaging Gateway ==========
    zapi_instance_id: str = Field(default="", description="Z-API instance id")
    zapi_token: str = Field(default="", description="Z-API instance token")
    zapi_client_token: str = Field(default="", description="Z-API account client token")
    zapi_base_url: str = Field(default="https://api.z-api.io", description="Z-API base URL")
    gateway_provider_names: List[str] = Field(
        default=["zapi_whatsapp", "zapi"],
        description="messaging_providers rows checked in order before env settings"
    )
    answer_buttons_enabled: bool = Field(
        default=True,
        description="Attach action buttons to gateway answers"
    )

    # ========== Channels ==========
    gateway_channel: str = Field(default="chat-rag-whatsapp", description="Thread namespace for the gateway channel")
    direct_channel: str = Field(default="chat-rag-web", description="Thread namespace for the direct channel")
    direct_connected_endpoint: str = Field(default="system")
    direct_participant_name: str = Field(default="Web Chat")
    default_country_code: str = Field(default="55", description="Prefixed to bare national phone numbers")

    # ========== Canned Texts ==========
    no_documents_text: str = Field(
        default="Sorry, I could not find relevant information in the knowledge base."
    )
    insufficient_information_text: str = Field(
        default="There is insufficient information in the knowledge base to answer this specific question."
    )
    plain_text_reply_hint: str = Field(default="Reply directly to this message to respond.")

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        allowed = {"openai", "zai", "mock"}
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v

    @field_validator("storage_backend", "knowledge_index_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in {"database", "memory", "milvus"}:
            raise ValueError(f"unknown backend: {v}")
        return v

    @field_validator("gateway_channel", "direct_channel")
    @classmethod
    def validate_channel(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("channel namespace must not be empty")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class MessageDirection(str):
    """Direction of a conversation message."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str):
    """Delivery status recorded on a message."""
    RECEIVED = "RECEIVED"
    SENT = "SENT"
    FAILED = "FAILED"


class DocumentStatus(str):
    """Knowledge document lifecycle statuses."""
    ACTIVE = "active"
    APPROVED = "approved"
    ARCHIVED = "archived"


class LLMProvider(str):
    """Supported embedding/generation providers."""
    OPENAI = "openai"
    ZAI = "zai"
    MOCK = "mock"


# ========== Lists ==========

ELIGIBLE_DOCUMENT_STATUSES = [DocumentStatus.ACTIVE, DocumentStatus.APPROVED]
