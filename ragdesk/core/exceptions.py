"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Provider-level exceptions are raised by infrastructure adapters. Pipeline
stage failures carry the stage they happened in and are converted to a
degraded result by the service that owns the stage.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class VectorStoreException(ExternalServiceException):
    """Exception for vector store failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Vector Store", message, details)


class MessagingGatewayException(ExternalServiceException):
    """Exception for messaging gateway failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Messaging Gateway", message, details)


# ========== Pipeline stage failures ==========

class PipelineStageFailure(ApplicationException):
    """Base for a failure confined to one pipeline stage."""

    stage = "unknown"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, details)
        self.details.setdefault("stage", self.stage)


class RetrievalFailure(PipelineStageFailure):
    """Embedding or hybrid search failed or timed out."""
    stage = "retrieval"


class RerankFailure(PipelineStageFailure):
    """Reranker provider failed or returned unusable output."""
    stage = "rerank"


class GenerationFailure(PipelineStageFailure):
    """Answer provider failed or returned unusable output."""
    stage = "generation"


class DispatchFailure(PipelineStageFailure):
    """Gateway rejected the message, including the plain-text fallback."""
    stage = "dispatch"


class PersistenceFailure(PipelineStageFailure):
    """Conversation store write failed."""
    stage = "persistence"
