"""
Core Module
===========

Shared exception hierarchy.
"""

from .exceptions import (
    ApplicationException,
    RepositoryException,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
    VectorStoreException,
    MessagingGatewayException,
    PipelineStageFailure,
    RetrievalFailure,
    RerankFailure,
    GenerationFailure,
    DispatchFailure,
    PersistenceFailure,
)

__all__ = [
    "ApplicationException",
    "RepositoryException",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
    "VectorStoreException",
    "MessagingGatewayException",
    "PipelineStageFailure",
    "RetrievalFailure",
    "RerankFailure",
    "GenerationFailure",
    "DispatchFailure",
    "PersistenceFailure",
]
