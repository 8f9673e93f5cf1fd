"""
Assistant Application Layer
===========================

Contains:
- Services: retrieval, reranking, answer generation
- Dispatcher: channel delivery with plain-text fallback
- Pipeline: per-message orchestration and fallback policy
- DTOs: data transfer objects for API serialization
"""

from ragdesk.assistant.application.services import (
    AnswerService,
    IConversationStore,
    RerankService,
    RetrievalService,
)
from ragdesk.assistant.application.dispatcher import (
    DEFAULT_ANSWER_ACTIONS,
    ChannelDispatcher,
    DispatchResult,
)
from ragdesk.assistant.application.pipeline import (
    PipelineOrchestrator,
    PipelineResult,
    PipelineStage,
)

__all__ = [
    "AnswerService",
    "IConversationStore",
    "RerankService",
    "RetrievalService",
    "DEFAULT_ANSWER_ACTIONS",
    "ChannelDispatcher",
    "DispatchResult",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineStage",
]
