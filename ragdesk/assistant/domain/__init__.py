"""
Assistant Domain Layer
======================

Contains:
- Entities: knowledge documents, retrieval/rerank/answer values,
  conversation threads and messages, tagged inbound messages
- Tagged parse results for model output
- Prompt builders and output formatting

This layer is framework-agnostic and contains pure business logic.
"""

from ragdesk.assistant.domain.entities import (
    AnswerParsed,
    AnswerParseError,
    AnswerParseResult,
    Citation,
    ConversationThread,
    DirectInbound,
    GatewayInbound,
    GeneratedAnswer,
    Inbound,
    KnowledgeDocument,
    Message,
    RankedDocument,
    RerankParsed,
    RerankParseError,
    RerankParseResult,
    RerankScore,
    RetrievalCandidate,
    normalize_phone,
    utc_now,
)
from ragdesk.assistant.domain.prompts import (
    ANSWER_SCHEMA,
    RERANK_SCHEMA,
    AnswerPromptBuilder,
    RerankPromptBuilder,
)
from ragdesk.assistant.domain.formatting import (
    clean_answer_text,
    parse_answer_output,
    parse_rerank_output,
    valid_citation_indices,
)

__all__ = [
    "AnswerParsed",
    "AnswerParseError",
    "AnswerParseResult",
    "Citation",
    "ConversationThread",
    "DirectInbound",
    "GatewayInbound",
    "GeneratedAnswer",
    "Inbound",
    "KnowledgeDocument",
    "Message",
    "RankedDocument",
    "RerankParsed",
    "RerankParseError",
    "RerankParseResult",
    "RerankScore",
    "RetrievalCandidate",
    "normalize_phone",
    "utc_now",
    "ANSWER_SCHEMA",
    "RERANK_SCHEMA",
    "AnswerPromptBuilder",
    "RerankPromptBuilder",
    "clean_answer_text",
    "parse_answer_output",
    "parse_rerank_output",
    "valid_citation_indices",
]
