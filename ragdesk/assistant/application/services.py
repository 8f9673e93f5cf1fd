"""
Assistant Application Services
==============================

Retrieval, reranking and grounded answer generation.

Each service owns one pipeline stage and its degraded output: provider
errors and timeouts never escape a service, they become an empty candidate
list, a retrieval-order ranking or the canned insufficient-information
answer.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ragdesk.assistant.domain import (
    AnswerParseError,
    AnswerPromptBuilder,
    ANSWER_SCHEMA,
    Citation,
    ConversationThread,
    GeneratedAnswer,
    KnowledgeDocument,
    Message,
    RankedDocument,
    RERANK_SCHEMA,
    RerankParseError,
    RerankPromptBuilder,
    RerankScore,
    RetrievalCandidate,
    clean_answer_text,
    parse_answer_output,
    parse_rerank_output,
    valid_citation_indices,
)
from ragdesk.core import (
    GenerationFailure,
    LLMException,
    RerankFailure,
    RetrievalFailure,
    VectorStoreException,
)
from ragdesk.infrastructure.llm import ILLMClient
from ragdesk.infrastructure.vectorstore import IHybridSearch
from ragdesk.shared.infrastructure.logging import get_logger
from ragdesk.shared.text import clean_text, fold, truncate

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class IConversationStore(ABC):
    """
    Durable per-thread message log keyed by (channel, participant_id).

    Appends to the same key are serialized; different keys never contend.
    """

    @abstractmethod
    async def upsert(
        self,
        channel: str,
        connected_endpoint: str,
        participant_id: str,
        participant_name: Optional[str],
        message: Message,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ConversationThread:
        """
        Append `message`, creating the thread on first use.

        Idempotent by message id: a repeated id is not appended again and
        the returned thread has `replayed=True`.
        """

    @abstractmethod
    async def history(self, channel: str, participant_id: str, limit: int) -> List[Message]:
        """Trailing `limit` messages, oldest first. Empty for unknown threads."""

    @abstractmethod
    async def get_thread(self, channel: str, participant_id: str) -> Optional[ConversationThread]:
        """Full thread, or None."""


# ========== Services ==========

class RetrievalService:
    """
    Hybrid document retrieval.

    Embeds the query, then asks the hybrid search capability for eligible
    documents. Any failure is logged and yields no candidates.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        search: IHybridSearch,
        threshold: float = 0.2,
        blend_weight: float = 0.65,
        query_max_chars: int = 4000,
        embedding_timeout: float = 10.0,
        search_timeout: float = 10.0,
    ):
        self._llm = llm_client
        self._search = search
        self.threshold = threshold
        self.blend_weight = blend_weight
        self.query_max_chars = query_max_chars
        self.embedding_timeout = embedding_timeout
        self.search_timeout = search_timeout

    async def retrieve(self, query: str, limit: int = 12) -> List[RetrievalCandidate]:
        """Candidates sorted by combined score, best first, at most `limit`."""
        try:
            return await self._retrieve(query, limit)
        except RetrievalFailure as e:
            logger.warning(
                "Retrieval failed, continuing with no candidates",
                extra={"error": e.message, **e.details}
            )
            return []

    async def _retrieve(self, query: str, limit: int) -> List[RetrievalCandidate]:
        text = query[:self.query_max_chars]
        if not text.strip() or limit <= 0:
            return []

        try:
            embedding = await asyncio.wait_for(
                self._llm.generate_embedding(text),
                timeout=self.embedding_timeout
            )
        except asyncio.TimeoutError:
            raise RetrievalFailure("Embedding timed out", details={"timeout": self.embedding_timeout})
        except LLMException as e:
            raise RetrievalFailure(e.message)
        except Exception as e:
            raise RetrievalFailure(f"Embedding failed: {e!r}")

        try:
            hits = await asyncio.wait_for(
                self._search.search(
                    query_embedding=embedding.embedding,
                    query_text=text,
                    threshold=self.threshold,
                    limit=limit,
                    blend_weight=self.blend_weight,
                ),
                timeout=self.search_timeout
            )
        except asyncio.TimeoutError:
            raise RetrievalFailure("Hybrid search timed out", details={"timeout": self.search_timeout})
        except VectorStoreException as e:
            raise RetrievalFailure(e.message)
        except Exception as e:
            raise RetrievalFailure(f"Hybrid search failed: {e!r}")

        documents = [
            (hit.score, KnowledgeDocument(
                id=hit.id,
                title=hit.title,
                category=hit.category,
                content=hit.content,
                tags=list(hit.tags),
                status=hit.status,
            ))
            for hit in hits
        ]
        eligible = [(score, doc) for score, doc in documents if doc.is_eligible]
        # sort is stable, equal scores keep search order
        eligible.sort(key=lambda item: item[0], reverse=True)

        return [
            RetrievalCandidate(document=doc, score=score, rank=rank)
            for rank, (score, doc) in enumerate(eligible[:limit])
        ]


class RerankService:
    """
    LLM relevance judgment over retrieval candidates.

    Strictly narrows: the output is a subset of the input, at most `top_n`
    long. Unusable judgments fall back to the first `top_n` candidates in
    retrieval order, with no relevance score.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        model: Optional[str] = None,
        top_n: int = 5,
        content_chars: int = 800,
        max_tokens: int = 1000,
        timeout: float = 30.0,
    ):
        self._llm = llm_client
        self._model = model
        self.top_n = top_n
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._prompts = RerankPromptBuilder(content_chars=content_chars)

    async def rerank(self, candidates: Sequence[RetrievalCandidate], query: str) -> List[RankedDocument]:
        if not candidates:
            return []

        try:
            ranked = await self._rerank(candidates, query)
        except RerankFailure as e:
            logger.warning(
                "Rerank failed, keeping retrieval order",
                extra={"error": e.message, "candidates": len(candidates), **e.details}
            )
            return self.fallback(candidates)

        logger.info(
            "Candidates reranked",
            extra={"candidates": len(candidates), "kept": len(ranked)}
        )
        return ranked

    async def _rerank(self, candidates: Sequence[RetrievalCandidate], query: str) -> List[RankedDocument]:
        messages = self._prompts.build_messages(candidates, query)
        try:
            result = await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=0.0,
                    max_tokens=self.max_tokens,
                    operation="rerank",
                    model=self._model,
                    response_schema=RERANK_SCHEMA,
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise RerankFailure("Rerank timed out", details={"timeout": self.timeout})
        except LLMException as e:
            raise RerankFailure(e.message)
        except Exception as e:
            raise RerankFailure(f"Rerank call failed: {e!r}")

        parsed = parse_rerank_output(result.content)
        if isinstance(parsed, RerankParseError):
            raise RerankFailure("Unusable rerank output", details={"reason": parsed.reason})

        ranked = self.apply_scores(candidates, parsed.scores)
        if not ranked:
            raise RerankFailure("No score matched a candidate")
        return ranked

    def apply_scores(
        self,
        candidates: Sequence[RetrievalCandidate],
        scores: Sequence[RerankScore],
    ) -> List[RankedDocument]:
        """
        Order candidates by model score.

        Scores for unknown ids are ignored and the first score per id wins.
        Ties keep retrieval order. Unscored candidates are dropped.
        """
        by_id = {}
        for candidate in candidates:
            by_id.setdefault(candidate.id, candidate)

        scored = []
        seen = set()
        for entry in scores:
            candidate = by_id.get(entry.document_id)
            if candidate is None or entry.document_id in seen:
                continue
            seen.add(entry.document_id)
            scored.append((entry.score, candidate))

        scored.sort(key=lambda item: (-item[0], item[1].rank))
        return [
            RankedDocument(candidate=candidate, relevance_score=score)
            for score, candidate in scored[:self.top_n]
        ]

    def fallback(self, candidates: Sequence[RetrievalCandidate]) -> List[RankedDocument]:
        return [RankedDocument(candidate=c, relevance_score=None) for c in candidates[:self.top_n]]


class AnswerService:
    """
    Grounded answer generation.

    One generation call over the ranked documents and recent history. The
    answer cites sources by 1-based position in `ranked`; indices outside
    that range are dropped.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        insufficient_text: str,
        model: Optional[str] = None,
        content_chars: int = 700,
        temperature: float = 0.1,
        max_tokens: int = 300,
        timeout: float = 30.0,
    ):
        self._llm = llm_client
        self._model = model
        self.insufficient_text = insufficient_text
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._prompts = AnswerPromptBuilder(insufficient_text=insufficient_text, content_chars=content_chars)

    def is_insufficient(self, text: str) -> bool:
        """True when the model answered with the configured insufficient-information sentence."""
        marker = fold(self.insufficient_text).strip().rstrip(".!?")
        return bool(marker) and marker in fold(text)

    def canned(self, latency_ms: int = 0) -> GeneratedAnswer:
        return GeneratedAnswer(
            text=self.insufficient_text,
            is_fallback=True,
            latency_ms=latency_ms,
        )

    async def generate(
        self,
        ranked: Sequence[RankedDocument],
        query: str,
        history: Sequence[Message] = (),
    ) -> GeneratedAnswer:
        start_time = time.perf_counter()
        if not ranked:
            return self.canned()

        try:
            answer = await self._generate(ranked, query, history)
        except GenerationFailure as e:
            logger.warning(
                "Generation failed, answering with canned text",
                extra={"error": e.message, **e.details}
            )
            return self.canned(int((time.perf_counter() - start_time) * 1000))

        answer.latency_ms = int((time.perf_counter() - start_time) * 1000)
        return answer

    async def _generate(
        self,
        ranked: Sequence[RankedDocument],
        query: str,
        history: Sequence[Message],
    ) -> GeneratedAnswer:
        messages = self._prompts.build_messages(ranked, query, history)
        try:
            result = await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    operation="answer",
                    model=self._model,
                    response_schema=ANSWER_SCHEMA,
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise GenerationFailure("Generation timed out", details={"timeout": self.timeout})
        except LLMException as e:
            raise GenerationFailure(e.message)
        except Exception as e:
            raise GenerationFailure(f"Generation call failed: {e!r}")

        parsed = parse_answer_output(result.content)
        if isinstance(parsed, AnswerParseError):
            raise GenerationFailure("Unusable answer output", details={"reason": parsed.reason})

        text = clean_answer_text(parsed.text)
        if not text:
            raise GenerationFailure("Empty answer text")

        if self.is_insufficient(text):
            return GeneratedAnswer(text=text, model=result.model, is_fallback=True)

        indices = valid_citation_indices(parsed.indices, len(ranked))
        return GeneratedAnswer(
            text=text,
            cited_source_indices=indices,
            citations=self.build_citations(ranked, indices),
            model=result.model,
        )

    @staticmethod
    def build_citations(ranked: Sequence[RankedDocument], indices: Sequence[int]) -> List[Citation]:
        citations = []
        for index in indices:
            document = ranked[index - 1].document
            citations.append(Citation(
                index=index,
                document_id=document.id,
                title=document.title,
                category=document.category,
                snippet=truncate(clean_text(document.content), 200),
            ))
        return citations
