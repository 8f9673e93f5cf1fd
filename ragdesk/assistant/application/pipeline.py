"""
Pipeline Orchestrator
=====================

Runs one inbound message through the assistant:

    RECEIVED -> EMBEDDING -> RETRIEVED -> FALLBACK
                                       -> RERANKED -> GENERATED -> DISPATCHED -> PERSISTED
    any stage -> ERROR
    gateway event already answered -> DUPLICATE

Every invocation is independent. The only shared state is the conversation
store, whose appends serialize per thread.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ragdesk.assistant.domain import (
    DirectInbound,
    GatewayInbound,
    GeneratedAnswer,
    Inbound,
    Message,
    RankedDocument,
)
from ragdesk.core import PersistenceFailure, RepositoryException
from ragdesk.infrastructure.messaging import GatewayAction
from ragdesk.shared.infrastructure.logging import get_logger, log_latency

from .dispatcher import ChannelDispatcher, DispatchResult
from .services import AnswerService, IConversationStore, RerankService, RetrievalService

logger = get_logger(__name__)


class PipelineStage:
    """Pipeline states."""
    RECEIVED = "RECEIVED"
    EMBEDDING = "EMBEDDING"
    RETRIEVED = "RETRIEVED"
    FALLBACK = "FALLBACK"
    RERANKED = "RERANKED"
    GENERATED = "GENERATED"
    DISPATCHED = "DISPATCHED"
    PERSISTED = "PERSISTED"
    ERROR = "ERROR"
    DUPLICATE = "DUPLICATE"


@dataclass
class ThreadRoute:
    """Where an inbound message's conversation lives."""
    channel: str
    connected_endpoint: str
    participant_id: str
    participant_name: Optional[str]
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""
    stage: str
    trace: List[str]
    reply_text: Optional[str]
    delivered: bool
    channel: str
    participant_id: str
    conversation_id: Optional[str] = None
    candidates_found: int = 0
    ranked: List[RankedDocument] = field(default_factory=list)
    answer: Optional[GeneratedAnswer] = None
    history_length: int = 0
    processing_time_ms: int = 0

    @property
    def documents_used(self) -> int:
        return len(self.ranked)


class PipelineOrchestrator:
    """
    Sequences retrieval, rerank, generation, dispatch and persistence.

    Owns the fallback policy: an empty retrieval sends the no-documents
    text and stops; any unexpected error is logged and answered with the
    same text.
    """

    def __init__(
        self,
        store: IConversationStore,
        retrieval: RetrievalService,
        reranker: RerankService,
        generator: AnswerService,
        dispatcher: ChannelDispatcher,
        gateway_channel: str,
        direct_channel: str,
        no_documents_text: str,
        retrieval_limit: int = 12,
        history_window: int = 10,
        direct_connected_endpoint: str = "system",
        direct_participant_name: str = "Web Chat",
        answer_actions: Optional[List[GatewayAction]] = None,
    ):
        self._store = store
        self._retrieval = retrieval
        self._reranker = reranker
        self._generator = generator
        self._dispatcher = dispatcher
        self.gateway_channel = gateway_channel
        self.direct_channel = direct_channel
        self.no_documents_text = no_documents_text
        self.retrieval_limit = retrieval_limit
        self.history_window = history_window
        self.direct_connected_endpoint = direct_connected_endpoint
        self.direct_participant_name = direct_participant_name
        self.answer_actions = answer_actions

    def route(self, inbound: Inbound) -> ThreadRoute:
        if isinstance(inbound, GatewayInbound):
            return ThreadRoute(
                channel=self.gateway_channel,
                connected_endpoint=inbound.connected_phone,
                participant_id=inbound.phone,
                participant_name=inbound.sender_name,
                meta={"is_group": inbound.is_group},
            )
        if isinstance(inbound, DirectInbound):
            return ThreadRoute(
                channel=self.direct_channel,
                connected_endpoint=self.direct_connected_endpoint,
                participant_id=inbound.participant_id,
                participant_name=self.direct_participant_name,
            )
        raise TypeError(f"Unsupported inbound type: {type(inbound).__name__}")

    async def handle(self, inbound: Inbound) -> PipelineResult:
        start_time = time.perf_counter()
        route = self.route(inbound)
        result = PipelineResult(
            stage=PipelineStage.RECEIVED,
            trace=[PipelineStage.RECEIVED],
            reply_text=None,
            delivered=False,
            channel=route.channel,
            participant_id=route.participant_id,
        )

        try:
            await self._run(inbound, route, result)
        except Exception:
            logger.exception(
                "Pipeline failed",
                extra={
                    "channel": route.channel,
                    "participant_id": route.participant_id,
                    "stage": result.stage,
                }
            )
            await self._recover(inbound, route, result)

        result.processing_time_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "Pipeline finished",
            extra={
                "channel": route.channel,
                "stage": result.stage,
                "trace": result.trace,
                "delivered": result.delivered,
                "candidates_found": result.candidates_found,
                "documents_used": result.documents_used,
                "processing_time_ms": result.processing_time_ms,
            }
        )
        return result

    def _advance(self, result: PipelineResult, stage: str) -> None:
        result.stage = stage
        result.trace.append(stage)

    async def _run(self, inbound: Inbound, route: ThreadRoute, result: PipelineResult) -> None:
        query = inbound.text
        inbound_message = Message.inbound(
            query,
            message_id=inbound.message_id,
            channel=route.channel,
            sender_name=route.participant_name,
        )

        history: List[Message] = []
        try:
            thread = await self._store.upsert(
                route.channel,
                route.connected_endpoint,
                route.participant_id,
                route.participant_name,
                inbound_message,
                meta=route.meta,
            )
        except RepositoryException as e:
            failure = PersistenceFailure("Inbound message not persisted", details={"error": e.message})
            logger.error(failure.message, extra=failure.details)
        else:
            result.conversation_id = thread.id
            if (
                thread.replayed
                and isinstance(inbound, GatewayInbound)
                and thread.answered(inbound_message.id)
            ):
                logger.info(
                    "Duplicate gateway message ignored",
                    extra={"message_id": inbound.message_id, "channel": route.channel}
                )
                self._advance(result, PipelineStage.DUPLICATE)
                return
            if self._wants_history(inbound):
                history = [m for m in thread.messages if m.id != inbound_message.id]
                history = history[-self.history_window:] if self.history_window else []
        result.history_length = len(history)

        self._advance(result, PipelineStage.EMBEDDING)
        with log_latency(logger, "retrieval", channel=route.channel):
            candidates = await self._retrieval.retrieve(query, self.retrieval_limit)
        result.candidates_found = len(candidates)
        self._advance(result, PipelineStage.RETRIEVED)

        if not candidates:
            self._advance(result, PipelineStage.FALLBACK)
            dispatch = await self._dispatcher.dispatch(inbound, self.no_documents_text)
            result.reply_text = self.no_documents_text
            result.delivered = dispatch.delivered
            await self._persist_outbound(
                route,
                inbound_message.id,
                self.no_documents_text,
                dispatch,
                {"ai_generated": False, "fallback": "no_documents", "original_message": query},
            )
            return

        with log_latency(logger, "rerank", candidates=len(candidates)):
            ranked = await self._reranker.rerank(candidates, query)
        result.ranked = ranked
        self._advance(result, PipelineStage.RERANKED)

        with log_latency(logger, "generation", documents=len(ranked)):
            answer = await self._generator.generate(ranked, query, history)
        result.answer = answer
        result.reply_text = answer.text
        self._advance(result, PipelineStage.GENERATED)

        actions = self.answer_actions if not answer.is_fallback else None
        dispatch = await self._dispatcher.dispatch(inbound, answer.text, actions)
        result.delivered = dispatch.delivered
        self._advance(result, PipelineStage.DISPATCHED)

        persisted = await self._persist_outbound(
            route,
            inbound_message.id,
            answer.text,
            dispatch,
            {
                "ai_generated": True,
                "model": answer.model,
                "docs_used": [item.id for item in ranked],
                "relevance_scores": [item.relevance_score for item in ranked],
                "cited_document_ids": answer.cited_document_ids,
                "cited_source_indices": list(answer.cited_source_indices),
                "answer_fallback": answer.is_fallback,
                "original_message": query,
            },
        )
        if persisted:
            self._advance(result, PipelineStage.PERSISTED)

    def _wants_history(self, inbound: Inbound) -> bool:
        if isinstance(inbound, DirectInbound):
            return inbound.include_history
        return True

    async def _persist_outbound(
        self,
        route: ThreadRoute,
        in_reply_to: str,
        text: str,
        dispatch: DispatchResult,
        metadata: Dict[str, Any],
    ) -> bool:
        message = Message.outbound(
            text,
            delivered=dispatch.delivered,
            delivery_channel=dispatch.channel,
            used_plain_text_fallback=dispatch.used_plain_text_fallback,
            in_reply_to=in_reply_to,
            **metadata,
        )
        try:
            await self._store.upsert(
                route.channel,
                route.connected_endpoint,
                route.participant_id,
                route.participant_name,
                message,
            )
        except RepositoryException as e:
            failure = PersistenceFailure("Outbound message not persisted", details={"error": e.message})
            logger.error(failure.message, extra=failure.details)
            return False
        return True

    async def _recover(self, inbound: Inbound, route: ThreadRoute, result: PipelineResult) -> None:
        """Answer with the canned text after an unexpected error."""
        self._advance(result, PipelineStage.ERROR)
        result.reply_text = self.no_documents_text
        result.answer = None
        try:
            dispatch = await self._dispatcher.dispatch(inbound, self.no_documents_text)
        except Exception:
            logger.exception("Fallback dispatch failed", extra={"channel": route.channel})
            return
        result.delivered = dispatch.delivered
        try:
            await self._persist_outbound(
                route,
                inbound.message_id,
                self.no_documents_text,
                dispatch,
                {"ai_generated": False, "fallback": "error", "original_message": inbound.text},
            )
        except Exception:
            logger.exception("Fallback persistence failed", extra={"channel": route.channel})
