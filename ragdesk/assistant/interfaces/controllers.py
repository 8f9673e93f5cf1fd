"""
Chat Controllers (API Routes)
=============================

FastAPI routes for the two delivery channels and thread history.

Controllers build tagged inbound values at the boundary and delegate to the
pipeline.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ragdesk.assistant.application import (
    IConversationStore,
    PipelineOrchestrator,
    PipelineResult,
    PipelineStage,
)
from ragdesk.assistant.application.dto import (
    ChatMetadata,
    CitationInfo,
    DirectChatRequest,
    DirectChatResponse,
    DocumentUsedInfo,
    MessageInfo,
    ThreadMessagesResponse,
    WebhookResponse,
    ZAPIWebhookPayload,
)
from ragdesk.assistant.domain import DirectInbound, GatewayInbound
from ragdesk.container import Container
from ragdesk.core import RepositoryException
from ragdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/chat", tags=["Chat"])


# ========== Dependencies ==========

def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Assistant not initialized")
    return container


def get_pipeline(container: Container = Depends(get_container)) -> PipelineOrchestrator:
    return container.pipeline


def get_store(container: Container = Depends(get_container)) -> IConversationStore:
    return container.store


def get_country_code(container: Container = Depends(get_container)) -> str:
    return container.settings.default_country_code


# ========== Route Handlers ==========

@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Messaging gateway webhook",
    description="Receives Z-API message events and answers through the gateway.",
)
async def gateway_webhook(
    payload: ZAPIWebhookPayload,
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> WebhookResponse:
    reason = payload.skip_reason()
    if reason:
        logger.info("Webhook event skipped", extra={"reason": reason})
        return WebhookResponse(skipped=True, reason=reason)

    inbound = GatewayInbound.from_webhook(payload)
    result = await pipeline.handle(inbound)

    return WebhookResponse(
        success=True,
        skipped=result.stage == PipelineStage.DUPLICATE,
        reason="duplicate" if result.stage == PipelineStage.DUPLICATE else None,
        stage=result.stage,
        sent=result.delivered,
        conversation_id=result.conversation_id,
        response_preview=(result.reply_text or "")[:100] or None,
        processing_time_ms=result.processing_time_ms,
    )


@router.post(
    "/message",
    response_model=DirectChatResponse,
    summary="Ask the assistant directly",
    description="Answers in the response body. Participant is the normalized phone, "
                "else `user_identifier`, else a new UUID.",
    responses={200: {"description": "Answer generated"}},
)
async def direct_message(
    payload: DirectChatRequest,
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
    country_code: str = Depends(get_country_code),
) -> DirectChatResponse:
    inbound = DirectInbound.from_request(payload, default_country_code=country_code)
    result = await pipeline.handle(inbound)
    return _direct_response(result)


def _direct_response(result: PipelineResult) -> DirectChatResponse:
    citations = result.answer.citations if result.answer else []
    return DirectChatResponse(
        response=result.reply_text or "",
        participant_id=result.participant_id,
        conversation_id=result.conversation_id,
        docs_used=[
            DocumentUsedInfo(id=item.id, title=item.document.title, relevance_score=item.relevance_score)
            for item in result.ranked
        ],
        citations=[
            CitationInfo(
                index=c.index,
                document_id=c.document_id,
                title=c.title,
                category=c.category,
                snippet=c.snippet,
            )
            for c in citations
        ],
        metadata=ChatMetadata(
            processing_time_ms=result.processing_time_ms,
            history_length=result.history_length,
            documents_found=result.candidates_found,
            documents_used=result.documents_used,
            stage=result.stage,
        ),
    )


@router.get(
    "/threads/{channel}/{participant_id}/messages",
    response_model=ThreadMessagesResponse,
    summary="Read thread history",
)
async def thread_messages(
    channel: str,
    participant_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    store: IConversationStore = Depends(get_store),
) -> ThreadMessagesResponse:
    try:
        messages = await store.history(channel, participant_id, limit)
    except RepositoryException as e:
        logger.error("History read failed", extra={"error": e.message, "channel": channel})
        raise HTTPException(status_code=503, detail="Conversation store unavailable")

    return ThreadMessagesResponse(
        channel=channel,
        participant_id=participant_id,
        messages=[MessageInfo(**message.to_dict()) for message in messages],
    )


chat_router = router
