"""
Dependency Container
====================

Builds every client and service once from `Settings` and hands them to the
pipeline. Nothing here is a module-level singleton: the application keeps
the container on `app.state`, tests build their own.
"""

from dataclasses import dataclass
from typing import Optional

from ragdesk.assistant.application import (
    DEFAULT_ANSWER_ACTIONS,
    AnswerService,
    ChannelDispatcher,
    IConversationStore,
    PipelineOrchestrator,
    RerankService,
    RetrievalService,
)
from ragdesk.assistant.infrastructure import (
    InMemoryConversationStore,
    MessagingProviderRepository,
    SQLAlchemyConversationStore,
    gateway_credentials_loader,
)
from ragdesk.config import LLMProvider, Settings
from ragdesk.infrastructure.database import Database
from ragdesk.infrastructure.llm import ILLMClient, MockLLMClient, OpenAILLMClient, ZAIILLMClient
from ragdesk.infrastructure.messaging import IMessagingGateway, ZAPIClient
from ragdesk.infrastructure.vectorstore import IHybridSearch, InMemoryHybridIndex, MilvusHybridSearch
from ragdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Container:
    """Everything the HTTP layer needs, built once per process."""
    settings: Settings
    llm_client: ILLMClient
    search: IHybridSearch
    store: IConversationStore
    gateway: Optional[IMessagingGateway]
    pipeline: PipelineOrchestrator
    database: Optional[Database] = None

    async def startup(self) -> None:
        if self.database is not None:
            await self.database.create_tables()

    async def shutdown(self) -> None:
        if self.gateway is not None:
            await self.gateway.close()
        if self.database is not None:
            await self.database.close()


def build_llm_client(settings: Settings) -> ILLMClient:
    if settings.llm_provider == LLMProvider.OPENAI:
        return OpenAILLMClient(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            embedding_model=settings.embedding_model,
            base_url=settings.openai_base_url,
            max_retries=settings.llm_max_retries,
        )
    if settings.llm_provider == LLMProvider.ZAI:
        return ZAIILLMClient(
            api_key=settings.zai_api_key,
            model=settings.llm_model,
            embedding_model=settings.embedding_model,
        )
    return MockLLMClient(dimension=settings.embedding_dimension)


def build_search(settings: Settings) -> IHybridSearch:
    if settings.knowledge_index_backend == "milvus":
        return MilvusHybridSearch(
            uri=settings.zilliz_uri,
            api_key=settings.zilliz_api_key,
            collection_name=settings.milvus_collection_name,
        )
    return InMemoryHybridIndex()


def build_pipeline(
    settings: Settings,
    llm_client: ILLMClient,
    search: IHybridSearch,
    store: IConversationStore,
    gateway: Optional[IMessagingGateway],
) -> PipelineOrchestrator:
    retrieval = RetrievalService(
        llm_client=llm_client,
        search=search,
        threshold=settings.retrieval_threshold,
        blend_weight=settings.retrieval_blend_weight,
        query_max_chars=settings.query_max_chars,
        embedding_timeout=settings.embedding_timeout_seconds,
        search_timeout=settings.search_timeout_seconds,
    )
    reranker = RerankService(
        llm_client=llm_client,
        model=settings.rerank_model,
        top_n=settings.rerank_top_n,
        content_chars=settings.rerank_content_chars,
        max_tokens=settings.rerank_max_tokens,
        timeout=settings.rerank_timeout_seconds,
    )
    generator = AnswerService(
        llm_client=llm_client,
        insufficient_text=settings.insufficient_information_text,
        model=settings.llm_model,
        content_chars=settings.context_content_chars,
        temperature=settings.llm_temperature,
        max_tokens=settings.answer_max_tokens,
        timeout=settings.generation_timeout_seconds,
    )
    dispatcher = ChannelDispatcher(
        gateway=gateway,
        plain_text_hint=settings.plain_text_reply_hint,
        timeout=settings.gateway_timeout_seconds,
    )
    return PipelineOrchestrator(
        store=store,
        retrieval=retrieval,
        reranker=reranker,
        generator=generator,
        dispatcher=dispatcher,
        gateway_channel=settings.gateway_channel,
        direct_channel=settings.direct_channel,
        no_documents_text=settings.no_documents_text,
        retrieval_limit=settings.retrieval_limit,
        history_window=settings.history_window,
        direct_connected_endpoint=settings.direct_connected_endpoint,
        direct_participant_name=settings.direct_participant_name,
        answer_actions=list(DEFAULT_ANSWER_ACTIONS) if settings.answer_buttons_enabled else None,
    )


def build_container(
    settings: Settings,
    llm_client: Optional[ILLMClient] = None,
    search: Optional[IHybridSearch] = None,
    store: Optional[IConversationStore] = None,
    gateway: Optional[IMessagingGateway] = None,
) -> Container:
    """
    Build the container. Any argument given replaces the client the
    settings would select.
    """
    database = None
    providers = None
    if store is None:
        if settings.storage_backend == "database":
            database = Database(
                settings.database_url,
                echo=settings.debug,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
            )
            store = SQLAlchemyConversationStore(database)
            providers = MessagingProviderRepository(database)
        else:
            store = InMemoryConversationStore()

    llm_client = llm_client or build_llm_client(settings)
    search = search or build_search(settings)
    if gateway is None:
        gateway = ZAPIClient(
            credentials_loader=gateway_credentials_loader(settings, providers),
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    logger.info(
        "Container built",
        extra={
            "llm_provider": settings.llm_provider,
            "storage_backend": settings.storage_backend if database or providers else "custom",
            "search_backend": type(search).__name__,
        }
    )
    return Container(
        settings=settings,
        llm_client=llm_client,
        search=search,
        store=store,
        gateway=gateway,
        pipeline=build_pipeline(settings, llm_client, search, store, gateway),
        database=database,
    )
