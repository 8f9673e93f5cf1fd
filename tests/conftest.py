"""Shared fixtures: settings, scripted providers, knowledge documents."""

import asyncio
import json
from typing import Callable, List, Optional, Union

import pytest

from ragdesk.assistant.application import (
    AnswerService,
    ChannelDispatcher,
    PipelineOrchestrator,
    RerankService,
    RetrievalService,
)
from ragdesk.assistant.domain import KnowledgeDocument, RetrievalCandidate
from ragdesk.assistant.infrastructure import InMemoryConversationStore
from ragdesk.config import Settings
from ragdesk.core import LLMException
from ragdesk.infrastructure.llm import (
    ChatCompletionResult,
    EmbeddingResult,
    ILLMClient,
    hashed_embedding,
)
from ragdesk.infrastructure.messaging import GatewayAction, IMessagingGateway
from ragdesk.infrastructure.vectorstore import IndexedDocument, InMemoryHybridIndex

DIMENSION = 256

Reply = Union[str, Callable[[List[dict]], str]]


class ScriptedLLM(ILLMClient):
    """
    Deterministic provider double.

    Embeddings are hashed bags of words. Rerank and answer replies are
    fixed strings or functions of the prompt messages. `errors` maps an
    operation ("embedding", "rerank", "answer") to the exception it raises;
    `delay` slows every call down.
    """

    def __init__(
        self,
        rerank_reply: Optional[Reply] = None,
        answer_reply: Optional[Reply] = None,
        fail_embedding: bool = False,
        fail_operations: Optional[set] = None,
        errors: Optional[dict] = None,
        delay: float = 0.0,
    ):
        self.rerank_reply = rerank_reply if rerank_reply is not None else json.dumps({"scores": []})
        self.answer_reply = answer_reply if answer_reply is not None else json.dumps(
            {"text": "Restart the point of sale.", "cited_source_indices": [1]}
        )
        self.fail_embedding = fail_embedding
        self.fail_operations = fail_operations or set()
        self.errors = errors or {}
        self.delay = delay
        self.embedding_calls = 0
        self.calls: List[dict] = []

    def calls_for(self, operation: str) -> List[dict]:
        return [call for call in self.calls if call["operation"] == operation]

    async def _before(self, operation: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.errors:
            raise self.errors[operation]

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        self.embedding_calls += 1
        await self._before("embedding")
        if self.fail_embedding:
            raise LLMException("Embedding generation failed: boom")
        return EmbeddingResult(embedding=hashed_embedding(text, DIMENSION), model="scripted-embedding")

    async def chat_completion(
        self,
        messages,
        temperature=0.3,
        max_tokens=1000,
        operation="chat_completion",
        model=None,
        response_schema=None,
    ) -> ChatCompletionResult:
        self.calls.append({"operation": operation, "messages": messages, "schema": response_schema})
        await self._before(operation)
        if operation in self.fail_operations:
            raise LLMException("Chat completion failed: boom")
        reply = self.rerank_reply if operation == "rerank" else self.answer_reply
        content = reply(messages) if callable(reply) else reply
        return ChatCompletionResult(
            content=content,
            model="scripted-model",
            prompt_tokens=10,
            completion_tokens=10,
            latency_ms=1,
        )


class FakeGateway(IMessagingGateway):
    """Records sends; rejects rich and/or plain sends on demand."""

    def __init__(self, reject_rich: bool = False, reject_plain: bool = False):
        self.reject_rich = reject_rich
        self.reject_plain = reject_plain
        self.sent: List[dict] = []
        self.closed = False

    async def send(self, destination: str, text: str, actions: Optional[List[GatewayAction]] = None) -> bool:
        self.sent.append({"destination": destination, "text": text, "actions": actions})
        if actions:
            return not self.reject_rich
        return not self.reject_plain

    async def close(self) -> None:
        self.closed = True


POS_DOCUMENT = IndexedDocument(
    id="doc-pos",
    title="Sistema travado ao vender no PDV",
    category="PDV",
    content="<p>Quando o sistema fica travado ao vender, feche o PDV, aguarde 30 segundos e abra novamente.</p>",
    tags=["pdv", "venda", "travamento"],
)
INVOICE_DOCUMENT = IndexedDocument(
    id="doc-invoice",
    title="Como emitir nota fiscal eletronica",
    category="Fiscal",
    content="Acesse o menu Fiscal e escolha Emitir NF-e.",
    tags=["fiscal"],
)
HOURS_DOCUMENT = IndexedDocument(
    id="doc-hours",
    title="Horario de atendimento do suporte",
    category="Institucional",
    content="O suporte atende de segunda a sexta, das 8h as 18h.",
    tags=["suporte"],
)
ARCHIVED_DOCUMENT = IndexedDocument(
    id="doc-archived",
    title="Sistema travado ao vender versao antiga",
    category="PDV",
    content="Procedimento antigo para travamento ao vender.",
    status="archived",
)


def embed_document(document: IndexedDocument) -> IndexedDocument:
    text = " ".join([document.title, document.category, " ".join(document.tags), str(document.content)])
    document.embedding = hashed_embedding(text, DIMENSION)
    return document


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        llm_provider="mock",
        storage_backend="memory",
        knowledge_index_backend="memory",
        embedding_dimension=DIMENSION,
        _env_file=None,
    )


@pytest.fixture
def knowledge_index() -> InMemoryHybridIndex:
    return InMemoryHybridIndex([
        embed_document(IndexedDocument(**vars(doc)))
        for doc in (POS_DOCUMENT, INVOICE_DOCUMENT, HOURS_DOCUMENT, ARCHIVED_DOCUMENT)
    ])


@pytest.fixture
def empty_index() -> InMemoryHybridIndex:
    return InMemoryHybridIndex()


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def make_candidates(count: int) -> List[RetrievalCandidate]:
    return [
        RetrievalCandidate(
            document=KnowledgeDocument(
                id=f"doc-{i}",
                title=f"Document {i}",
                category="General",
                content=f"Content of document {i}",
            ),
            score=1.0 - i * 0.01,
            rank=i,
        )
        for i in range(count)
    ]


def scores_reply(scores: dict) -> str:
    return json.dumps({"scores": [{"id": k, "score": v} for k, v in scores.items()]})


def build_pipeline(
    settings: Settings,
    llm: ILLMClient,
    index,
    store,
    gateway: Optional[IMessagingGateway] = None,
    answer_actions: Optional[List[GatewayAction]] = None,
) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        store=store,
        retrieval=RetrievalService(
            llm,
            index,
            threshold=settings.retrieval_threshold,
            blend_weight=settings.retrieval_blend_weight,
        ),
        reranker=RerankService(llm, top_n=settings.rerank_top_n),
        generator=AnswerService(llm, insufficient_text=settings.insufficient_information_text),
        dispatcher=ChannelDispatcher(gateway, plain_text_hint=settings.plain_text_reply_hint),
        gateway_channel=settings.gateway_channel,
        direct_channel=settings.direct_channel,
        no_documents_text=settings.no_documents_text,
        retrieval_limit=settings.retrieval_limit,
        history_window=settings.history_window,
        answer_actions=answer_actions,
    )
