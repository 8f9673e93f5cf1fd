"""Tests for retrieval, rerank and answer services."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from ragdesk.assistant.application import AnswerService, RerankService, RetrievalService
from ragdesk.assistant.domain import Message, RankedDocument
from ragdesk.core import VectorStoreException
from ragdesk.infrastructure.vectorstore import IHybridSearch, SearchHit

from .conftest import ScriptedLLM, make_candidates, scores_reply

INSUFFICIENT = "There is insufficient information in the knowledge base to answer this specific question."


def hit(doc_id, score, status="active"):
    return SearchHit(id=doc_id, title=f"Title {doc_id}", category="General", content="body", score=score, status=status)


def ranked_from(count):
    return [RankedDocument(candidate=c, relevance_score=90.0 - c.rank) for c in make_candidates(count)]


class TestRetrievalService:
    @pytest.mark.asyncio
    async def test_sorts_by_score_and_assigns_ranks(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.return_value = [hit("a", 0.3), hit("b", 0.9), hit("c", 0.5)]
        service = RetrievalService(ScriptedLLM(), search)

        candidates = await service.retrieve("printer offline")

        assert [c.id for c in candidates] == ["b", "c", "a"]
        assert [c.rank for c in candidates] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_equal_scores_keep_search_order(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.return_value = [hit("first", 0.5), hit("second", 0.5)]
        service = RetrievalService(ScriptedLLM(), search)

        candidates = await service.retrieve("anything")

        assert [c.id for c in candidates] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_drops_ineligible_documents(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.return_value = [
            hit("active", 0.4),
            hit("archived", 0.9, status="archived"),
            hit("approved", 0.5, status="approved"),
        ]
        service = RetrievalService(ScriptedLLM(), search)

        candidates = await service.retrieve("anything")

        assert [c.id for c in candidates] == ["approved", "active"]

    @pytest.mark.asyncio
    async def test_respects_limit(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.return_value = [hit(str(i), 1.0 - i / 10) for i in range(6)]
        service = RetrievalService(ScriptedLLM(), search)

        candidates = await service.retrieve("anything", limit=3)

        assert len(candidates) == 3

    @pytest.mark.asyncio
    async def test_passes_thresholds_and_truncated_query(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.return_value = []
        service = RetrievalService(ScriptedLLM(), search, threshold=0.3, blend_weight=0.7, query_max_chars=100)

        await service.retrieve("x" * 500, limit=4)

        kwargs = search.search.call_args.kwargs
        assert kwargs["threshold"] == 0.3
        assert kwargs["blend_weight"] == 0.7
        assert kwargs["limit"] == 4
        assert len(kwargs["query_text"]) == 100

    @pytest.mark.asyncio
    async def test_embedding_failure_yields_no_candidates(self):
        search = AsyncMock(spec=IHybridSearch)
        service = RetrievalService(ScriptedLLM(fail_embedding=True), search)

        assert await service.retrieve("anything") == []
        search.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_search_failure_yields_no_candidates(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.side_effect = VectorStoreException("Hybrid search failed: down")
        service = RetrievalService(ScriptedLLM(), search)

        assert await service.retrieve("anything") == []

    @pytest.mark.asyncio
    async def test_search_timeout_yields_no_candidates(self):
        async def slow_search(**kwargs):
            await asyncio.sleep(1)
            return [hit("late", 0.9)]

        search = AsyncMock(spec=IHybridSearch)
        search.search.side_effect = slow_search
        service = RetrievalService(ScriptedLLM(), search, search_timeout=0.01)

        assert await service.retrieve("anything") == []

    @pytest.mark.asyncio
    async def test_unexpected_search_error_yields_no_candidates(self):
        search = AsyncMock(spec=IHybridSearch)
        search.search.side_effect = ConnectionError("index down")
        service = RetrievalService(ScriptedLLM(), search)

        assert await service.retrieve("anything") == []

    @pytest.mark.asyncio
    async def test_unexpected_embedding_error_yields_no_candidates(self):
        search = AsyncMock(spec=IHybridSearch)
        service = RetrievalService(ScriptedLLM(errors={"embedding": RuntimeError("bad payload")}), search)

        assert await service.retrieve("anything") == []
        search.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_timeout_yields_no_candidates(self):
        search = AsyncMock(spec=IHybridSearch)
        service = RetrievalService(ScriptedLLM(delay=1), search, embedding_timeout=0.01)

        assert await service.retrieve("anything") == []
        search.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_query_skips_providers(self):
        llm = ScriptedLLM()
        search = AsyncMock(spec=IHybridSearch)
        service = RetrievalService(llm, search)

        assert await service.retrieve("   ") == []
        assert llm.embedding_calls == 0


class TestRerankService:
    @pytest.mark.asyncio
    async def test_empty_candidates_skip_the_model(self):
        llm = ScriptedLLM()
        service = RerankService(llm)

        assert await service.rerank([], "query") == []
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_orders_by_model_score(self):
        candidates = make_candidates(4)
        llm = ScriptedLLM(rerank_reply=scores_reply({"doc-2": 90, "doc-0": 40, "doc-3": 75}))
        service = RerankService(llm)

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == ["doc-2", "doc-3", "doc-0"]
        assert [r.relevance_score for r in ranked] == [90.0, 75.0, 40.0]

    @pytest.mark.asyncio
    async def test_ties_keep_retrieval_order(self):
        candidates = make_candidates(3)
        llm = ScriptedLLM(rerank_reply=scores_reply({"doc-2": 50, "doc-1": 50, "doc-0": 50}))
        service = RerankService(llm)

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == ["doc-0", "doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_unknown_ids_are_never_added(self):
        candidates = make_candidates(2)
        llm = ScriptedLLM(rerank_reply=scores_reply({"invented": 99, "doc-1": 60}))
        service = RerankService(llm)

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == ["doc-1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [1, 3, 5, 8, 12])
    async def test_output_is_bounded_subset(self, count):
        candidates = make_candidates(count)
        llm = ScriptedLLM(rerank_reply=scores_reply({c.id: 100 - c.rank for c in candidates}))
        service = RerankService(llm, top_n=5)

        ranked = await service.rerank(candidates, "query")

        assert len(ranked) <= min(5, count)
        assert {r.id for r in ranked} <= {c.id for c in candidates}

    @pytest.mark.asyncio
    async def test_malformed_output_falls_back_to_retrieval_order(self):
        candidates = make_candidates(7)
        service = RerankService(ScriptedLLM(rerank_reply="not json{"), top_n=5)

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == [f"doc-{i}" for i in range(5)]
        assert all(r.relevance_score is None for r in ranked)

    @pytest.mark.asyncio
    async def test_scores_for_unknown_ids_only_fall_back(self):
        candidates = make_candidates(2)
        service = RerankService(ScriptedLLM(rerank_reply=scores_reply({"ghost": 90})))

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == ["doc-0", "doc-1"]
        assert all(r.relevance_score is None for r in ranked)

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self):
        candidates = make_candidates(3)
        service = RerankService(ScriptedLLM(fail_operations={"rerank"}))

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == ["doc-0", "doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_falls_back(self):
        candidates = make_candidates(3)
        service = RerankService(ScriptedLLM(errors={"rerank": IndexError("list index out of range")}))

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == ["doc-0", "doc-1", "doc-2"]
        assert all(r.relevance_score is None for r in ranked)

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_retrieval_order(self):
        candidates = make_candidates(7)
        llm = ScriptedLLM(rerank_reply=scores_reply({"doc-6": 99}), delay=1)
        service = RerankService(llm, top_n=5, timeout=0.01)

        ranked = await service.rerank(candidates, "query")

        assert [r.id for r in ranked] == [f"doc-{i}" for i in range(5)]
        assert all(r.relevance_score is None for r in ranked)

    @pytest.mark.asyncio
    async def test_requests_structured_output(self):
        llm = ScriptedLLM(rerank_reply=scores_reply({"doc-0": 80}))
        service = RerankService(llm)

        await service.rerank(make_candidates(1), "query")

        call = llm.calls_for("rerank")[0]
        assert call["schema"]["name"] == "rerank_scores"
        assert "doc-0" in call["messages"][-1]["content"]


class TestAnswerService:
    @pytest.mark.asyncio
    async def test_builds_citations_from_valid_indices(self):
        llm = ScriptedLLM(answer_reply=json.dumps({"text": "Use option two [2]", "cited_source_indices": [2, 9, 0]}))
        service = AnswerService(llm, insufficient_text=INSUFFICIENT)

        answer = await service.generate(ranked_from(3), "query")

        assert answer.text == "Use option two."
        assert answer.cited_source_indices == [2]
        assert answer.cited_document_ids == ["doc-1"]
        assert answer.citations[0].title == "Document 1"
        assert answer.is_fallback is False

    @pytest.mark.asyncio
    async def test_provider_error_returns_canned_answer(self):
        service = AnswerService(ScriptedLLM(fail_operations={"answer"}), insufficient_text=INSUFFICIENT)

        answer = await service.generate(ranked_from(2), "query")

        assert answer.text == INSUFFICIENT
        assert answer.is_fallback is True
        assert answer.citations == []

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_returns_canned_answer(self):
        llm = ScriptedLLM(errors={"answer": IndexError("list index out of range")})
        service = AnswerService(llm, insufficient_text=INSUFFICIENT)

        answer = await service.generate(ranked_from(2), "query")

        assert answer.text == INSUFFICIENT
        assert answer.is_fallback is True

    @pytest.mark.asyncio
    async def test_timeout_returns_canned_answer(self):
        service = AnswerService(ScriptedLLM(delay=1), insufficient_text=INSUFFICIENT, timeout=0.01)

        answer = await service.generate(ranked_from(2), "query")

        assert answer.text == INSUFFICIENT
        assert answer.is_fallback is True
        assert answer.citations == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["no json here", json.dumps({"text": "   "}), json.dumps({"text": "**"})])
    async def test_unusable_output_returns_canned_answer(self, reply):
        service = AnswerService(ScriptedLLM(answer_reply=reply), insufficient_text=INSUFFICIENT)

        answer = await service.generate(ranked_from(2), "query")

        assert answer.text == INSUFFICIENT
        assert answer.is_fallback is True

    @pytest.mark.asyncio
    async def test_insufficient_answer_carries_no_citations(self):
        llm = ScriptedLLM(answer_reply=json.dumps({"text": INSUFFICIENT, "cited_source_indices": [1]}))
        service = AnswerService(llm, insufficient_text=INSUFFICIENT)

        answer = await service.generate(ranked_from(2), "query")

        assert answer.is_fallback is True
        assert answer.citations == []

    @pytest.mark.asyncio
    async def test_no_ranked_documents_skip_the_model(self):
        llm = ScriptedLLM()
        service = AnswerService(llm, insufficient_text=INSUFFICIENT)

        answer = await service.generate([], "query")

        assert answer.is_fallback is True
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_history_becomes_chat_turns(self):
        llm = ScriptedLLM()
        service = AnswerService(llm, insufficient_text=INSUFFICIENT)
        history = [Message.inbound("First question"), Message.outbound("First answer.", delivered=True)]

        await service.generate(ranked_from(1), "Follow up", history)

        messages = llm.calls_for("answer")[0]["messages"]
        assert messages[0]["role"] == "system"
        assert messages[1] == {"role": "user", "content": "First question"}
        assert messages[2] == {"role": "assistant", "content": "First answer."}
        assert "Follow up" in messages[-1]["content"]
        assert "[Source 1]" in messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_localized_insufficient_answer_is_a_fallback(self):
        canned = "Não há informações suficientes na base de conhecimento para responder a esta pergunta."
        reply = json.dumps({"text": "Nao ha informacoes suficientes na base de conhecimento para responder a esta pergunta [1]", "cited_source_indices": [1]})
        service = AnswerService(ScriptedLLM(answer_reply=reply), insufficient_text=canned)

        answer = await service.generate(ranked_from(2), "query")

        assert answer.is_fallback is True
        assert answer.citations == []
        assert answer.cited_source_indices == []
