"""
Vector Store Infrastructure
============================

Hybrid (dense vector + lexical) search over the knowledge base.

The knowledge base is owned by an external document store; this module only
reads from it. Two implementations share the `IHybridSearch` interface:

- `MilvusHybridSearch`: Zilliz Cloud / Milvus collection with a dense
  vector field and a BM25 sparse field, combined by `WeightedRanker`.
- `InMemoryHybridIndex`: cosine similarity plus token overlap, for
  development and tests.
"""

import asyncio
import math
from typing import Any, Dict, List, Optional, Sequence
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from pymilvus import AnnSearchRequest, MilvusClient, WeightedRanker

from ragdesk.config import ELIGIBLE_DOCUMENT_STATUSES
from ragdesk.core import ConfigurationException, VectorStoreException
from ragdesk.shared.infrastructure.logging import get_logger
from ragdesk.shared.text import clean_text, tokenize

logger = get_logger(__name__)


@dataclass
class SearchHit:
    """One document returned by hybrid search, with its combined score."""
    id: str
    title: str
    category: str
    content: Any
    score: float
    tags: List[str] = field(default_factory=list)
    status: str = "active"


@dataclass
class IndexedDocument:
    """A knowledge document held by the in-memory index."""
    id: str
    title: str
    content: Any
    category: str = ""
    tags: List[str] = field(default_factory=list)
    status: str = "active"
    embedding: Optional[List[float]] = None


class IHybridSearch(ABC):
    """Interface for the hybrid search capability."""

    @abstractmethod
    async def search(
        self,
        query_embedding: List[float],
        query_text: str,
        threshold: float,
        limit: int,
        blend_weight: float,
    ) -> List[SearchHit]:
        """
        Return eligible documents scoring at least `threshold`.

        `blend_weight` is the share of the combined score given to vector
        similarity; the remainder goes to lexical match.
        """


_OUTPUT_FIELDS = ["id", "title", "category", "content", "tags", "status"]


class MilvusHybridSearch(IHybridSearch):
    """
    Zilliz Cloud (Managed Milvus) hybrid search.

    Expects a collection with a `dense_vector` float vector field (COSINE)
    and a `sparse_vector` field populated by a BM25 function over the
    document text. The client is synchronous; calls run in a worker thread.
    """

    def __init__(
        self,
        uri: str,
        api_key: str,
        collection_name: str,
        dense_field: str = "dense_vector",
        sparse_field: str = "sparse_vector",
    ):
        if not uri:
            raise ConfigurationException("ZILLIZ_URI not configured")

        self._uri = uri
        self._api_key = api_key
        self._collection_name = collection_name
        self._dense_field = dense_field
        self._sparse_field = sparse_field
        self._client: Optional[MilvusClient] = None

    def _get_client(self) -> MilvusClient:
        if self._client is None:
            try:
                self._client = MilvusClient(uri=self._uri, token=self._api_key)
            except Exception as e:
                raise VectorStoreException(f"Failed to connect to Milvus: {str(e)}")
        return self._client

    @staticmethod
    def status_filter() -> str:
        statuses = ", ".join(f'"{status}"' for status in ELIGIBLE_DOCUMENT_STATUSES)
        return f"status in [{statuses}]"

    async def search(
        self,
        query_embedding: List[float],
        query_text: str,
        threshold: float,
        limit: int,
        blend_weight: float,
    ) -> List[SearchHit]:
        """
        Raises:
            VectorStoreException: If search fails
        """
        return await asyncio.to_thread(
            self._search_sync, query_embedding, query_text, threshold, limit, blend_weight
        )

    def _search_sync(
        self,
        query_embedding: List[float],
        query_text: str,
        threshold: float,
        limit: int,
        blend_weight: float,
    ) -> List[SearchHit]:
        client = self._get_client()
        expr = self.status_filter()

        dense_request = AnnSearchRequest(
            data=[query_embedding],
            anns_field=self._dense_field,
            param={"metric_type": "COSINE"},
            limit=limit,
            expr=expr,
        )
        sparse_request = AnnSearchRequest(
            data=[query_text],
            anns_field=self._sparse_field,
            param={"metric_type": "BM25"},
            limit=limit,
            expr=expr,
        )

        try:
            results = client.hybrid_search(
                collection_name=self._collection_name,
                reqs=[dense_request, sparse_request],
                ranker=WeightedRanker(blend_weight, 1.0 - blend_weight),
                limit=limit,
                output_fields=_OUTPUT_FIELDS,
            )
        except Exception as e:
            raise VectorStoreException(f"Hybrid search failed: {str(e)}")

        hits: List[SearchHit] = []
        if not results:
            return hits
        try:
            for hit in results[0]:
                score = float(hit["distance"])
                if score < threshold:
                    continue
                entity = hit.get("entity", {})
                hits.append(SearchHit(
                    id=str(entity.get("id", hit.get("id"))),
                    title=entity.get("title", ""),
                    category=entity.get("category", ""),
                    content=entity.get("content", ""),
                    tags=list(entity.get("tags") or []),
                    status=entity.get("status", "active"),
                    score=score,
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise VectorStoreException(f"Malformed hybrid search result: {str(e)}")
        return hits


class InMemoryHybridIndex(IHybridSearch):
    """
    In-process hybrid index.

    Vector score is cosine similarity clipped to [0, 1]; lexical score is
    the fraction of query tokens present in the document's title, category,
    tags and content.
    """

    def __init__(self, documents: Optional[Sequence[IndexedDocument]] = None):
        self._documents: Dict[str, IndexedDocument] = {}
        self._tokens: Dict[str, set] = {}
        for document in documents or []:
            self.add(document)

    def add(self, document: IndexedDocument) -> None:
        self._documents[document.id] = document
        searchable = " ".join([
            document.title,
            document.category,
            " ".join(document.tags),
            clean_text(document.content),
        ])
        self._tokens[document.id] = set(tokenize(searchable))

    def __len__(self) -> int:
        return len(self._documents)

    async def search(
        self,
        query_embedding: List[float],
        query_text: str,
        threshold: float,
        limit: int,
        blend_weight: float,
    ) -> List[SearchHit]:
        query_tokens = set(tokenize(query_text))
        scored = []
        for position, document in enumerate(self._documents.values()):
            if document.status not in ELIGIBLE_DOCUMENT_STATUSES:
                continue

            vector_score = 0.0
            if document.embedding is not None and query_embedding:
                vector_score = max(0.0, _cosine(query_embedding, document.embedding))

            lexical_score = 0.0
            if query_tokens:
                overlap = query_tokens & self._tokens[document.id]
                lexical_score = len(overlap) / len(query_tokens)

            score = blend_weight * vector_score + (1.0 - blend_weight) * lexical_score
            if score >= threshold and score > 0:
                scored.append((score, position, document))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            SearchHit(
                id=document.id,
                title=document.title,
                category=document.category,
                content=document.content,
                tags=list(document.tags),
                status=document.status,
                score=round(score, 6),
            )
            for score, _, document in scored[:limit]
        ]


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
