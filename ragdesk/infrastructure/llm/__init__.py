"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Z.AI) providing a clean interface for
embeddings and structured chat completions.

The domain layer depends on `ILLMClient`, never on a provider SDK. Clients
are built once by the container and injected.
"""

import asyncio
import hashlib
import json
import math
import time
from typing import List, Optional
from abc import ABC, abstractmethod

from openai import AsyncOpenAI
from zai import ZaiClient

from ragdesk.core import LLMException, ConfigurationException
from ragdesk.shared.infrastructure.logging import get_logger
from ragdesk.shared.text import tokenize

logger = get_logger(__name__)


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)


class ChatCompletionResult:
    """Result of a chat completion. `content` is the raw model text."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Only methods actually needed by the application are defined.
    """

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        model: Optional[str] = None,
        response_schema: Optional[dict] = None,
    ) -> ChatCompletionResult:
        """
        Generate chat completion.

        When `response_schema` is given ({"name", "schema"}) the provider is
        asked for JSON matching it; the content is still returned raw.
        """


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation for GPT models.

    The SDK retries rate-limit and overload responses itself with
    exponential backoff, bounded by `max_retries`.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        embedding_model: str,
        base_url: Optional[str] = None,
        max_retries: int = 3,
    ):
        if not api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=max_retries)
        self._model = model
        self._embedding_model = embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using OpenAI embedding model.

        Raises:
            LLMException: If embedding generation fails
        """
        try:
            response = await self._client.embeddings.create(
                model=self._embedding_model,
                input=text
            )
            return EmbeddingResult(
                embedding=response.data[0].embedding,
                model=self._embedding_model
            )
        except Exception as e:
            raise LLMException(f"Embedding generation failed: {str(e)}")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        model: Optional[str] = None,
        response_schema: Optional[dict] = None,
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Raises:
            LLMException: If completion fails
        """
        model = model or self._model
        kwargs = {}
        if response_schema:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_schema["name"],
                    "schema": response_schema["schema"],
                    "strict": True,
                },
            }

        start_time = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}", details={"operation": operation})

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        usage = response.usage

        logger.debug(
            "Chat completion finished",
            extra={"operation": operation, "model": model, "latency_ms": latency_ms}
        )
        return ChatCompletionResult(
            content=content,
            model=model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms
        )


class ZAIILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous; calls run in a worker thread. Z.AI has no
    json_schema mode, so the schema is appended to the system prompt and
    `json_object` output is requested.
    """

    def __init__(self, api_key: Optional[str], model: str, embedding_model: str):
        if not api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=api_key)
        self._model = model
        self._embedding_model = embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using Z.AI embedding model.

        Raises:
            LLMException: If embedding generation fails
        """
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text
            )
            return EmbeddingResult(
                embedding=response.data[0].embedding,
                model=self._embedding_model
            )
        except Exception as e:
            raise LLMException(f"Embedding generation failed: {str(e)}")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        model: Optional[str] = None,
        response_schema: Optional[dict] = None,
    ) -> ChatCompletionResult:
        """
        Generate chat completion using GLM.

        Raises:
            LLMException: If completion fails
        """
        model = model or self._model
        kwargs = {}
        if response_schema:
            messages = _with_schema_instruction(messages, response_schema["schema"])
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.perf_counter()
        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}", details={"operation": operation})

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        usage = getattr(response, "usage", None)
        # Estimate when the provider reports no usage
        prompt_tokens = getattr(usage, "prompt_tokens", None) or len(str(messages)) // 4
        completion_tokens = getattr(usage, "completion_tokens", None) or len(content) // 4

        return ChatCompletionResult(
            content=content,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


def _with_schema_instruction(messages: List[dict], schema: dict) -> List[dict]:
    instruction = (
        "\n\nRespond with a single JSON object matching this JSON schema, "
        f"and nothing else:\n{json.dumps(schema)}"
    )
    messages = [dict(m) for m in messages]
    if messages and messages[0].get("role") == "system":
        messages[0]["content"] = messages[0]["content"] + instruction
    else:
        messages.insert(0, {"role": "system", "content": instruction.strip()})
    return messages


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for development and tests.

    Embeddings are a deterministic hashed bag of words, so texts sharing
    words have positive cosine similarity. Structured completions return
    an empty judgment for reranking and a fixed answer citing source 1.
    """

    def __init__(self, dimension: int = 256):
        self._dimension = dimension

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(
            embedding=hashed_embedding(text, self._dimension),
            model="mock-embedding"
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        model: Optional[str] = None,
        response_schema: Optional[dict] = None,
    ) -> ChatCompletionResult:
        if operation == "rerank":
            content = json.dumps({"scores": []})
        elif operation == "answer":
            content = json.dumps({
                "text": "This is a mock answer based on the first source.",
                "cited_source_indices": [1],
            })
        else:
            content = "This is a mock LLM response for testing purposes."

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=0
        )


def hashed_embedding(text: str, dimension: int) -> List[float]:
    """Deterministic unit vector built from hashed tokens."""
    vector = [0.0] * dimension
    for token in tokenize(text):
        digest = hashlib.md5(token.encode("utf-8")).digest()
        vector[int.from_bytes(digest[:4], "big") % dimension] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]
