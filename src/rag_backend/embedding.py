"""Embedding client abstraction for model-agnostic vector generation.

Supports the Hugging Face Inference API (default) and OpenAI. Batching, retry
with exponential backoff and vector-shape validation live in the shared base
class so every provider behaves the same way.
"""

import asyncio
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from loguru import logger
from openai import APIConnectionError, APIStatusError, AsyncOpenAI
from pydantic import BaseModel, Field

from rag_backend.errors import (
    DimensionMismatchError,
    EmbeddingAPIError,
    EmbeddingAuthenticationError,
    EmbeddingError,
    EmbeddingRateLimitError,
    EmbeddingResponseError,
    ModelLoadingError,
    VectorCountMismatchError,
)

HUGGINGFACE_INFERENCE_URL = "https://api-inference.huggingface.co/models"
CONNECTION_TEST_TEXT = "test"


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Provider-prefixed model id
            (e.g., "huggingface/sentence-transformers/all-MiniLM-L6-v2")
        dimensions: Expected embedding dimensionality
        batch_size: Number of texts sent per provider request in embed_batch
        max_retries: Attempts per batch before the error propagates
        timeout_seconds: Per-request timeout
        batch_delay_seconds: Pause between successful batches (rate limits)
        backoff_base_seconds: Backoff after the n-th failure is base * 2**n
        api_key: Provider API key (set via env var)
        base_url: Override for the provider endpoint
    """

    model: str = "huggingface/sentence-transformers/all-MiniLM-L6-v2"
    dimensions: int = Field(default=384, ge=128, le=4096)
    batch_size: int = Field(default=10, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    batch_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    backoff_base_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    api_key: str | None = None
    base_url: str | None = None


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts in a single provider request."""
        ...

    async def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: int | None = None,
        max_retries: int | None = None,
    ) -> list[list[float]]:
        """Embed texts in sequential, individually retried batches."""
        ...

    async def embed_query(self, query: str) -> list[float]:
        """Embed a search query."""
        ...

    async def test_connection(self) -> bool:
        """Return True if the provider produces correctly sized vectors."""
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b), "similarity")

    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot / (norm_a * norm_b)


def _is_vector(item: Any, dimensions: int) -> bool:
    return (
        isinstance(item, list)
        and len(item) == dimensions
        and all(isinstance(v, int | float) and not isinstance(v, bool) for v in item)
    )


def validate_vectors(payload: Any, dimensions: int) -> list[list[float]]:
    """Keep only well-formed vectors of the expected dimension.

    Invalid entries are dropped with a warning, so the result can be shorter
    than the request.

    Raises:
        EmbeddingResponseError: If the payload is not a list
    """
    if not isinstance(payload, list):
        raise EmbeddingResponseError("Invalid embeddings response format")

    valid = [[float(v) for v in item] for item in payload if _is_vector(item, dimensions)]

    if len(valid) != len(payload):
        logger.warning(
            f"Some embeddings were filtered out. Expected: {len(payload)}, Valid: {len(valid)}"
        )

    return valid


def classify_http_status(status: int | None, reason: str) -> EmbeddingAPIError:
    """Map a provider HTTP status to the matching typed error."""
    if status in (401, 403):
        return EmbeddingAuthenticationError(status, reason)
    if status == 429:
        return EmbeddingRateLimitError(status, reason)
    if status == 503:
        return ModelLoadingError(status, reason)
    return EmbeddingAPIError(status, reason)


class BaseEmbeddingClient(ABC):
    """Shared batching, retry and validation logic for embedding providers."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts in a single provider request.

        Args:
            texts: Input texts

        Returns:
            Valid vectors in provider order (invalid entries dropped)

        Raises:
            EmbeddingError: For classified provider failures
        """
        ...

    async def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: int | None = None,
        max_retries: int | None = None,
    ) -> list[list[float]]:
        """Generate embeddings batch by batch with retry logic.

        Batches run sequentially. Each batch is attempted up to `max_retries`
        times with exponential backoff; once a batch exhausts its retries the
        error propagates and the whole call fails.

        Args:
            texts: Input texts
            batch_size: Texts per request (defaults to config)
            max_retries: Attempts per batch (defaults to config)

        Returns:
            One vector per input text, in input order

        Raises:
            ValueError: If batch_size or max_retries is below 1
            EmbeddingError: When a batch fails on every attempt
        """
        batch_size = self.config.batch_size if batch_size is None else batch_size
        max_retries = self.config.max_retries if max_retries is None else max_retries
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        vectors: list[list[float]] = []

        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            batch_number = start // batch_size + 1

            for attempt in range(max_retries):
                try:
                    batch_vectors = await self.embed(batch)
                    if len(batch_vectors) != len(batch):
                        raise VectorCountMismatchError(len(batch), len(batch_vectors))
                    break
                except EmbeddingError as e:
                    logger.warning(
                        f"Batch {batch_number} failed (attempt {attempt + 1}/{max_retries}): {e}"
                    )
                    if attempt + 1 >= max_retries:
                        raise
                    await asyncio.sleep(self.config.backoff_base_seconds * 2 ** (attempt + 1))

            vectors.extend(batch_vectors)

            if start + batch_size < len(texts):
                await asyncio.sleep(self.config.batch_delay_seconds)

        return vectors

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Raises:
            VectorCountMismatchError: If the provider returned no valid vector
        """
        vectors = await self.embed([text])
        if not vectors:
            raise VectorCountMismatchError(1, 0)
        return vectors[0]

    async def embed_query(self, query: str) -> list[float]:
        """Generate the embedding used to search the index."""
        return await self.embed_single(query)

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    def model_info(self) -> dict[str, Any]:
        return {"name": self.config.model, "dimension": self.config.dimensions}

    async def test_connection(self) -> bool:
        """Embed a short test string and check its dimension. Never raises."""
        try:
            vector = await self.embed_single(CONNECTION_TEST_TEXT)
            return len(vector) == self.config.dimensions
        except Exception as e:
            logger.error(f"Embedding service test failed: {e}")
            return False

    async def aclose(self) -> None:
        """Release provider resources."""
        return None


class HuggingFaceEmbedding(BaseEmbeddingClient):
    """Hugging Face Inference API (feature-extraction) client."""

    def __init__(self, config: EmbeddingConfig, http_client: httpx.AsyncClient | None = None):
        """Initialize the client.

        Args:
            config: Embedding configuration with API key
            http_client: Optional shared client; one is created (and owned)
                when omitted
        """
        super().__init__(config)
        self.model_name = config.model.removeprefix("huggingface/")
        self.base_url = (config.base_url or HUGGINGFACE_INFERENCE_URL).rstrip("/")
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.model_name}"

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        logger.debug(f"Generating embeddings for {len(texts)} texts using model: {self.model_name}")

        try:
            response = await self.client.post(
                self.endpoint,
                json={
                    "inputs": list(texts),
                    "options": {"wait_for_model": True, "use_cache": True},
                },
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Error generating embeddings: {e}")
            raise classify_http_status(e.response.status_code, e.response.reason_phrase) from e
        except httpx.HTTPError as e:
            logger.error(f"Error generating embeddings: {e}")
            raise EmbeddingError(f"Failed to generate embeddings: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise EmbeddingResponseError("Invalid embeddings response format") from e

        vectors = validate_vectors(payload, self.config.dimensions)
        logger.debug(f"Successfully generated {len(vectors)} embeddings")
        return vectors

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class OpenAIEmbedding(BaseEmbeddingClient):
    """OpenAI embeddings client. Retries are handled by embed_batch, not the SDK."""

    def __init__(self, config: EmbeddingConfig):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
        """
        super().__init__(config)
        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )
        self.model_name = config.model.removeprefix("openai/")

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        logger.debug(f"Generating embeddings for {len(texts)} texts using model: {self.model_name}")

        try:
            response = await self.client.embeddings.create(model=self.model_name, input=list(texts))
        except APIStatusError as e:
            logger.error(f"Error generating embeddings: {e}")
            raise classify_http_status(e.status_code, e.message) from e
        except APIConnectionError as e:
            logger.error(f"Error generating embeddings: {e}")
            raise EmbeddingError(f"Failed to generate embeddings: {e}") from e

        ordered = sorted(response.data, key=lambda item: item.index)
        vectors = validate_vectors([item.embedding for item in ordered], self.config.dimensions)
        logger.debug(f"Successfully generated {len(vectors)} embeddings")
        return vectors

    async def aclose(self) -> None:
        await self.client.close()


def create_embedding_client(
    config: EmbeddingConfig, http_client: httpx.AsyncClient | None = None
) -> BaseEmbeddingClient:
    """Factory function to create embedding client based on model config.

    Args:
        config: Embedding configuration
        http_client: Optional shared HTTP client (Hugging Face only)

    Returns:
        Embedding client implementation

    Example:
        >>> config = EmbeddingConfig(
        ...     model="huggingface/sentence-transformers/all-MiniLM-L6-v2",
        ...     dimensions=384,
        ...     api_key="hf_...",
        ... )
        >>> client = create_embedding_client(config)
    """
    if config.model.startswith("huggingface/"):
        return HuggingFaceEmbedding(config, http_client=http_client)
    elif config.model.startswith("openai/"):
        return OpenAIEmbedding(config)
    else:
        raise ValueError(
            f"Unknown model prefix in {config.model!r}. Expected 'huggingface/' or 'openai/'"
        )
