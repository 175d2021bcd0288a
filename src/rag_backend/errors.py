"""Exception hierarchy for the retrieval pipeline.

Components below the orchestrator raise these; `RAGService` converts them into
failed operation results for mutating calls and lets read-only searches
propagate them.
"""

from __future__ import annotations


class RAGError(Exception):
    """Base class for every error raised by the RAG backend."""


class ConfigurationError(RAGError):
    """Configuration is missing or invalid (raised once at startup)."""


class IngestionError(RAGError):
    """A document was rejected before reaching the vector store."""


class UnsupportedFileTypeError(IngestionError):
    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported file type: {extension or '(none)'}")


class FileTooLargeError(IngestionError):
    def __init__(self, size: int, max_size_mb: int) -> None:
        self.size = size
        self.max_size_mb = max_size_mb
        super().__init__(f"File too large: {size} bytes (max: {max_size_mb}MB)")


class EmptyContentError(IngestionError):
    def __init__(self) -> None:
        super().__init__("No content could be extracted from the file")


class EmbeddingError(RAGError):
    """The embedding provider failed (transport errors, timeouts, bad payloads)."""


class EmbeddingAPIError(EmbeddingError):
    """The embedding provider answered with a non-success HTTP status."""

    def __init__(self, status: int | None, reason: str) -> None:
        self.status = status
        self.reason = reason
        super().__init__(f"API error: {status} - {reason}")


class EmbeddingAuthenticationError(EmbeddingAPIError):
    def __init__(self, status: int | None = 401, reason: str = "Unauthorized") -> None:
        super().__init__(status, reason)
        self.args = (f"Invalid embedding API key ({status} - {reason})",)


class EmbeddingRateLimitError(EmbeddingAPIError):
    def __init__(self, status: int | None = 429, reason: str = "Too Many Requests") -> None:
        super().__init__(status, reason)
        self.args = ("Rate limit exceeded. Please try again later.",)


class ModelLoadingError(EmbeddingAPIError):
    def __init__(self, status: int | None = 503, reason: str = "Service Unavailable") -> None:
        super().__init__(status, reason)
        self.args = ("Model is currently loading. Please try again in a few moments.",)


class EmbeddingResponseError(EmbeddingError):
    """The provider returned a payload that is not a list of vectors."""


class VectorCountMismatchError(EmbeddingResponseError):
    """Fewer valid vectors came back than texts were sent."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"Expected {expected} embeddings, received {received} valid vectors")


class DimensionMismatchError(RAGError, ValueError):
    """Two vectors (or a vector and the configured dimension) differ in length."""

    def __init__(self, expected: int, actual: int, context: str = "vector") -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embeddings must have the same dimension: expected {expected}, "
            f"got {actual} for {context}"
        )


class VectorStoreError(RAGError):
    """A vector index operation failed."""

    def __init__(self, action: str, cause: Exception | str) -> None:
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to {action}: {cause}")
