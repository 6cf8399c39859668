"""forum_rag.common.errors

Exception taxonomy shared across the forum RAG stack.

Three families of failure are distinguished:

- configuration problems, raised at load/construction time;
- upstream collaborator failures (embedding, vector search), which propagate
  to callers of the retrieval orchestrator;
- reranker failures, which are handled inside the reranking client and never
  escape it.

Classes
-------
ForumRagError
    Base class for all package errors.
ConfigurationError
    Invalid or inconsistent configuration values.
EmbeddingError
    Failure while producing an embedding vector.
RateLimitError
    The embedding provider rejected a request due to rate limiting.
VectorSearchError
    Failure while querying or writing to the vector store.
RerankerError
    Failure while calling the external reranking service.
RerankerResponseError
    The reranking service answered with a payload that could not be used.
"""

from __future__ import annotations


class ForumRagError(Exception):
    """Base class for errors raised by :mod:`forum_rag`."""


class ConfigurationError(ForumRagError, ValueError):
    """Raised when configuration values are missing, malformed, or inconsistent."""


class EmbeddingError(ForumRagError):
    """Raised when the embedding collaborator fails to produce a vector."""


class RateLimitError(EmbeddingError):
    """Raised when the embedding provider throttles a request.

    Parameters
    ----------
    message : str
        Human-readable error message.
    retry_after : float or None, optional
        Number of seconds the provider asked callers to wait, when known.
    """

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class VectorSearchError(ForumRagError):
    """Raised when the similarity-search collaborator fails."""


class RerankerError(ForumRagError):
    """Raised when a call to the reranking service fails.

    Parameters
    ----------
    message : str
        Human-readable error message.
    status_code : int or None, optional
        HTTP status code returned by the service, if a response was received.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RerankerResponseError(RerankerError):
    """Raised when the reranking service returns an unusable payload."""


__all__ = [
    "ForumRagError",
    "ConfigurationError",
    "EmbeddingError",
    "RateLimitError",
    "VectorSearchError",
    "RerankerError",
    "RerankerResponseError",
]
