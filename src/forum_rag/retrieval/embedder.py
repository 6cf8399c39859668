"""forum_rag.retrieval.embedder

Embedding interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing vector
embeddings from text, along with a concrete implementation backed by the
LlamaIndex OpenAI-compatible embedding wrapper. Provider failures are mapped
onto the package error taxonomy so callers can tell a rate-limited request
(:class:`~forum_rag.common.errors.RateLimitError`) from any other failure
(:class:`~forum_rag.common.errors.EmbeddingError`).

Classes
-------
BaseEmbedder
    Abstract interface specifying the API used by retrieval and ingestion.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.

Functions
---------
validate_embedding
    Check that a vector has the expected dimensionality and finite values.
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence

import openai

from forum_rag.common.errors import EmbeddingError, RateLimitError
from forum_rag.config.settings import as_bool

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"
DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_DIMENSIONS = 3072


def validate_embedding(embedding: Any, expected_dimensions: int = DEFAULT_DIMENSIONS) -> bool:
    """Return whether ``embedding`` is a list of ``expected_dimensions`` finite numbers."""
    if not isinstance(embedding, (list, tuple)):
        logger.error("Embedding is not a list", extra={"actual_type": type(embedding).__name__})
        return False

    if len(embedding) != expected_dimensions:
        logger.error(
            "Embedding has incorrect dimensions",
            extra={"actual": len(embedding), "expected": expected_dimensions},
        )
        return False

    for value in embedding:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            logger.error("Embedding contains invalid values")
            return False

    return True


def _retry_after_seconds(exc: BaseException) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or getattr(exc, "headers", None) or {}
    raw = headers.get("retry-after") if hasattr(headers, "get") else None
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    if getattr(exc, "status_code", None) == 429 or getattr(exc, "status", None) == 429:
        return True
    return getattr(exc, "code", None) == "rate_limit_exceeded"


def _translate_error(exc: Exception) -> EmbeddingError:
    if _is_rate_limited(exc):
        retry_after = _retry_after_seconds(exc)
        logger.warning("Embedding provider rate limit hit", extra={"retry_after": retry_after})
        return RateLimitError(f"Embedding rate limit exceeded: {exc}", retry_after=retry_after)
    logger.error(
        "Embedding generation failed",
        extra={"error_status": getattr(exc, "status_code", None), "error_code": getattr(exc, "code", None)},
    )
    return EmbeddingError(f"Failed to generate embedding: {exc}")


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations wrap a provider-specific embedder and expose a
    small, consistent async API.
    """

    dimensions: int = DEFAULT_DIMENSIONS

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string.

        Raises
        ------
        RateLimitError
            If the provider throttled the request.
        EmbeddingError
            For any other failure, including a malformed vector.
        """

    @abstractmethod
    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed a batch of document texts, preserving order."""

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping."""

    def _checked(self, vector: Any) -> list[float]:
        if not validate_embedding(vector, self.dimensions):
            raise EmbeddingError(
                f"Embedding provider returned an invalid vector (expected {self.dimensions} dimensions)"
            )
        return [float(v) for v in vector]

    async def aclose(self) -> None:
        """Release provider resources; a no-op by default."""


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_base : str
        Base URL for the OpenAI-compatible embedding API endpoint.
    api_key : str or None, optional
        API key sent to the endpoint.
    dimensions : int, optional
        Expected vector size. Defaults to ``3072``.
    embed_model : Any, optional
        Pre-built LlamaIndex embedding; when given, no client is constructed.
    """

    def __init__(
            self,
            model_name: str = DEFAULT_EMBEDDING_MODEL,
            *,
            api_base: str = DEFAULT_API_BASE,
            api_key: str | None = None,
            dimensions: int = DEFAULT_DIMENSIONS,
            model_kwargs: dict[str, Any] | None = None,
            timeout: float = 60.0,
            max_retries: int = 3,
            embed_batch_size: int = 10,
            num_workers: Optional[int] = None,
            reuse_client: bool = True,
            embed_model: Any = None,
        ):
        self.model_name = model_name
        self.dimensions = int(dimensions)

        if embed_model is None:
            from llama_index.embeddings.openai_like import OpenAILikeEmbedding

            embed_model = OpenAILikeEmbedding(
                model_name=model_name,
                api_base=api_base,
                api_key=api_key,
                additional_kwargs=model_kwargs or {},
                timeout=timeout,
                max_retries=max_retries,
                embed_batch_size=embed_batch_size,
                num_workers=num_workers,
                reuse_client=reuse_client,
            )
        self.embed_model = embed_model

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "OpenAILikeEmbedder":
        """Create an OpenAI-compatible embedder from a configuration mapping.

        Parameters
        ----------
        config : Mapping[str, Any]
            Mapping with optional ``model_name``, ``api_base``, ``api_key``,
            ``dimensions``, ``timeout``, ``max_retries``, ``embed_batch_size``,
            ``num_workers``, ``reuse_client`` and ``model_kwargs`` keys.

        Returns
        -------
        OpenAILikeEmbedder
            An initialised embedder instance.
        """
        return cls(
            model_name=config.get("model_name", DEFAULT_EMBEDDING_MODEL),
            api_base=config.get("api_base", DEFAULT_API_BASE),
            api_key=config.get("api_key"),
            dimensions=int(config.get("dimensions", DEFAULT_DIMENSIONS)),
            model_kwargs=config.get("model_kwargs", {}),
            timeout=float(config.get("timeout", 60.0)),
            max_retries=int(config.get("max_retries", 3)),
            embed_batch_size=int(config.get("embed_batch_size", 10)),
            num_workers=config.get("num_workers"),
            reuse_client=as_bool(config.get("reuse_client"), True),
        )

    async def embed_query(self, text: str) -> list[float]:
        try:
            vector = await self.embed_model.aget_query_embedding(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise _translate_error(exc) from exc

        logger.debug("Query embedded", extra={"dimensions": len(vector), "model": self.model_name})
        return self._checked(vector)

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            vectors = await self.embed_model.aget_text_embedding_batch(list(texts))
        except EmbeddingError:
            raise
        except Exception as exc:
            raise _translate_error(exc) from exc

        return [self._checked(v) for v in vectors]


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    for key in ("kind", "type", "provider"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise a kind string (``"OpenAILike"`` -> ``"openai_like"``)."""
    out: list[str] = []
    prev = ""
    for ch in kind.strip():
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k = "".join(out).replace("-", "_").replace(" ", "_").lower()
    while "__" in k:
        k = k.replace("__", "_")
    return k.replace("open_ailike", "openai_like").replace("open_ai", "openai")


def create_embedder(config: Mapping[str, Any]) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    The implementation is selected by a ``kind``, ``type`` or ``provider``
    field. Without a discriminator the OpenAI-compatible embedder is used.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw)

    registry = {
        "openai_like": OpenAILikeEmbedder,
        "openai": OpenAILikeEmbedder,
    }

    cls = registry.get(kind) if kind else OpenAILikeEmbedder
    if cls is None:
        raise ValueError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(registry.keys())}."
        )
    return cls.from_config_dict(dict(config))


__all__ = [
    "BaseEmbedder",
    "OpenAILikeEmbedder",
    "validate_embedding",
    "create_embedder",
]
