"""forum_rag.retrieval.reranker

Cross-encoder reranking of similarity-search candidates.

This module defines a small reranker interface and a concrete client for the
Jina AI rerank API. The client scores every candidate against the query,
then applies relevance filtering and adaptive top-k selection
(:mod:`forum_rag.retrieval.adaptive_selection`).

Reranking is a refinement, not a hard dependency: when the service is
disabled, unreachable, slow, or returns garbage, :meth:`JinaReranker.rerank`
returns the original candidates with their similarity scores instead of
raising.

Classes
-------
BaseReranker
    Abstract interface for rerankers.
JinaReranker
    Reranker backed by the Jina AI HTTP API, with retry and fallback.

Functions
---------
is_retryable_error
    Classify a reranker failure as transient.
create_reranker
    Create a reranker from configuration.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

import httpx

from forum_rag.common.errors import RerankerError, RerankerResponseError
from forum_rag.common.schemas import (
    DOCUMENT_TEXT_EXTRACTORS,
    RerankMetrics,
    RerankResult,
    ScoredChunk,
    SearchMatch,
)
from forum_rag.config.settings import RerankerConfig
from forum_rag.retrieval.adaptive_selection import compute_score_stats, select_final

logger = logging.getLogger(__name__)

_RETRYABLE_MARKERS = ("timeout", "network", "econnrefused", "enotfound", "500", "502", "503", "504")


def extract_document_text(candidate: SearchMatch) -> str:
    """Return the text sent to the reranker for ``candidate``.

    Sources are tried in :data:`~forum_rag.common.schemas.DOCUMENT_TEXT_EXTRACTORS`
    order; ``""`` when none holds a non-empty string.
    """
    return candidate.text


def is_retryable_error(error: BaseException) -> bool:
    """Return whether a failed rerank attempt is worth retrying.

    A known HTTP status decides on its own: only 5xx responses are retried.
    Otherwise the error message is matched case-insensitively against
    transient markers (timeouts, network failures, 5xx codes). A malformed
    response payload is never retried, whatever its message says.
    """
    if isinstance(error, RerankerResponseError):
        return False
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return 500 <= int(status_code) <= 599
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


class BaseReranker(ABC):
    """Abstract interface for reranking similarity-search candidates."""

    @abstractmethod
    async def rerank(self, query: str, candidates: Sequence[SearchMatch]) -> RerankResult:
        """Return candidates rescored for ``query``, best first."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources held by the reranker."""


class JinaReranker(BaseReranker):
    """Reranker backed by the Jina AI rerank endpoint.

    Parameters
    ----------
    config : RerankerConfig
        Endpoint, credentials, thresholds and retry settings.
    http_client : httpx.AsyncClient or None, optional
        Client used for requests. When omitted, one is created on first use
        and closed by :meth:`aclose`; an injected client is left open.
    """

    def __init__(
            self,
            config: RerankerConfig,
            *,
            http_client: httpx.AsyncClient | None = None,
        ):
        self.config = config
        self._client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            *,
            http_client: httpx.AsyncClient | None = None,
        ) -> "JinaReranker":
        return cls(RerankerConfig.from_mapping(config), http_client=http_client)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_seconds))
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def rerank(self, query: str, candidates: Sequence[SearchMatch]) -> RerankResult:
        """Rescore candidates and select the final result list.

        Parameters
        ----------
        query : str
            User query.
        candidates : Sequence[SearchMatch]
            Candidates from similarity search.

        Returns
        -------
        RerankResult
            On success, the candidates passing the relevance filter and
            adaptive cut, sorted by reranker score descending. When disabled,
            given no candidates, or after an unrecoverable failure, every
            candidate with ``reranker_score == original_score``.
        """
        candidates = list(candidates)
        if not self.config.enabled or not candidates:
            return RerankResult(
                chunks=[ScoredChunk.passthrough(c) for c in candidates],
                metrics=RerankMetrics(
                    original_count=len(candidates),
                    filtered_count=0,
                    final_count=len(candidates),
                    reranking_latency_ms=0.0,
                    score_mean=0.0,
                    score_std_dev=0.0,
                ),
                fallback=not self.config.enabled,
            )

        logger.info(
            "Starting Jina reranking",
            extra={"query_length": len(query), "chunk_count": len(candidates), "model": self.config.model},
        )
        started = time.perf_counter()

        try:
            scored = await self._score_with_retry(query, candidates)
        except Exception as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            logger.error(
                "Jina reranking failed, falling back to original scores",
                exc_info=exc,
                extra={"error": str(exc), "chunk_count": len(candidates)},
            )
            return RerankResult(
                chunks=[ScoredChunk.passthrough(c) for c in candidates],
                metrics=RerankMetrics(
                    original_count=len(candidates),
                    filtered_count=0,
                    final_count=len(candidates),
                    reranking_latency_ms=latency_ms,
                    score_mean=0.0,
                    score_std_dev=0.0,
                ),
                fallback=True,
            )

        passed_filter = sum(1 for sc in scored if sc.reranker_score >= self.config.min_score)
        final = select_final(scored, self.config)
        latency_ms = (time.perf_counter() - started) * 1000
        mean, std_dev = compute_score_stats(final)

        metrics = RerankMetrics(
            original_count=len(candidates),
            filtered_count=len(candidates) - passed_filter,
            final_count=len(final),
            reranking_latency_ms=latency_ms,
            score_mean=mean,
            score_std_dev=std_dev,
        )
        logger.info("Reranking complete", extra=metrics.to_dict())
        return RerankResult(chunks=final, metrics=metrics)

    async def _score_with_retry(self, query: str, candidates: list[SearchMatch]) -> list[ScoredChunk]:
        """Call the API, retrying transient failures with exponential backoff.

        Attempts run strictly one after another: ``1 + max_retries`` at most.
        """
        max_retries = self.config.max_retries
        for attempt in range(max_retries + 1):
            try:
                return await self._score_once(query, candidates)
            except RerankerError as exc:
                if attempt >= max_retries or not is_retryable_error(exc):
                    raise
                delay = (2 ** attempt) * self.config.backoff_base_seconds
                logger.warning(
                    "Jina API call failed, retrying in %.1fs",
                    delay,
                    extra={"retry_count": attempt + 1, "max_retries": max_retries, "error": str(exc)},
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _score_once(self, query: str, candidates: list[SearchMatch]) -> list[ScoredChunk]:
        payload = {
            "model": self.config.model,
            "query": query,
            "documents": [extract_document_text(c) for c in candidates],
            "top_n": len(candidates),
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

        try:
            response = await asyncio.wait_for(
                self.client.post(self.config.api_url, json=payload, headers=headers),
                timeout=self.config.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RerankerError(f"Jina API timeout after {self.config.timeout_ms}ms") from exc
        except httpx.TransportError as exc:
            raise RerankerError(f"Jina API network error: {exc}") from exc

        if not response.is_success:
            raise RerankerError(
                f"Jina API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise RerankerResponseError("Jina API returned invalid JSON") from exc

        scored = self._map_results(data, candidates)
        usage = data.get("usage") or {}
        logger.debug("Jina API call succeeded", extra={"jina_tokens_used": usage.get("total_tokens")})
        return scored

    @staticmethod
    def _map_results(data: Any, candidates: list[SearchMatch]) -> list[ScoredChunk]:
        """Map ``results`` back to candidates, sorted by score descending.

        Raises
        ------
        RerankerResponseError
            If the payload is not a list of ``{index, relevance_score}`` entries
            with in-range indices.
        """
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise RerankerResponseError("Jina API response has no 'results' list")

        scored: list[ScoredChunk] = []
        for item in results:
            try:
                index = int(item["index"])
                score = float(item["relevance_score"])
            except (KeyError, TypeError, ValueError) as exc:
                raise RerankerResponseError(f"Malformed rerank result: {item!r}") from exc
            if not 0 <= index < len(candidates):
                raise RerankerResponseError(f"Rerank result index {index} out of range")
            candidate = candidates[index]
            scored.append(
                ScoredChunk(
                    chunk=candidate,
                    original_score=float(candidate.score or 0.0),
                    reranker_score=score,
                )
            )

        scored.sort(key=lambda sc: sc.reranker_score, reverse=True)
        return scored


def create_reranker(
        config: RerankerConfig | Mapping[str, Any] | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> BaseReranker:
    """Create a reranker from configuration.

    Parameters
    ----------
    config : RerankerConfig or Mapping[str, Any] or None, optional
        Settings object, or a ``reranker`` section (``type`` defaults to
        ``"jina"``). ``None`` reads the environment.
    http_client : httpx.AsyncClient or None, optional
        Client to inject into the reranker.

    Raises
    ------
    ValueError
        If an unsupported reranker type is requested.
    """
    if isinstance(config, RerankerConfig):
        return JinaReranker(config, http_client=http_client)

    cfg = dict(config or {})
    kind = str(cfg.pop("type", "jina")).lower().strip()
    if kind == "jina":
        return JinaReranker.from_config_dict(cfg, http_client=http_client)

    raise ValueError(f"Unsupported reranker type {kind!r}. Supported rerankers: ['jina'].")


__all__ = [
    "BaseReranker",
    "JinaReranker",
    "DOCUMENT_TEXT_EXTRACTORS",
    "extract_document_text",
    "is_retryable_error",
    "create_reranker",
]
