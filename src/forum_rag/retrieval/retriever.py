"""forum_rag.retrieval.retriever

Retrieval orchestration: embed, search wide, rerank narrow.

The retriever embeds the query, pulls a deliberately large candidate pool
from the vector store (``wide_top_k``, 500 by default) and hands it to the
reranker, which filters and truncates it to the few passages worth sending
to a language model.

Embedding and vector-search failures propagate to the caller; only the
reranking stage degrades gracefully.

Classes
-------
RerankingRetriever
    Two-stage retriever combining vector search with cross-encoder reranking.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from forum_rag.common.schemas import RetrievalResult
from forum_rag.retrieval.types import QueryEmbedder, Reranker, SimilaritySearch

logger = logging.getLogger(__name__)

DEFAULT_WIDE_TOP_K = 500


class RerankingRetriever:
    """Two-stage retriever: vector search followed by reranking.

    Parameters
    ----------
    embedder : QueryEmbedder
        Produces the query vector.
    vector_store : SimilaritySearch
        Returns candidate matches for a vector.
    reranker : Reranker
        Rescores and selects the final candidates.
    wide_top_k : int, optional
        Candidate pool size requested from the vector store. Defaults to ``500``.
    """

    def __init__(
            self,
            embedder: QueryEmbedder,
            vector_store: SimilaritySearch,
            reranker: Reranker,
            *,
            wide_top_k: int = DEFAULT_WIDE_TOP_K,
        ):
        if wide_top_k <= 0:
            raise ValueError(f"wide_top_k must be positive, got {wide_top_k}")
        self.embedder = embedder
        self.vector_store = vector_store
        self.reranker = reranker
        self.wide_top_k = wide_top_k

    async def retrieve(
            self,
            query: str,
            top_k: int | None = None,
            filter: Mapping[str, Any] | None = None,
        ) -> RetrievalResult:
        """Retrieve reranked chunks for a query.

        Parameters
        ----------
        query : str
            User query. A blank query yields an empty result.
        top_k : int or None, optional
            Candidate pool size; defaults to ``wide_top_k``.
        filter : Mapping[str, Any] or None, optional
            Metadata filter passed to the vector store.

        Returns
        -------
        RetrievalResult
            Final chunks (best first) and reranking metrics. Empty, with no
            metrics, when the vector store found nothing.

        Raises
        ------
        EmbeddingError
            If the query could not be embedded (``RateLimitError`` when throttled).
        VectorSearchError
            If the similarity search failed.
        """
        if not query or not query.strip():
            return RetrievalResult.empty()

        pool_size = top_k or self.wide_top_k
        logger.info(
            "Starting retrieval",
            extra={"query_length": len(query), "top_k": pool_size, "has_filter": bool(filter)},
        )

        vector = await self.embedder.embed_query(query)
        matches = await self.vector_store.search(vector, pool_size, filter)

        if not matches:
            logger.warning("No matches found in vector store", extra={"has_filter": bool(filter)})
            return RetrievalResult.empty()

        logger.info(
            "Vector search completed",
            extra={"chunks_retrieved": len(matches), "top_score": matches[0].score},
        )

        reranked = await self.reranker.rerank(query, matches)

        logger.info(
            "Retrieval completed",
            extra={
                "original_chunks": len(matches),
                "final_chunks": len(reranked.chunks),
                "reranking_latency_ms": reranked.metrics.reranking_latency_ms,
                "top_reranker_score": reranked.chunks[0].reranker_score if reranked.chunks else None,
                "reranker_fallback": reranked.fallback,
            },
        )
        return RetrievalResult(chunks=reranked.chunks, metrics=reranked.metrics)

    async def retrieve_with_fallback(
            self,
            query: str,
            top_k: int | None = None,
            filter: Mapping[str, Any] | None = None,
        ) -> RetrievalResult:
        """Like :meth:`retrieve`, retrying once without ``filter`` if it found nothing."""
        if filter:
            result = await self.retrieve(query, top_k, filter)
            if result.chunks:
                return result
            logger.info("No results with filter, retrying without filter")

        return await self.retrieve(query, top_k)


__all__ = ["RerankingRetriever", "DEFAULT_WIDE_TOP_K"]
