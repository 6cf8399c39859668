"""forum_rag.retrieval.types

Shared type definitions for the retrieval layer.

This module defines lightweight protocols used to decouple the retrieval
orchestrator and ingestion pipeline from concrete backend classes, so tests
and alternative backends only need to provide the methods used.

Classes
-------
QueryEmbedder
    Protocol for anything that can embed a query string.
SimilaritySearch
    Protocol for the similarity-search collaborator.
Reranker
    Protocol for rerankers.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from forum_rag.common.schemas import RerankResult, SearchMatch


class QueryEmbedder(Protocol):
    async def embed_query(self, text: str) -> list[float]:
        ...


class SimilaritySearch(Protocol):
    """Protocol for the similarity-search collaborator.

    Methods
    -------
    search
        Return up to ``top_k`` candidates for a vector, optionally filtered
        by metadata.
    """

    async def search(
            self,
            vector: Sequence[float],
            top_k: int,
            filter: Mapping[str, Any] | None = None,
        ) -> list[SearchMatch]:
        ...


class Reranker(Protocol):
    async def rerank(self, query: str, candidates: Sequence[SearchMatch]) -> RerankResult:
        ...
