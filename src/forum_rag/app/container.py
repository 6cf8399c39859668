"""forum_rag.app.container

Composition root for the forum RAG stack.

This module is the single place where concrete implementations are wired
together from configuration (token counter, chunker, embedder, vector store,
reranker, retriever and ingestion pipeline). Components are constructed
lazily and cached on first access so that, for example, the tokenizer is
loaded at most once per process.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not perform network calls at import time
  - do not read files at import time
  - construct expensive objects lazily (cached on first access)

- The container owns the components it builds. Call :meth:`ForumRagContainer.aclose`
  at shutdown to release the tokenizer and network clients.

Examples
--------
>>> from forum_rag.config import GlobalConfig
>>> from forum_rag.app.container import build_container
>>> cfg = GlobalConfig.load("config.yaml")
>>> c = build_container(cfg)
>>> result = await c.retriever.retrieve("Wie dimensioniere ich eine Wärmepumpe?")
>>> await c.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Mapping

from forum_rag.common.tokenisation import TokenCounter, create_token_counter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForumRagContainer:
    """Holds the configured, cached runtime components for the application.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`forum_rag.config.GlobalConfig`).
    """

    config: Any

    @cached_property
    def token_counter(self) -> TokenCounter:
        """Return the token counter used for chunk sizing.

        Configuration is read from ``config.tokenization``; ``tiktoken`` with the
        ``cl100k_base`` encoding is used when the section is empty.
        """
        return create_token_counter(_as_mapping(getattr(self.config, "tokenization", {})))

    @cached_property
    def chunker(self) -> Any:
        from forum_rag.retrieval.text_splitter import ForumPostChunker

        return ForumPostChunker(self.token_counter, self.config.chunking)

    @cached_property
    def embedder(self) -> Any:
        """Return the embedding client built from ``config.embedder``."""
        from forum_rag.retrieval.embedder import create_embedder

        return create_embedder(_as_mapping(self.config.embedder))

    @cached_property
    def vector_store(self) -> Any:
        """Return the vector store built from ``config.vector_store``."""
        from forum_rag.retrieval.vector_store import create_vector_store

        return create_vector_store(_as_mapping(self.config.vector_store))

    @cached_property
    def reranker(self) -> Any:
        """Return the reranker built from ``config.reranker``."""
        from forum_rag.retrieval.reranker import create_reranker

        return create_reranker(self.config.reranker)

    @cached_property
    def retriever(self) -> Any:
        """Return the two-stage retriever.

        Returns
        -------
        Any
            A :class:`forum_rag.retrieval.retriever.RerankingRetriever`.
        """
        from forum_rag.retrieval.retriever import RerankingRetriever

        section = _as_mapping(self.config.retriever)
        return RerankingRetriever(
            embedder=self.embedder,
            vector_store=self.vector_store,
            reranker=self.reranker,
            wide_top_k=int(section["wide_top_k"]),
        )

    @cached_property
    def ingestion_pipeline(self) -> Any:
        from forum_rag.pipelines.ingestion_pipeline import IngestionPipeline

        return IngestionPipeline(
            chunker=self.chunker,
            embedder=self.embedder,
            vector_store=self.vector_store,
        )

    async def aclose(self) -> None:
        """Dispose of every component that was actually built.

        The tokenizer is released last, even when closing a network client
        raised; such an error propagates once the remaining steps have run.
        Closing is safe to call more than once.
        """
        built = self.__dict__
        try:
            if "reranker" in built:
                await built["reranker"].aclose()
        finally:
            try:
                if "vector_store" in built:
                    await built["vector_store"].close()
            finally:
                try:
                    if "embedder" in built:
                        await built["embedder"].aclose()
                finally:
                    if "token_counter" in built:
                        close = getattr(built["token_counter"], "close", None)
                        if close is not None:
                            close()
                    logger.debug(
                        "Container closed",
                        extra={"components": sorted(k for k in built if k != "config")},
                    )


def build_container(config: Any) -> ForumRagContainer:
    """Create a :class:`~forum_rag.app.container.ForumRagContainer`.

    Single entry point for FastAPI lifespan hooks, CLI scripts and tests.
    """
    return ForumRagContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce an object into a mapping.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["ForumRagContainer", "build_container"]
