# forum_rag/app/api.py
from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from forum_rag import __version__
from forum_rag.app.container import build_container
from forum_rag.common.errors import RateLimitError
from forum_rag.common.logging_utils import configure_logging_from_config
from forum_rag.common.schemas import ScoredChunk, SearchMatch
from forum_rag.config import GlobalConfig

logger = logging.getLogger("forum_rag.api")

DEFAULT_CONFIG_PATH = "/app/config/config.yaml"


class SearchRequest(BaseModel):
    query: str = ""
    top_k: int = Field(default=10, ge=1, le=1000)
    filter: dict[str, Any] | None = None
    include_metadata: bool = True


class SearchResult(BaseModel):
    id: str
    score: float | None = None
    metadata: dict[str, Any] | None = None
    text: str | None = None


class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    execution_time_ms: float


class RetrieveRequest(BaseModel):
    query: str = ""
    top_k: int | None = Field(default=None, ge=1, le=1000)
    filter: dict[str, Any] | None = None
    fallback_without_filter: bool = False


class RetrievedChunk(BaseModel):
    rank: int
    id: str
    score: float | None = None
    reranker_score: float
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrieveResponse(BaseModel):
    chunks: list[RetrievedChunk] = Field(default_factory=list)
    metrics: dict[str, Any] | None = None
    execution_time_ms: float


def _serialize_match(match: SearchMatch, include_metadata: bool) -> SearchResult:
    return SearchResult(
        id=match.id,
        score=match.score,
        metadata=dict(match.metadata) if include_metadata else None,
        text=match.text or None,
    )


def _serialize_chunks(chunks: list[ScoredChunk]) -> list[RetrievedChunk]:
    serialized: list[RetrievedChunk] = []
    for idx, scored in enumerate(chunks, start=1):
        merged = scored.to_dict()
        serialized.append(
            RetrievedChunk(
                rank=idx,
                id=merged["id"],
                score=merged["score"],
                reranker_score=merged["reranker_score"],
                text=scored.chunk.text,
                metadata=merged["metadata"],
            )
        )
    return serialized


def _require_query(query: str) -> str:
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail={"error": "Query is required and must be a non-empty string"})
    return query


def _upstream_failure(route: str, exc: Exception) -> HTTPException:
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
        logger.warning("Rate limited while handling %s", route, extra={"retry_after": exc.retry_after})
        return HTTPException(status_code=429, detail={"error": str(exc)}, headers=headers)

    logger.exception("Error while handling %s", route)
    return HTTPException(status_code=500, detail={"error": f"{type(exc).__name__}: {exc}"})


def create_app(container: Any = None) -> FastAPI:
    """Create the HTTP application.

    Parameters
    ----------
    container : Any, optional
        Pre-built container. When omitted, configuration is loaded from the
        path in ``FORUM_RAG_CONFIG`` at startup and the container is closed
        at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        if owned:
            cfg_path = os.environ.get("FORUM_RAG_CONFIG", DEFAULT_CONFIG_PATH)
            cfg = GlobalConfig.load(cfg_path)
            configure_logging_from_config(cfg.logging)
            app.state.container = build_container(cfg)
            logger.info("Loaded configuration", extra={"config_path": cfg_path})
        else:
            app.state.container = container
        try:
            yield
        finally:
            if owned:
                await app.state.container.aclose()

    app = FastAPI(title="Forum RAG API", version=__version__, lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/v1/search", response_model=SearchResponse)
    async def search(req: SearchRequest, request: Request):
        query = _require_query(req.query)
        started = time.perf_counter()
        c = request.app.state.container
        try:
            vector = await c.embedder.embed_query(query)
            matches = await c.vector_store.search(vector, req.top_k, req.filter)
        except Exception as exc:
            raise _upstream_failure("/v1/search", exc) from exc

        elapsed = (time.perf_counter() - started) * 1000
        logger.info(
            "Semantic search completed",
            extra={"results_count": len(matches), "execution_time_ms": elapsed},
        )
        return SearchResponse(
            results=[_serialize_match(m, req.include_metadata) for m in matches],
            execution_time_ms=elapsed,
        )

    @app.post("/v1/retrieve", response_model=RetrieveResponse)
    async def retrieve(req: RetrieveRequest, request: Request):
        query = _require_query(req.query)
        started = time.perf_counter()
        retriever = request.app.state.container.retriever
        try:
            if req.fallback_without_filter:
                result = await retriever.retrieve_with_fallback(query, req.top_k, req.filter)
            else:
                result = await retriever.retrieve(query, req.top_k, req.filter)
        except Exception as exc:
            raise _upstream_failure("/v1/retrieve", exc) from exc

        return RetrieveResponse(
            chunks=_serialize_chunks(result.chunks),
            metrics=result.metrics.to_dict() if result.metrics else None,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )

    return app


app = create_app()
