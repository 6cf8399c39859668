"""forum_rag.pipelines.ingestion_pipeline

Forum post ingestion: chunk, embed, upsert.

This module turns :class:`~forum_rag.common.schemas.ForumPost` records into
vectors in the configured store. Each post is preprocessed and chunked; every
chunk is embedded and written with a payload carrying the post's provenance,
the chunk text (``post_text``, which the reranker reads) and, for posts split
into several chunks, the chunk position.

Posts without indexable content are skipped, not failed. Embedding and
vector-store errors propagate so that the caller decides whether to retry.

Classes
-------
IngestionPipeline
    Orchestrates chunking, embedding and upserting of posts.

Functions
---------
format_metadata
    Build the vector payload for a post (or one of its chunks).
validate_metadata
    Check that a payload is JSON-serialisable and within the size limit.
vector_id_for
    Derive the vector id for a post chunk.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Sequence

from forum_rag.common.errors import EmbeddingError
from forum_rag.common.schemas import Chunk, ForumPost, IngestionOutcome
from forum_rag.retrieval.embedder import BaseEmbedder
from forum_rag.retrieval.text_splitter import ForumPostChunker
from forum_rag.retrieval.vector_store import BaseVectorStore, VectorRecord

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_CHARS = 200
MAX_METADATA_BYTES = 40_000


def vector_id_for(post_id: str, chunk_index: int, was_chunked: bool) -> str:
    return f"{post_id}_chunk_{chunk_index}" if was_chunked else post_id


def format_metadata(
        post: ForumPost,
        text: str | None = None,
        chunk: Chunk | None = None,
        was_chunked: bool = False,
    ) -> dict[str, Any]:
    """Build the vector payload for a post.

    Parameters
    ----------
    post : ForumPost
        Source post.
    text : str or None, optional
        Text actually embedded (the chunk text); stored as ``post_text``.
    chunk : Chunk or None, optional
        Chunk the payload describes.
    was_chunked : bool, optional
        Whether the post was split; chunk position fields are only added then.

    Returns
    -------
    dict[str, Any]
        Payload with provenance fields, ``content_preview`` (first 200
        characters of the raw content), ``content_length`` and optional
        ``post_text`` and chunk fields.
    """
    content = post.content or ""
    preview = content[:CONTENT_PREVIEW_CHARS] + "..." if len(content) > CONTENT_PREVIEW_CHARS else content

    metadata: dict[str, Any] = {
        "post_id": post.id,
        "type": post.type,
        "url": post.url,
        "thread_id": post.thread_id,
        "thread_slug": post.thread_slug,
        "category": post.category,
        "thread_title": post.thread_title,
        "author": post.author,
        "timestamp": post.timestamp,
        "post_number": post.post_number,
        "is_original_post": post.is_original_post,
        "content_preview": preview,
        "content_length": len(content),
    }
    if text:
        metadata["post_text"] = text
    if chunk is not None and was_chunked:
        metadata.update(
            chunk_index=chunk.chunk_index,
            total_chunks=chunk.total_chunks,
            token_count=chunk.token_count,
            start_index=chunk.start_index,
            end_index=chunk.end_index,
        )
    return metadata


def validate_metadata(metadata: dict[str, Any]) -> bool:
    """Return whether a payload is JSON-serialisable and at most 40 000 bytes."""
    try:
        encoded = json.dumps(metadata, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        logger.error("Metadata is not serializable", extra={"error": str(exc)})
        return False

    size = len(encoded.encode("utf-8"))
    if size > MAX_METADATA_BYTES:
        logger.error("Metadata exceeds size limit", extra={"size": size, "limit": MAX_METADATA_BYTES})
        return False

    return True


class IngestionPipeline:
    """Chunk, embed and store forum posts.

    Parameters
    ----------
    chunker : ForumPostChunker
        Splits post content into chunks.
    embedder : BaseEmbedder
        Embeds chunk texts.
    vector_store : BaseVectorStore
        Destination for the vectors.
    """

    def __init__(
            self,
            chunker: ForumPostChunker,
            embedder: BaseEmbedder,
            vector_store: BaseVectorStore,
        ):
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store

    def build_payloads(self, post: ForumPost) -> tuple[list[Chunk], list[dict[str, Any]], bool]:
        """Chunk a post and build the payload for each chunk without embedding."""
        result = self.chunker.chunk(post.content)
        payloads = [
            format_metadata(post, chunk.text, chunk, result.was_chunked) for chunk in result.chunks
        ]
        return result.chunks, payloads, result.was_chunked

    async def ingest_post(self, post: ForumPost) -> IngestionOutcome:
        """Ingest one post.

        Returns
        -------
        IngestionOutcome
            ``skipped`` is ``True`` when the post had no valid content.

        Raises
        ------
        EmbeddingError
            If embedding failed (``RateLimitError`` when throttled), or
            returned a different number of vectors than chunks.
        VectorSearchError
            If the upsert failed.
        ValueError
            If a payload is not serialisable or exceeds the size limit.
        """
        chunks, payloads, was_chunked = self.build_payloads(post)

        if not chunks:
            logger.warning("No valid chunks created from content", extra={"post_id": post.id})
            return IngestionOutcome(
                post_id=post.id,
                chunks_created=0,
                vectors_upserted=0,
                was_chunked=False,
                skipped=True,
            )

        for payload in payloads:
            if not validate_metadata(payload):
                raise ValueError(f"Invalid metadata for post {post.id!r}")

        vectors = await self.embedder.embed_documents([chunk.text for chunk in chunks])
        if len(vectors) != len(chunks):
            raise EmbeddingError(
                f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks of post {post.id!r}"
            )
        records = [
            VectorRecord(
                id=vector_id_for(post.id, chunk.chunk_index, was_chunked),
                vector=vector,
                metadata=payload,
            )
            for chunk, vector, payload in zip(chunks, vectors, payloads)
        ]
        upserted = await self.vector_store.upsert(records)

        logger.info(
            "Post ingested",
            extra={"post_id": post.id, "chunks": len(chunks), "was_chunked": was_chunked},
        )
        return IngestionOutcome(
            post_id=post.id,
            chunks_created=len(chunks),
            vectors_upserted=upserted,
            was_chunked=was_chunked,
        )

    async def ingest_posts(self, posts: Iterable[ForumPost]) -> list[IngestionOutcome]:
        """Ingest posts one after another, stopping at the first failure."""
        outcomes: list[IngestionOutcome] = []
        for post in posts:
            outcomes.append(await self.ingest_post(post))
        return outcomes


def summarize(outcomes: Sequence[IngestionOutcome]) -> dict[str, int]:
    return {
        "posts": len(outcomes),
        "skipped": sum(1 for o in outcomes if o.skipped),
        "chunked": sum(1 for o in outcomes if o.was_chunked),
        "chunks": sum(o.chunks_created for o in outcomes),
        "vectors": sum(o.vectors_upserted for o in outcomes),
    }


__all__ = [
    "IngestionPipeline",
    "format_metadata",
    "validate_metadata",
    "vector_id_for",
    "summarize",
]
