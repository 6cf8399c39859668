"""forum_rag.common.schemas

Core data schemas shared across the forum RAG stack.

These lightweight dataclasses describe the canonical shapes passed between
ingestion, chunking, vector search, reranking and the HTTP API: raw forum
posts, the chunks produced from them, the candidates returned by similarity
search, and the scored results of reranking.

Classes
-------
ForumPost
    A single forum post or reply as stored by the crawler.
Chunk
    A contiguous, token-bounded piece of a preprocessed post.
ChunkingResult
    Output of chunking one post.
SearchMatch
    A candidate returned by the similarity-search collaborator.
ScoredChunk
    A candidate paired with its similarity and reranker scores.
RerankMetrics
    Counters and score statistics for one reranking pass.
RerankResult
    Final reranked candidates plus metrics.
RetrievalResult
    Output of the retrieval orchestrator.
IngestionOutcome
    Per-post summary of an ingestion run.

Notes
-----
``metadata`` is an untyped ``dict[str, Any]``; the payload
layout is owned by :mod:`forum_rag.pipelines.ingestion_pipeline`. Downstream
code must tolerate missing keys.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Mapping


def _post_text(metadata: Mapping[str, Any]) -> Any:
    return metadata.get("post_text")


def _content_preview(metadata: Mapping[str, Any]) -> Any:
    return metadata.get("content_preview")


def _plain_text(metadata: Mapping[str, Any]) -> Any:
    return metadata.get("text")


# Tried in order; the first non-empty string is a match's document text.
DOCUMENT_TEXT_EXTRACTORS: tuple[tuple[str, Callable[[Mapping[str, Any]], Any]], ...] = (
    ("post_text", _post_text),
    ("content_preview", _content_preview),
    ("text", _plain_text),
)


@dataclass(frozen=True)
class ForumPost:
    """A forum post or reply.

    Attributes
    ----------
    id : str
        Unique post identifier.
    content : str
        Raw post body, possibly containing BBCode and URLs.
    type : str
        ``"post"`` for a thread opener or ``"reply"``.
    url, thread_id, thread_slug, category, thread_title, author, timestamp : str
        Provenance fields copied into vector metadata.
    post_number : int
        Position of the post within its thread.
    is_original_post : bool
        Whether this post opened the thread.
    """

    id: str
    content: str
    type: str = "post"
    url: str = ""
    thread_id: str = ""
    thread_slug: str = ""
    category: str = ""
    thread_title: str = ""
    author: str = ""
    timestamp: str = ""
    post_number: int = 0
    is_original_post: bool = False

    _CAMEL_KEYS = {
        "threadId": "thread_id",
        "threadSlug": "thread_slug",
        "threadTitle": "thread_title",
        "postNumber": "post_number",
        "isOriginalPost": "is_original_post",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForumPost":
        """Build a post from a crawler record (camelCase or snake_case keys).

        Raises
        ------
        KeyError
            If ``id`` is missing.
        """
        fields = {cls._CAMEL_KEYS.get(k, k): v for k, v in data.items()}
        known = set(cls.__dataclass_fields__)
        kwargs = {k: v for k, v in fields.items() if k in known}
        if "id" not in kwargs:
            raise KeyError("Forum post record is missing 'id'.")
        kwargs["id"] = str(kwargs["id"])
        kwargs.setdefault("content", "")
        if kwargs.get("post_number") is not None:
            kwargs["post_number"] = int(kwargs["post_number"])
        kwargs["is_original_post"] = bool(kwargs.get("is_original_post", False))
        return cls(**kwargs)


@dataclass(frozen=True)
class Chunk:
    """A contiguous piece of a preprocessed post.

    Attributes
    ----------
    text : str
        Chunk text.
    start_index : int
        Approximate start offset within the preprocessed text.
    end_index : int
        ``start_index + len(text)``.
    chunk_index : int
        Zero-based position of the chunk.
    total_chunks : int
        Number of chunks produced for the post.
    token_count : int
        Tokens in ``text``.
    """

    text: str
    start_index: int
    end_index: int
    chunk_index: int
    total_chunks: int
    token_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ChunkingResult:
    """Result of chunking a single post.

    Attributes
    ----------
    chunks : list[Chunk]
        Produced chunks, in order. Empty for invalid content.
    original_length : int
        Length of the raw input in characters.
    total_tokens : int
        Tokens in the preprocessed text (``0`` for invalid content).
    was_chunked : bool
        ``True`` iff more than one chunk was produced.
    """

    chunks: list[Chunk]
    original_length: int
    total_tokens: int
    was_chunked: bool


@dataclass(frozen=True)
class SearchMatch:
    """A candidate returned by similarity search.

    Attributes
    ----------
    id : str
        Vector identifier.
    score : float or None
        Similarity score, when the backend provides one.
    metadata : dict[str, Any]
        Stored payload (e.g. ``post_text``, ``content_preview``, ``url``).
    """

    id: str
    score: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        metadata = self.metadata or {}
        for _, extractor in DOCUMENT_TEXT_EXTRACTORS:
            value = extractor(metadata)
            if isinstance(value, str) and value:
                return value
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "score": self.score, "metadata": dict(self.metadata)}


@dataclass(frozen=True)
class ScoredChunk:
    """A search candidate with its reranker score.

    ``reranker_score`` equals ``original_score`` whenever reranking was
    disabled or fell back.
    """

    chunk: SearchMatch
    original_score: float
    reranker_score: float

    @classmethod
    def passthrough(cls, match: SearchMatch) -> "ScoredChunk":
        score = float(match.score or 0.0)
        return cls(chunk=match, original_score=score, reranker_score=score)

    def to_dict(self) -> dict[str, Any]:
        """Return the candidate fields merged with ``reranker_score``."""
        merged = self.chunk.to_dict()
        merged["reranker_score"] = self.reranker_score
        return merged


@dataclass(frozen=True)
class RerankMetrics:
    """Counters and statistics describing one reranking pass.

    ``filtered_count`` is ``original_count - (results after relevance filtering)``;
    the score statistics describe the final list (population standard deviation).
    """

    original_count: int
    filtered_count: int
    final_count: int
    reranking_latency_ms: float
    score_mean: float
    score_std_dev: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RerankResult:
    chunks: list[ScoredChunk]
    metrics: RerankMetrics
    fallback: bool = False


@dataclass(frozen=True)
class RetrievalResult:
    chunks: list[ScoredChunk]
    metrics: RerankMetrics | None = None

    @classmethod
    def empty(cls) -> "RetrievalResult":
        return cls(chunks=[], metrics=None)

    def __len__(self) -> int:
        return len(self.chunks)


@dataclass(frozen=True)
class IngestionOutcome:
    """Summary of ingesting a single post.

    Attributes
    ----------
    post_id : str
        Identifier of the ingested post.
    chunks_created : int
        Chunks produced by the chunker.
    vectors_upserted : int
        Vectors written to the vector store.
    was_chunked : bool
        Whether the post was split into more than one chunk.
    skipped : bool
        ``True`` when the post had no indexable content.
    """

    post_id: str
    chunks_created: int
    vectors_upserted: int
    was_chunked: bool
    skipped: bool = False


__all__ = [
    "DOCUMENT_TEXT_EXTRACTORS",
    "ForumPost",
    "Chunk",
    "ChunkingResult",
    "SearchMatch",
    "ScoredChunk",
    "RerankMetrics",
    "RerankResult",
    "RetrievalResult",
    "IngestionOutcome",
]
