"""
Common building blocks shared across the forum RAG stack.

This package provides small, widely-used primitives (record schemas, token
counters, the error taxonomy and logging helpers) intended to be imported by
multiple layers of the system.

Classes
-------
ForumPost
    Raw forum post record.
Chunk
    Token-bounded piece of a post.
ScoredChunk
    Search candidate with reranker score.

Attributes
----------
PostId : TypeAlias
    Type alias for forum post identifiers.
VectorId : TypeAlias
    Type alias for vector identifiers.

See Also
--------
forum_rag.common.schemas
    Defines the record dataclasses.
forum_rag.common.errors
    Defines the exception hierarchy.
"""
from __future__ import annotations
from typing import TypeAlias

from .schemas import (
    Chunk,
    ChunkingResult,
    ForumPost,
    ScoredChunk,
    SearchMatch,
)

PostId: TypeAlias = str
VectorId: TypeAlias = str

__all__ = [
    "ForumPost",
    "Chunk",
    "ChunkingResult",
    "SearchMatch",
    "ScoredChunk",
    "PostId",
    "VectorId",
]
