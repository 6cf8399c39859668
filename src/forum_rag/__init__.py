"""forum_rag

Retrieval-augmented search over forum discussions.

This package contains the building blocks for indexing forum posts and
answering retrieval queries over them: content preprocessing, token-aware
chunking, embedding, vector search, cross-encoder reranking with adaptive
result selection, and the HTTP/CLI entrypoints that wire them together.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and validated component settings.
app
    Application container and HTTP API.
pipelines
    Ingestion pipeline (chunk → embed → upsert).
retrieval
    Preprocessing, chunking, embedding, vector store, reranking and retrieval.
common
    Shared schemas, token counters, errors and logging helpers.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
ForumRagContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured :class:`~forum_rag.app.container.ForumRagContainer`.
ForumPost
    Raw forum post schema.
Chunk
    Chunk schema derived from a post.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("forum-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import ForumRagContainer, build_container
from .common import Chunk, ForumPost

__all__ = [
    "__version__",
    "GlobalConfig",
    "ForumRagContainer",
    "build_container",
    "ForumPost",
    "Chunk",
]
