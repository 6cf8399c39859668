"""forum_rag.retrieval.vector_store

Vector store interfaces and factories for the retrieval layer.

This module defines the similarity-search collaborator used by the retrieval
orchestrator and the ingestion pipeline, with a concrete implementation
backed by Qdrant. Responsibilities:

- similarity search returning :class:`~forum_rag.common.schemas.SearchMatch`
  candidates with their stored payloads
- translating simple metadata filters into Qdrant filter objects
- upserting chunk vectors under stable point ids

Classes
-------
VectorRecord
    A vector plus payload to be written to the store.
BaseVectorStore
    Abstract interface for vector store wrappers.
QdrantVectorStore
    Qdrant-backed implementation using the async client.

Functions
---------
build_qdrant_filter
    Convert a metadata filter mapping into a Qdrant ``Filter``.
create_vector_store
    Create a vector store implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from qdrant_client import AsyncQdrantClient, models

from forum_rag.common.errors import VectorSearchError
from forum_rag.common.schemas import SearchMatch

logger = logging.getLogger(__name__)

# Namespace for deriving point UUIDs from record ids.
POINT_ID_NAMESPACE = uuid.UUID("6f1c3b8e-4d0a-5e8f-9b21-7a3c5d9e0f14")


def point_id_for(record_id: str) -> str:
    return str(uuid.uuid5(POINT_ID_NAMESPACE, record_id))


@dataclass(frozen=True)
class VectorRecord:
    """A vector to upsert.

    Attributes
    ----------
    id : str
        Logical record id (e.g. ``"<post_id>_chunk_<i>"``).
    vector : list[float]
        Embedding vector.
    metadata : dict[str, Any]
        Payload stored alongside the vector.
    """

    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


def _condition(key: str, value: Any) -> models.FieldCondition:
    if isinstance(value, Mapping):
        if "$eq" in value:
            value = value["$eq"]
        elif "$in" in value:
            value = list(value["$in"])
        else:
            raise ValueError(f"Unsupported filter operator for {key!r}: {sorted(value)}")
    if isinstance(value, (list, tuple, set)):
        return models.FieldCondition(key=key, match=models.MatchAny(any=list(value)))
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


def build_qdrant_filter(filter: Mapping[str, Any] | models.Filter | None) -> models.Filter | None:
    """Convert a metadata filter into a Qdrant ``Filter``.

    Parameters
    ----------
    filter : Mapping[str, Any] or models.Filter or None
        ``{"category": "Heizung"}`` matches exactly; a list value (or
        ``{"$in": [...]}``) matches any of the values; ``{"$eq": v}`` is
        accepted as an alias for ``v``. A ready ``Filter`` is returned as-is.

    Returns
    -------
    models.Filter or None
        ``None`` for an empty or missing filter.

    Raises
    ------
    ValueError
        If an unsupported operator is used.
    """
    if filter is None:
        return None
    if isinstance(filter, models.Filter):
        return filter
    if not filter:
        return None
    return models.Filter(must=[_condition(str(k), v) for k, v in filter.items()])


class BaseVectorStore(ABC):
    """Abstract interface for the similarity-search collaborator."""

    @abstractmethod
    async def search(
            self,
            vector: Sequence[float],
            top_k: int,
            filter: Mapping[str, Any] | None = None,
        ) -> list[SearchMatch]:
        """Return up to ``top_k`` nearest candidates, best first.

        Raises
        ------
        VectorSearchError
            If the backend query fails.
        """

    @abstractmethod
    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        """Write records, returning the number written."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend connections."""


class QdrantVectorStore(BaseVectorStore):
    """Qdrant-backed vector store using :class:`qdrant_client.AsyncQdrantClient`.

    Parameters
    ----------
    collection_name : str
        Name of the Qdrant collection.
    host : str, optional
        Qdrant host address. Defaults to ``"localhost"``.
    port : int, optional
        Qdrant port number. Defaults to ``6333``.
    url : str or None, optional
        Full Qdrant URL; takes precedence over ``host``/``port``.
    api_key : str or None, optional
        Qdrant API key.
    vector_size : int, optional
        Dimensionality used when creating the collection. Defaults to ``3072``.
    client : AsyncQdrantClient or None, optional
        Pre-built client, mainly for tests.
    """

    def __init__(
            self,
            collection_name: str,
            *,
            host: str = "localhost",
            port: int = 6333,
            url: str | None = None,
            api_key: str | None = None,
            vector_size: int = 3072,
            client: AsyncQdrantClient | None = None,
        ):
        self.collection_name = collection_name
        self.vector_size = int(vector_size)
        if client is None:
            client = (
                AsyncQdrantClient(url=url, api_key=api_key)
                if url
                else AsyncQdrantClient(host=host, port=int(port), api_key=api_key)
            )
        self.client = client

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "QdrantVectorStore":
        """Create a store from a ``vector_store`` section.

        Expected keys: ``collection_name`` plus optional ``host``, ``port``,
        ``url``, ``api_key`` and ``vector_size``.
        """
        return cls(
            collection_name=config.get("collection_name", "forum_posts"),
            host=config.get("host", "localhost"),
            port=int(config.get("port", 6333)),
            url=config.get("url"),
            api_key=config.get("api_key"),
            vector_size=int(config.get("vector_size", 3072)),
        )

    async def ensure_collection(self) -> None:
        """Create the collection (cosine distance) if it does not exist."""
        try:
            if await self.client.collection_exists(self.collection_name):
                return
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=models.VectorParams(size=self.vector_size, distance=models.Distance.COSINE),
            )
        except Exception as exc:
            raise VectorSearchError(f"Failed to prepare collection {self.collection_name!r}: {exc}") from exc
        logger.info("Created Qdrant collection", extra={"collection": self.collection_name})

    async def search(
            self,
            vector: Sequence[float],
            top_k: int,
            filter: Mapping[str, Any] | models.Filter | None = None,
        ) -> list[SearchMatch]:
        query_filter = build_qdrant_filter(filter)
        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=list(vector),
                limit=int(top_k),
                query_filter=query_filter,
                with_payload=True,
            )
        except Exception as exc:
            logger.error("Vector search failed", extra={"collection": self.collection_name, "top_k": top_k})
            raise VectorSearchError(f"Vector search failed: {exc}") from exc

        matches = []
        for point in response.points:
            payload = dict(point.payload or {})
            record_id = payload.pop("record_id", None)
            matches.append(SearchMatch(id=str(record_id or point.id), score=point.score, metadata=payload))
        logger.debug("Vector search complete", extra={"top_k": top_k, "match_count": len(matches)})
        return matches

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        points = [
            models.PointStruct(
                id=point_id_for(record.id),
                vector=list(record.vector),
                payload={**record.metadata, "record_id": record.id},
            )
            for record in records
        ]
        try:
            await self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
        except Exception as exc:
            raise VectorSearchError(f"Vector upsert failed: {exc}") from exc

        logger.debug("Upserted vectors", extra={"collection": self.collection_name, "count": len(points)})
        return len(points)

    async def close(self) -> None:
        await self.client.close()


def create_vector_store(config: Mapping[str, Any]) -> BaseVectorStore:
    """Create a vector store implementation from a configuration mapping.

    Raises
    ------
    ValueError
        If ``type`` names an unsupported backend.
    """
    kind = str(config.get("type") or config.get("kind") or "qdrant").strip().lower()
    if kind == "qdrant":
        return QdrantVectorStore.from_config_dict(config)
    raise ValueError(f"Unsupported vector store type {kind!r}. Supported stores: ['qdrant'].")


__all__ = [
    "VectorRecord",
    "BaseVectorStore",
    "QdrantVectorStore",
    "build_qdrant_filter",
    "point_id_for",
    "create_vector_store",
]
