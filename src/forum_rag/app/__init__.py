"""forum_rag.app

Application layer: the composition root and the HTTP API.

Modules
-------
container
    Lazily wired, cached runtime components.
api
    FastAPI application exposing search and reranked retrieval.
"""
