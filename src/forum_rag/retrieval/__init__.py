"""
Retrieval layer of the forum RAG stack.

This package covers everything needed to turn raw forum posts into
searchable vectors and to fetch the most relevant chunks for a query: text
preprocessing, token-aware chunking, embedding wrappers, the Qdrant vector
store, cross-encoder reranking with adaptive selection, and the retrieval
orchestrator.

Submodules
----------
document_preprocessor
    Normalisation of forum markup, content validation and previews.
text_splitter
    Token-bounded semantic chunking with token-window fallback.
embedder
    Embedding model wrappers.
vector_store
    Similarity search and upserts against Qdrant.
reranker
    Jina AI reranking client with retry and fallback.
adaptive_selection
    Relevance filtering and adaptive top-k truncation.
retriever
    Embed, search wide, rerank narrow.
types
    Protocols decoupling the orchestrator from backends.
"""
