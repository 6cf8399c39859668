"""forum_rag.pipelines

Pipeline orchestration components for the forum RAG stack.

Pipelines hold no state beyond their configured components and can be
reused across runs.

Modules
-------
ingestion_pipeline
    Forum post ingestion (chunk → embed → upsert).
"""
