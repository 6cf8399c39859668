"""forum_rag.config

Configuration subsystem for the forum RAG stack.

This package provides structured access to global and component-level
configuration loaded from YAML files and the process environment. It exposes
validated settings objects rather than raw configuration dictionaries.

Modules
-------
global_config
    Global configuration loader and cached accessors.
settings
    Immutable, self-validating component settings.
"""
from .global_config import GlobalConfig
from .settings import AdaptiveTopKConfig, ChunkingConfig, RerankerConfig

__all__ = ["GlobalConfig", "ChunkingConfig", "AdaptiveTopKConfig", "RerankerConfig"]
