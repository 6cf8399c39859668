"""forum_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used across the forum RAG stack.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time. Component settings that the deployment surface
exposes as plain environment variables (``RERANKER_*``, ``JINA_*``,
``CHUNK_*``) are applied on top of the YAML values when the corresponding
accessor is first read.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

from __future__ import annotations

import os
from functools import cached_property
from pathlib import Path
from typing import Any, Mapping

import yaml

from forum_rag.common.errors import ConfigurationError
from forum_rag.config.settings import ChunkingConfig, RerankerConfig

DEFAULT_WIDE_TOP_K = 500


def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    Parameters
    ----------
    obj : Any
        Object to expand. Supported types are dictionaries, lists, and strings.
        Other types are returned unchanged.

    Returns
    -------
    Any
        A structure of the same shape as ``obj`` with environment variables
        expanded in all string values.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _section(raw: Mapping[str, Any], name: str) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(value).__name__}.")
    return value


class GlobalConfig:
    """Loader and accessor for global project configuration.

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, if any.
    environ : Mapping[str, str] or None, optional
        Environment used for component overrides. Defaults to :data:`os.environ`.
    """

    def __init__(
            self,
            raw: dict | None,
            config_path: Path | None = None,
            environ: Mapping[str, str] | None = None,
        ):
        if raw is not None and not isinstance(raw, dict):
            raise TypeError(f"Configuration root must be a mapping, got {type(raw).__name__}.")
        self.raw = raw or {}
        self.config_path = config_path
        self.environ = os.environ if environ is None else environ

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GlobalConfig":
        """Create a configuration backed only by defaults and the environment."""
        return cls({}, environ=environ)

    @cached_property
    def chunking(self) -> ChunkingConfig:
        """Return validated chunking settings.

        Raises
        ------
        ConfigurationError
            If ``overlap`` is not smaller than ``max_tokens`` or a value is malformed.
        """
        return ChunkingConfig.from_mapping(_section(self.raw, "chunking"), self.environ)

    @cached_property
    def reranker(self) -> RerankerConfig:
        """Return validated reranker settings with environment overrides applied."""
        return RerankerConfig.from_mapping(_section(self.raw, "reranker"), self.environ)

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        ``api_key`` falls back to ``OPENAI_API_KEY`` when not configured.
        """
        section = dict(_section(self.raw, "embedder"))
        if not section.get("api_key") and self.environ.get("OPENAI_API_KEY"):
            section["api_key"] = self.environ["OPENAI_API_KEY"]
        return section

    @cached_property
    def vector_store(self) -> dict:
        """Return the vector store configuration section.

        Raises
        ------
        KeyError
            If the section is present but has no ``collection_name``.
        """
        section = _section(self.raw, "vector_store")
        if section and not section.get("collection_name"):
            raise KeyError("Missing 'collection_name' under 'vector_store' in configuration.")
        return section

    @cached_property
    def retriever(self) -> dict:
        """Return the retriever section with ``wide_top_k`` validated.

        Raises
        ------
        ConfigurationError
            If ``wide_top_k`` is not a positive integer.
        """
        section = dict(_section(self.raw, "retriever"))
        wide_top_k = section.get("wide_top_k", DEFAULT_WIDE_TOP_K)
        try:
            wide_top_k = int(wide_top_k)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"'retriever.wide_top_k' must be an integer, got {wide_top_k!r}") from exc
        if wide_top_k <= 0:
            raise ConfigurationError(f"'retriever.wide_top_k' must be positive, got {wide_top_k}")
        section["wide_top_k"] = wide_top_k
        return section

    @cached_property
    def tokenization(self) -> dict:
        """Return the tokenization section, or an empty dict (tiktoken default)."""
        return _section(self.raw, "tokenization")

    @cached_property
    def logging(self) -> dict:
        """Return the logging section, or an empty dict."""
        return _section(self.raw, "logging")


__all__ = ["GlobalConfig", "DEFAULT_WIDE_TOP_K"]
