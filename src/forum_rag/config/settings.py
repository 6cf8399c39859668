"""forum_rag.config.settings

Validated settings objects for the chunking and reranking components.

Each settings class is an immutable dataclass that validates itself on
construction, so an inconsistent configuration fails when it is loaded
instead of in the middle of a request. Values can be built from a YAML
mapping, from environment variables, or both (environment wins).

Classes
-------
ChunkingConfig
    Token budget and overlap for the forum post chunker.
AdaptiveTopKConfig
    Bounds and gap threshold for adaptive result truncation.
RerankerConfig
    Settings for the external reranking client.

Functions
---------
as_bool
    Interpret common truthy/falsy spellings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping

from forum_rag.common.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_RERANK_URL = "https://api.jina.ai/v1/rerank"
DEFAULT_RERANK_MODEL = "jina-reranker-v2-base-multilingual"


def as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


def _coerce(value: Any, cast: Callable[[Any], Any], name: str) -> Any:
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name!r} must be a valid {cast.__name__}, got {value!r}") from exc


def _pick(
        section: Mapping[str, Any],
        key: str,
        environ: Mapping[str, str],
        env_key: str | None,
    ) -> Any:
    """Return the environment value for ``env_key`` if set, else ``section[key]``."""
    if env_key is not None:
        raw = environ.get(env_key)
        if raw is not None and raw.strip() != "":
            return raw
    return section.get(key)


@dataclass(frozen=True)
class ChunkingConfig:
    """Token budget for chunking forum posts.

    Attributes
    ----------
    max_tokens : int
        Upper bound on tokens per chunk. Defaults to ``400``.
    overlap : int
        Tokens shared by consecutive token windows. Defaults to ``50``.
        Must be strictly smaller than ``max_tokens``.
    """

    max_tokens: int = 400
    overlap: int = 50

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ConfigurationError(f"chunking.max_tokens must be positive, got {self.max_tokens}")
        if self.overlap < 0:
            raise ConfigurationError(f"chunking.overlap must be non-negative, got {self.overlap}")
        if self.overlap >= self.max_tokens:
            raise ConfigurationError(
                f"chunking.overlap ({self.overlap}) must be smaller than "
                f"chunking.max_tokens ({self.max_tokens})"
            )

    @property
    def stride(self) -> int:
        return self.max_tokens - self.overlap

    @classmethod
    def from_mapping(
            cls,
            section: Mapping[str, Any] | None = None,
            environ: Mapping[str, str] | None = None,
        ) -> "ChunkingConfig":
        """Build from a ``chunking`` section with ``CHUNK_*`` environment overrides."""
        section = section or {}
        environ = os.environ if environ is None else environ
        defaults = cls()

        max_tokens = _pick(section, "max_tokens", environ, "CHUNK_MAX_TOKENS")
        overlap = _pick(section, "overlap", environ, "CHUNK_OVERLAP")
        return cls(
            max_tokens=defaults.max_tokens if max_tokens is None else _coerce(max_tokens, int, "max_tokens"),
            overlap=defaults.overlap if overlap is None else _coerce(overlap, int, "overlap"),
        )


@dataclass(frozen=True)
class AdaptiveTopKConfig:
    """Adaptive truncation of reranked results.

    Attributes
    ----------
    enabled : bool
        Whether the score-gap cut is applied.
    min : int
        Results always kept (when available). Defaults to ``3``.
    max : int
        Hard cap on results kept. Defaults to ``15``.
    score_gap_threshold : float
        Drop between consecutive scores that triggers the cut. Defaults to ``0.1``.
    """

    enabled: bool = True
    min: int = 3
    max: int = 15
    score_gap_threshold: float = 0.1

    def __post_init__(self) -> None:
        if self.min < 1:
            raise ConfigurationError(f"adaptive_top_k.min must be at least 1, got {self.min}")
        if self.max < self.min:
            raise ConfigurationError(
                f"adaptive_top_k.max ({self.max}) must not be smaller than "
                f"adaptive_top_k.min ({self.min})"
            )
        if self.score_gap_threshold < 0:
            raise ConfigurationError(
                f"adaptive_top_k.score_gap_threshold must be non-negative, got {self.score_gap_threshold}"
            )


@dataclass(frozen=True)
class RerankerConfig:
    """Settings for the external cross-encoder reranking client.

    Attributes
    ----------
    enabled : bool
        When ``False`` candidates pass through with their similarity scores.
    api_key : str
        Bearer token for the reranking service.
    model : str
        Reranking model identifier.
    min_score : float
        Relevance floor in ``[0, 1]``. Defaults to ``0.3``.
    timeout_ms : int
        Hard per-attempt timeout in milliseconds. Defaults to ``5000``.
    max_retries : int
        Retries after the first attempt. Defaults to ``2``.
    adaptive_top_k : AdaptiveTopKConfig
        Adaptive truncation settings.
    api_url : str
        Rerank endpoint URL.
    backoff_base_seconds : float
        Multiplier for the ``2 ** attempt`` backoff delay. Defaults to ``1.0``.
    """

    enabled: bool = True
    api_key: str = ""
    model: str = DEFAULT_RERANK_MODEL
    min_score: float = 0.3
    timeout_ms: int = 5000
    max_retries: int = 2
    adaptive_top_k: AdaptiveTopKConfig = field(default_factory=AdaptiveTopKConfig)
    api_url: str = DEFAULT_RERANK_URL
    backoff_base_seconds: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_score <= 1.0:
            raise ConfigurationError(f"reranker.min_score must be within [0, 1], got {self.min_score}")
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"reranker.timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_retries < 0:
            raise ConfigurationError(f"reranker.max_retries must be non-negative, got {self.max_retries}")
        if self.backoff_base_seconds < 0:
            raise ConfigurationError(
                f"reranker.backoff_base_seconds must be non-negative, got {self.backoff_base_seconds}"
            )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def with_overrides(self, **changes: Any) -> "RerankerConfig":
        return replace(self, **changes)

    @classmethod
    def from_mapping(
            cls,
            section: Mapping[str, Any] | None = None,
            environ: Mapping[str, str] | None = None,
        ) -> "RerankerConfig":
        """Build from a ``reranker`` section with environment overrides.

        Parameters
        ----------
        section : Mapping[str, Any] or None, optional
            The ``reranker`` configuration section. Adaptive settings live in a
            nested ``adaptive_top_k`` mapping.
        environ : Mapping[str, str] or None, optional
            Environment to read overrides from. Defaults to :data:`os.environ`.

        Returns
        -------
        RerankerConfig
            Validated settings.

        Raises
        ------
        ConfigurationError
            If a value cannot be parsed or violates a constraint.
        """
        section = dict(section or {})
        environ = os.environ if environ is None else environ
        adaptive_section = dict(section.get("adaptive_top_k") or {})
        defaults = AdaptiveTopKConfig()

        def value(key, env_key, cast, default, source=section):
            raw = _pick(source, key, environ, env_key)
            return default if raw is None else _coerce(raw, cast, key)

        adaptive = AdaptiveTopKConfig(
            enabled=as_bool(_pick(adaptive_section, "enabled", environ, "RERANKER_ADAPTIVE_TOPK_ENABLED"), True),
            min=value("min", "RERANKER_ADAPTIVE_TOPK_MIN", int, defaults.min, adaptive_section),
            max=value("max", "RERANKER_ADAPTIVE_TOPK_MAX", int, defaults.max, adaptive_section),
            score_gap_threshold=value(
                "score_gap_threshold",
                "RERANKER_SCORE_GAP_THRESHOLD",
                float,
                defaults.score_gap_threshold,
                adaptive_section,
            ),
        )

        enabled = as_bool(_pick(section, "enabled", environ, "RERANKER_ENABLED"), True)
        api_key = str(_pick(section, "api_key", environ, "JINA_API_KEY") or "")
        if enabled and not api_key:
            logger.warning("Reranking is enabled but no JINA_API_KEY is configured; requests will fall back")

        return cls(
            enabled=enabled,
            api_key=api_key,
            model=str(_pick(section, "model", environ, "JINA_RERANKER_MODEL") or DEFAULT_RERANK_MODEL),
            min_score=value("min_score", "RERANKER_MIN_SCORE", float, 0.3),
            timeout_ms=value("timeout_ms", "RERANKER_TIMEOUT_MS", int, 5000),
            max_retries=value("max_retries", "RERANKER_MAX_RETRIES", int, 2),
            adaptive_top_k=adaptive,
            api_url=str(section.get("api_url") or DEFAULT_RERANK_URL),
            backoff_base_seconds=value("backoff_base_seconds", None, float, 1.0),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RerankerConfig":
        """Build purely from environment variables and defaults."""
        return cls.from_mapping({}, environ)


__all__ = [
    "as_bool",
    "ChunkingConfig",
    "AdaptiveTopKConfig",
    "RerankerConfig",
    "DEFAULT_RERANK_URL",
    "DEFAULT_RERANK_MODEL",
]
