"""forum_rag.common.tokenisation

Token counting utilities.

This module provides a small abstraction used by the chunker to size chunks
by *token count* without coupling it to any particular tokenizer library.
The chunker depends only on the :class:`TokenCounter` protocol; the concrete
implementation is selected via configuration and owned by the application
container.

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
TiktokenTokenCounter
    Exact token counter backed by the ``tiktoken`` library.
HuggingFaceTokenCounter
    Token counter backed by a Hugging Face tokenizer instance.

Functions
---------
create_token_counter
    Create a token counter from a ``tokenization`` configuration mapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"


class TokenCounter(Protocol):
    """A minimal interface for token-based sizing.

    Implementations count tokens and expose the encode/decode pair the chunker
    needs to cut oversized text into fixed token windows.
    """

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""

    def encode(self, text: str) -> Sequence[Any]:
        """Return the token sequence for ``text``."""

    def decode(self, tokens: Sequence[Any]) -> str:
        """Return the text for a token sequence."""


@dataclass
class TiktokenTokenCounter:
    """Token counter backed by the ``tiktoken`` library.

    The encoding is loaded lazily on first use and at most once per instance.
    :meth:`close` releases it; the counter can also be used as a context
    manager. Any use after closing raises :class:`RuntimeError`.

    Attributes
    ----------
    encoding_name : str
        Name of the ``tiktoken`` encoding. Defaults to ``"cl100k_base"``,
        the encoding used by the ``text-embedding-3`` model family.
    """

    encoding_name: str = DEFAULT_ENCODING
    _enc: Any = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    @classmethod
    def from_encoding_name(cls, encoding_name: str) -> "TiktokenTokenCounter":
        """Construct a token counter for an encoding name.

        Parameters
        ----------
        encoding_name : str
            Name of the ``tiktoken`` encoding to load.

        Returns
        -------
        TiktokenTokenCounter
            A token counter that loads the encoding on first use.
        """
        return cls(encoding_name=encoding_name)

    @property
    def encoding(self) -> Any:
        if self._closed:
            raise RuntimeError("TiktokenTokenCounter has been closed")
        if self._enc is None:
            import tiktoken  # type: ignore

            self._enc = tiktoken.get_encoding(self.encoding_name)
            logger.debug("Loaded tiktoken encoding %s", self.encoding_name)
        return self._enc

    @property
    def closed(self) -> bool:
        return self._closed

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text))

    def encode(self, text: str) -> list[int]:
        if not text:
            return []
        return self.encoding.encode(text)

    def decode(self, tokens: Sequence[int]) -> str:
        if not tokens:
            return ""
        return self.encoding.decode(list(tokens))

    def close(self) -> None:
        """Release the encoding. Safe to call more than once."""
        if not self._closed:
            self._enc = None
            self._closed = True
            logger.debug("Released tiktoken encoding %s", self.encoding_name)

    def __enter__(self) -> "TiktokenTokenCounter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@dataclass(frozen=True)
class HuggingFaceTokenCounter:
    """Token counter backed by a Hugging Face tokenizer.

    This implementation delegates tokenisation to an externally constructed
    tokenizer instance (e.g., from ``transformers.AutoTokenizer``). The
    ``transformers`` library is not imported at module import time.

    Special tokens such as ``[CLS]`` and ``[SEP]`` are neither counted nor
    emitted, so a decoded token window recounts to the same size.

    Attributes
    ----------
    tokenizer : Any
        Tokenizer instance exposing ``encode`` and ``decode``.
    """

    tokenizer: Any

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encode(text))

    def encode(self, text: str) -> list[Any]:
        if not text:
            return []
        return list(self.tokenizer.encode(text, add_special_tokens=False))

    def decode(self, tokens: Sequence[Any]) -> str:
        if not tokens:
            return ""
        return self.tokenizer.decode(list(tokens), skip_special_tokens=True)

    def close(self) -> None:
        """No-op; the tokenizer is owned by whoever constructed it."""


def create_token_counter(config: Mapping[str, Any] | None = None) -> TokenCounter:
    """Create a token counter from a ``tokenization`` configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any] or None, optional
        Mapping with a ``type`` key (``"tiktoken"`` by default, or
        ``"huggingface"``) plus ``encoding`` or ``model_name``.

    Returns
    -------
    TokenCounter
        A token counter implementation.

    Raises
    ------
    ValueError
        If an unknown tokenization type is configured, or if required
        configuration keys are missing for the chosen type.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type") or "tiktoken").lower().replace("-", "_")

    if kind in {"tiktoken", "openai"}:
        return TiktokenTokenCounter.from_encoding_name(str(cfg.get("encoding") or DEFAULT_ENCODING))

    if kind in {"huggingface", "hf", "transformers"}:
        model_name = cfg.get("model_name")
        if not model_name:
            raise ValueError("tokenization.model_name is required for huggingface tokenization")

        from transformers import AutoTokenizer  # type: ignore

        return HuggingFaceTokenCounter(tokenizer=AutoTokenizer.from_pretrained(str(model_name)))

    raise ValueError(f"Unknown tokenization type: {kind!r}")


__all__ = [
    "TokenCounter",
    "TiktokenTokenCounter",
    "HuggingFaceTokenCounter",
    "create_token_counter",
]
