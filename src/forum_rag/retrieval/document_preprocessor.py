"""forum_rag.retrieval.document_preprocessor

Preprocessing utilities for forum post content.

This module normalises raw forum post bodies into clean text suitable for
tokenisation and embedding. Forum markup that carries little retrieval value
is collapsed into short placeholders:

- BBCode quoted replies are replaced by ``[quoted text removed]``
- ``[code]`` blocks and triple-backtick fences become ``[code block: ...]``
  with a short preview of the code
- absolute URLs become ``[link: <domain>]``

Whitespace is normalised while paragraph breaks are preserved. Non-ASCII
letters (umlauts, ``ß``) are kept as-is.

Functions
---------
preprocess_content
    Normalise a raw forum post body.
is_valid_content
    Check whether text carries enough content to be embedded.
get_content_preview
    Return a short, truncated preview of text for logs and metadata.
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

CODE_PREVIEW_CHARS = 50
MIN_CONTENT_LENGTH = 10
MIN_NON_WHITESPACE_RATIO = 0.3

QUOTED_TEXT_PLACEHOLDER = "[quoted text removed]"

_QUOTE_RE = re.compile(r"\[quote[^\]]*\].*?\[/quote\]", re.IGNORECASE | re.DOTALL)
_BBCODE_RE = re.compile(r"\[code[^\]]*\](.*?)\[/code\]", re.IGNORECASE | re.DOTALL)
_FENCE_RE = re.compile(r"```(?:[^\s`]*\n)?(.*?)```", re.DOTALL)
_URL_RE = re.compile(r"https?://([^\s]+)", re.IGNORECASE)
_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")
_MULTI_SPACE_RE = re.compile(r" {2,}")
_WHITESPACE_RE = re.compile(r"\s")


def _code_placeholder(match: re.Match) -> str:
    return f"[code block: {match.group(1).strip()[:CODE_PREVIEW_CHARS]}...]"


def _link_placeholder(match: re.Match) -> str:
    domain = re.split(r"[/?#]", match.group(1), maxsplit=1)[0]
    return f"[link: {domain}]"


def preprocess_content(content: Any) -> str:
    """Normalise a raw forum post body.

    Steps are applied in order: CRLF line endings become LF; quoted replies,
    code blocks and URLs are replaced by placeholders; runs of three or more
    newlines collapse to a paragraph break; runs of spaces collapse to one;
    every line and finally the whole text are stripped.

    Parameters
    ----------
    content : Any
        Raw post body. Anything other than a non-empty ``str`` yields ``""``.

    Returns
    -------
    str
        The normalised text. Applying this function to its own output returns
        the output unchanged.
    """
    if not content or not isinstance(content, str):
        if content is not None and not isinstance(content, str):
            logger.warning(
                "Invalid content provided to preprocessor",
                extra={"content_type": type(content).__name__},
            )
        return ""

    processed = content.replace("\r\n", "\n")

    processed = _QUOTE_RE.sub(QUOTED_TEXT_PLACEHOLDER, processed)
    processed = _BBCODE_RE.sub(_code_placeholder, processed)
    processed = _FENCE_RE.sub(_code_placeholder, processed)
    processed = _URL_RE.sub(_link_placeholder, processed)

    processed = _MULTI_NEWLINE_RE.sub("\n\n", processed)
    processed = _MULTI_SPACE_RE.sub(" ", processed)
    processed = "\n".join(line.strip() for line in processed.split("\n"))
    # Stripping lines can leave blank-line runs behind (e.g. "a\n \n \nb").
    processed = _MULTI_NEWLINE_RE.sub("\n\n", processed)
    processed = processed.strip()

    logger.debug(
        "Content preprocessed",
        extra={
            "original_length": len(content),
            "processed_length": len(processed),
            "reduction_percent": round((len(content) - len(processed)) / len(content) * 100),
        },
    )
    return processed


def is_valid_content(content: Any) -> bool:
    """Return whether text carries enough content to be embedded.

    Text is rejected when it is empty or not a string, shorter than 10
    characters after trimming, or less than 30% non-whitespace.
    """
    if not content or not isinstance(content, str):
        return False

    trimmed = content.strip()
    if len(trimmed) < MIN_CONTENT_LENGTH:
        logger.warning("Content too short for embedding", extra={"length": len(trimmed)})
        return False

    ratio = len(_WHITESPACE_RE.sub("", trimmed)) / len(trimmed)
    if ratio < MIN_NON_WHITESPACE_RATIO:
        logger.warning("Content is mostly whitespace", extra={"ratio": ratio})
        return False

    return True


def get_content_preview(content: Any, max_length: int = 100) -> str:
    """Return the first ``max_length`` characters of trimmed text.

    Parameters
    ----------
    content : Any
        Text to preview.
    max_length : int, optional
        Maximum preview length before the ``"..."`` suffix. Defaults to ``100``.

    Returns
    -------
    str
        ``"[empty]"`` for empty input, otherwise the preview with ``"..."``
        appended when the text was truncated.
    """
    if not content or not isinstance(content, str):
        return "[empty]"

    trimmed = content.strip()
    preview = trimmed[:max_length]
    return f"{preview}..." if len(preview) < len(trimmed) else preview


__all__ = [
    "preprocess_content",
    "is_valid_content",
    "get_content_preview",
    "QUOTED_TEXT_PLACEHOLDER",
]
