"""forum_rag.retrieval.text_splitter

Token-aware chunking of forum posts.

Posts are preprocessed, validated, and, when they exceed the token budget,
split into chunks that respect semantic boundaries where possible:

1. paragraphs (separated by blank lines) are packed greedily into segments;
2. a paragraph that alone exceeds the budget is packed sentence by sentence;
3. any segment still over budget (e.g. one enormous sentence) is cut into
   fixed token windows that overlap by ``overlap`` tokens.

Token counting is delegated to a :class:`~forum_rag.common.tokenisation.TokenCounter`
supplied by the caller, so the chunker never owns tokenizer resources.

Classes
-------
ForumPostChunker
    Chunk preprocessed forum posts by token count.

Functions
---------
chunk_text
    Convenience wrapper around :meth:`ForumPostChunker.chunk`.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from forum_rag.common.schemas import Chunk, ChunkingResult
from forum_rag.common.tokenisation import TokenCounter
from forum_rag.config.settings import ChunkingConfig
from forum_rag.retrieval.document_preprocessor import is_valid_content, preprocess_content

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "

_PARAGRAPH_RE = re.compile(r"\n\n+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


class ForumPostChunker:
    """Chunk forum posts into token-bounded pieces.

    Parameters
    ----------
    token_counter : TokenCounter
        Counter used for sizing and for token-window splitting.
    config : ChunkingConfig or None, optional
        Token budget and overlap. Defaults to ``ChunkingConfig()``
        (400 tokens, 50 overlap).
    """

    def __init__(
            self,
            token_counter: TokenCounter,
            config: ChunkingConfig | None = None,
        ):
        self.token_counter = token_counter
        self.config = config or ChunkingConfig()

    @property
    def max_tokens(self) -> int:
        return self.config.max_tokens

    @property
    def overlap(self) -> int:
        return self.config.overlap

    def count_tokens(self, text: str) -> int:
        return self.token_counter.count(text)

    def chunk(self, content: Any) -> ChunkingResult:
        """Preprocess and chunk a raw post body.

        Parameters
        ----------
        content : Any
            Raw post body.

        Returns
        -------
        ChunkingResult
            Empty (``total_tokens == 0``) when the content is not worth
            embedding; a single chunk when it fits the budget; otherwise the
            semantic/token-window split.
        """
        original_length = len(content) if isinstance(content, str) else 0
        processed = preprocess_content(content)

        if not is_valid_content(processed):
            logger.warning(
                "Content is not valid for chunking",
                extra={"original_length": original_length, "processed_length": len(processed)},
            )
            return ChunkingResult(
                chunks=[],
                original_length=original_length,
                total_tokens=0,
                was_chunked=False,
            )

        total_tokens = self.count_tokens(processed)

        if total_tokens <= self.max_tokens:
            chunk = Chunk(
                text=processed,
                start_index=0,
                end_index=len(processed),
                chunk_index=0,
                total_chunks=1,
                token_count=total_tokens,
            )
            return ChunkingResult(
                chunks=[chunk],
                original_length=original_length,
                total_tokens=total_tokens,
                was_chunked=False,
            )

        texts: list[str] = []
        for segment in self.split_semantic(processed):
            if self.count_tokens(segment) <= self.max_tokens:
                texts.append(segment)
            else:
                texts.extend(self.split_token_windows(segment))

        chunks = self._build_chunks(texts)

        logger.info(
            "Text chunking completed",
            extra={
                "original_length": original_length,
                "total_tokens": total_tokens,
                "chunks_created": len(chunks),
                "avg_tokens_per_chunk": round(total_tokens / len(chunks)),
            },
        )
        return ChunkingResult(
            chunks=chunks,
            original_length=original_length,
            total_tokens=total_tokens,
            was_chunked=len(chunks) > 1,
        )

    def split_semantic(self, text: str) -> list[str]:
        """Pack paragraphs (and, for oversized ones, sentences) into segments.

        Segments are best-effort: a single sentence longer than the budget is
        emitted as its own over-budget segment and left to
        :meth:`split_token_windows`. Returns ``[text]`` if nothing was produced.
        """
        segments: list[str] = []
        current = ""

        for paragraph in _PARAGRAPH_RE.split(text):
            candidate = f"{current}{PARAGRAPH_SEPARATOR}{paragraph}" if current else paragraph
            if self.count_tokens(candidate) <= self.max_tokens:
                current = candidate
                continue

            if current:
                segments.append(current)

            if self.count_tokens(paragraph) <= self.max_tokens:
                current = paragraph
                continue

            sentence_segment = ""
            for sentence in _SENTENCE_RE.split(paragraph):
                candidate = (
                    f"{sentence_segment}{SENTENCE_SEPARATOR}{sentence}" if sentence_segment else sentence
                )
                if self.count_tokens(candidate) <= self.max_tokens:
                    sentence_segment = candidate
                else:
                    if sentence_segment:
                        segments.append(sentence_segment)
                    sentence_segment = sentence
            current = sentence_segment

        if current:
            segments.append(current)

        return segments or [text]

    def split_token_windows(self, text: str) -> list[str]:
        """Cut text into windows of ``max_tokens`` tokens, ``overlap`` apart.

        Consecutive windows share ``overlap`` tokens. Splitting stops as soon
        as a window reaches the end of the token sequence.
        """
        tokens = list(self.token_counter.encode(text))
        windows: list[str] = []
        stride = self.config.stride
        start = 0

        while start < len(tokens):
            end = min(start + self.max_tokens, len(tokens))
            windows.append(self.token_counter.decode(tokens[start:end]))
            if end == len(tokens):
                break
            start += stride

        return windows

    def _build_chunks(self, texts: list[str]) -> list[Chunk]:
        chunks: list[Chunk] = []
        offset = 0
        for index, text in enumerate(texts):
            chunks.append(
                Chunk(
                    text=text,
                    start_index=offset,
                    end_index=offset + len(text),
                    chunk_index=index,
                    total_chunks=len(texts),
                    token_count=self.count_tokens(text),
                )
            )
            offset += len(text)
        return chunks


def chunk_text(
        content: Any,
        *,
        token_counter: TokenCounter,
        config: ChunkingConfig | None = None,
    ) -> ChunkingResult:
    """Chunk a raw post body with a one-off :class:`ForumPostChunker`."""
    return ForumPostChunker(token_counter, config).chunk(content)


__all__ = ["ForumPostChunker", "chunk_text"]
