"""forum_rag.retrieval.adaptive_selection

Relevance filtering and adaptive top-k selection for reranked candidates.

After reranking, candidates below a relevance floor are dropped and the
remainder is truncated at the first pronounced drop ("gap") in the score
curve, within ``[min, max]`` bounds. For example, with ``min=3`` and a gap
threshold of ``0.1``, the scores ``[0.95, 0.92, 0.88, 0.45, 0.42]`` are cut
after the third result.

All functions expect candidates sorted by ``reranker_score`` descending.

Functions
---------
filter_by_relevance
    Drop candidates scoring below ``min_score``.
select_adaptive_top_k
    Truncate at the first score gap above the threshold.
select_final
    Apply filtering then adaptive truncation as configured.
compute_score_stats
    Mean and population standard deviation of reranker scores.
"""

from __future__ import annotations

import logging
import statistics
from typing import Sequence

from forum_rag.common.schemas import ScoredChunk
from forum_rag.config.settings import AdaptiveTopKConfig, RerankerConfig

logger = logging.getLogger(__name__)


def filter_by_relevance(chunks: Sequence[ScoredChunk], min_score: float) -> list[ScoredChunk]:
    return [sc for sc in chunks if sc.reranker_score >= min_score]


def select_adaptive_top_k(
        chunks: Sequence[ScoredChunk],
        config: AdaptiveTopKConfig,
    ) -> list[ScoredChunk]:
    """Truncate candidates at the first significant score gap.

    Parameters
    ----------
    chunks : Sequence[ScoredChunk]
        Candidates sorted by ``reranker_score`` descending.
    config : AdaptiveTopKConfig
        Bounds and gap threshold.

    Returns
    -------
    list[ScoredChunk]
        All candidates when there are at most ``config.min``; otherwise the
        prefix ending just before the first gap greater than the threshold,
        searched from position ``min`` up to position ``max``; otherwise the
        first ``max`` candidates. A gap located beyond ``max`` is not
        considered.
    """
    if len(chunks) <= config.min:
        return list(chunks)

    i = config.min - 1
    while i < len(chunks) - 1 and i < config.max - 1:
        gap = chunks[i].reranker_score - chunks[i + 1].reranker_score
        if gap > config.score_gap_threshold:
            logger.debug(
                "Adaptive top-k: score gap detected",
                extra={
                    "position": i + 1,
                    "gap": round(gap, 3),
                    "score_above": round(chunks[i].reranker_score, 3),
                    "score_below": round(chunks[i + 1].reranker_score, 3),
                },
            )
            return list(chunks[: i + 1])
        i += 1

    logger.debug("Adaptive top-k: no significant gap found, using max limit", extra={"max": config.max})
    return list(chunks[: config.max])


def select_final(chunks: Sequence[ScoredChunk], config: RerankerConfig) -> list[ScoredChunk]:
    """Filter by ``config.min_score`` then apply adaptive top-k when enabled."""
    filtered = filter_by_relevance(chunks, config.min_score)
    if config.adaptive_top_k.enabled and filtered:
        return select_adaptive_top_k(filtered, config.adaptive_top_k)
    return filtered


def compute_score_stats(chunks: Sequence[ScoredChunk]) -> tuple[float, float]:
    """Return ``(mean, population std-dev)`` of reranker scores, ``(0, 0)`` if empty."""
    if not chunks:
        return 0.0, 0.0
    scores = [sc.reranker_score for sc in chunks]
    return statistics.fmean(scores), statistics.pstdev(scores)


__all__ = [
    "filter_by_relevance",
    "select_adaptive_top_k",
    "select_final",
    "compute_score_stats",
]
