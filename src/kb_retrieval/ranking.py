"""Similarity metrics and exact ranking of candidate chunks.

Scores a query vector against candidate chunks, drops anything under the
threshold, orders by descending score (ties -> earliest chunk position) and
truncates to top_k. The candidate set may come from an approximate index;
exactness holds only over the candidates given.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
import structlog

from src.kb_retrieval.exceptions import DimensionMismatchError
from src.kb_retrieval.models import KnowledgeChunk, RankOptions, SearchResult

logger = structlog.get_logger(__name__)


def _as_pair(a: Sequence[float], b: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    return np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), or 0.0 when either vector has zero norm."""
    va, vb = _as_pair(a, b)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """L2 distance between two vectors of equal length."""
    va, vb = _as_pair(a, b)
    return float(np.linalg.norm(va - vb))


def euclidean_score(a: Sequence[float], b: Sequence[float]) -> float:
    """Map Euclidean distance onto (0, 1] so higher means closer."""
    return 1.0 / (1.0 + euclidean_distance(a, b))


_METRICS = {
    "cosine": cosine_similarity,
    "euclidean": euclidean_score,
}


def sort_results(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Order by descending score, ties broken by earliest chunk position.

    Python's sort is stable, so remaining ties keep their input order.
    """
    return sorted(results, key=lambda r: (-r.score, r.position))


def score_chunk(
    query_vector: Sequence[float],
    chunk: KnowledgeChunk,
    metric: str = "cosine",
) -> SearchResult:
    """Project a chunk onto a SearchResult scored against the query."""
    score = _METRICS[metric](query_vector, chunk.embedding or [])
    return SearchResult(
        chunk_id=chunk.id,
        document_id=chunk.document_id,
        knowledge_base_id=chunk.knowledge_base_id,
        content=chunk.content,
        score=score,
        source=chunk.source_title,
        position=chunk.position,
        metadata=chunk.metadata,
    )


def rank(
    query_vector: Sequence[float],
    candidates: Iterable[KnowledgeChunk],
    options: RankOptions | None = None,
) -> list[SearchResult]:
    """Score, threshold, sort and truncate candidate chunks.

    Chunks without an embedding are skipped. A candidate whose embedding
    length differs from the query raises DimensionMismatchError.

    Args:
        query_vector: Embedding of the user query.
        candidates: Chunks to score.
        options: top_k (1-20), threshold and metric.

    Returns:
        At most top_k SearchResults, every one with score >= threshold.
    """
    options = options or RankOptions()
    scored: list[SearchResult] = []
    skipped = 0

    for chunk in candidates:
        if not chunk.embedding:
            skipped += 1
            continue
        result = score_chunk(query_vector, chunk, options.metric)
        if result.score >= options.threshold:
            scored.append(result)

    ranked = sort_results(scored)[: options.top_k]

    logger.debug(
        "ranking.completed",
        above_threshold=len(scored),
        returned=len(ranked),
        skipped_unembedded=skipped,
        threshold=options.threshold,
        metric=options.metric,
    )
    return ranked
