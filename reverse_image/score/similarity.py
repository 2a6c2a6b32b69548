"""Similarity scoring between a query image and its search candidates."""

from __future__ import annotations

from typing import Iterable, Sequence, TypeVar

from ..features.embedding import cosine_similarity
from ..features.perceptual import perceptual_similarity
from ..io.models import ImageFingerprint, SimilarityBreakdown, Unavailable

DEFAULT_EMBEDDING_WEIGHT: float = 0.5
ENRICHMENT_THRESHOLD: float = 0.8

EmbeddingLike = Sequence[float] | Unavailable | None
Ranked = TypeVar("Ranked")


def clamp_weight(weight: float | None) -> float:
    """Clamp an embedding weight to the unit interval."""
    if weight is None:
        return DEFAULT_EMBEDDING_WEIGHT
    return float(max(0.0, min(1.0, float(weight))))


def clamp_threshold(threshold: float | None) -> float:
    """Clamp an enrichment threshold to the unit interval."""
    if threshold is None:
        return ENRICHMENT_THRESHOLD
    return float(max(0.0, min(1.0, float(threshold))))


def combine(
    fingerprint_a: ImageFingerprint | None,
    fingerprint_b: ImageFingerprint | None,
    embedding_a: EmbeddingLike,
    embedding_b: EmbeddingLike,
    embedding_weight: float = DEFAULT_EMBEDDING_WEIGHT,
) -> SimilarityBreakdown:
    """Return the weighted perceptual/embedding similarity between two images.

    A missing signal is reported as ``None`` and contributes 0 to its weighted
    term; the combiner never raises for absent inputs.
    """
    weight = clamp_weight(embedding_weight)

    perceptual: float | None = None
    if fingerprint_a is not None and fingerprint_b is not None:
        perceptual = perceptual_similarity(fingerprint_a, fingerprint_b)

    embedding: float | None = None
    if _has_vector(embedding_a) and _has_vector(embedding_b):
        embedding = cosine_similarity(embedding_a, embedding_b)

    score = (1.0 - weight) * (perceptual or 0.0) + weight * (embedding or 0.0)
    return SimilarityBreakdown(
        combined=float(max(0.0, min(1.0, score))),
        perceptual=perceptual,
        embedding=embedding,
    )


def rank_by_similarity(results: Iterable[Ranked]) -> list[Ranked]:
    """Sort results by combined similarity, highest first.

    ``sorted`` is stable, so equal scores keep their search-provider order.
    """
    return sorted(results, key=lambda item: item.combined_similarity, reverse=True)


def qualifies_for_enrichment(score: float, threshold: float = ENRICHMENT_THRESHOLD) -> bool:
    return score >= threshold


def _has_vector(value: EmbeddingLike) -> bool:
    if value is None or isinstance(value, Unavailable):
        return False
    return len(value) > 0
