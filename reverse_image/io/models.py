"""Data models shared across the reverse-image pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

FINGERPRINT_GRID = 32


@dataclass(frozen=True, slots=True)
class Unavailable:
    """Marker for a signal that could not be measured."""

    reason: str

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class ImageFingerprint:
    """64-bit DCT perceptual hash encoded as 16 hex characters."""

    hash: str
    dimension: int = FINGERPRINT_GRID


# Embeddings are stored as tuples so scored records stay immutable.
EmbeddingVector = Tuple[float, ...]


@dataclass(frozen=True, slots=True)
class Candidate:
    """Raw image hit returned by the search provider."""

    title: str | None = None
    source: str | None = None
    link: str | None = None
    image_url: str | None = None
    thumbnail_url: str | None = None

    @property
    def download_url(self) -> str | None:
        """Thumbnail when present, otherwise the full image."""
        return self.thumbnail_url or self.image_url

    @property
    def page_url(self) -> str | None:
        return self.link or self.image_url or self.thumbnail_url


@dataclass(frozen=True, slots=True)
class SimilarityBreakdown:
    """Combined score plus the individual terms it was built from.

    ``None`` in a term means the signal was not measured; it contributes 0 to
    ``combined``.
    """

    combined: float
    perceptual: float | None
    embedding: float | None


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    """Candidate annotated with its similarity to the query image."""

    candidate: Candidate
    rank_order: int
    similarity: SimilarityBreakdown
    fingerprint: ImageFingerprint | None = None

    @property
    def combined_similarity(self) -> float:
        return self.similarity.combined


class UsageLabel(str, Enum):
    COMMERCIAL = "Commercial"
    EDUCATIONAL = "Educational"
    SAFE = "Safe"


@dataclass(frozen=True, slots=True)
class Classification:
    """Coarse usage category for the page hosting a match."""

    label: UsageLabel
    score: float
    labels: Tuple[str, ...] = ()
    reasoning: str = ""
    fallback: bool = False


@dataclass(frozen=True, slots=True)
class EnrichedCandidate:
    """Scored candidate whose hosting page was crawled and classified."""

    scored: ScoredCandidate
    text_snippet: str
    classification: Classification
    likely_infringing: bool

    @property
    def candidate(self) -> Candidate:
        return self.scored.candidate

    @property
    def similarity(self) -> SimilarityBreakdown:
        return self.scored.similarity

    @property
    def combined_similarity(self) -> float:
        return self.scored.similarity.combined


RankedMatch = ScoredCandidate | EnrichedCandidate


@dataclass(frozen=True, slots=True)
class QuerySignature:
    """Fingerprint and embedding of the query image."""

    fingerprint: ImageFingerprint
    embedding: EmbeddingVector | Unavailable


class PipelineState(str, Enum):
    PENDING = "pending"
    SEARCHING = "searching"
    SCORING = "scoring"
    RANKING = "ranking"
    ENRICHING = "enriching"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class PipelineResult:
    """Outcome of one pipeline run."""

    query: str
    state: PipelineState
    signature: QuerySignature
    matches: list[RankedMatch] = field(default_factory=list)
    candidates_found: int = 0

    @property
    def infringing(self) -> list[EnrichedCandidate]:
        return [
            match
            for match in self.matches
            if isinstance(match, EnrichedCandidate) and match.likely_infringing
        ]
