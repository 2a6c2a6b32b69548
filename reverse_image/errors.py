"""Error taxonomy for the reverse-image matching pipeline."""

from __future__ import annotations


class ReverseImageError(Exception):
    """Base class for all pipeline errors."""


class SearchUnavailable(ReverseImageError):
    """Raised when the image-search provider cannot produce candidates."""


class InvalidQueryImage(ReverseImageError):
    """Raised when the query image cannot be decoded."""


class CandidateUnreachable(ReverseImageError):
    """Raised when a candidate image cannot be downloaded or decoded."""

    def __init__(self, url: str | None, reason: str) -> None:
        super().__init__(f"{url or '<no url>'}: {reason}")
        self.url = url
        self.reason = reason


class EmbeddingUnavailable(ReverseImageError):
    """Raised by embedding backends that cannot load or infer."""


class ClassificationUnavailable(ReverseImageError):
    """Raised when the text-classification provider cannot be reached."""
