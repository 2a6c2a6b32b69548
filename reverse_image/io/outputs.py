"""Output helpers for serialising and persisting pipeline results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from .models import (
    Classification,
    EnrichedCandidate,
    PipelineResult,
    RankedMatch,
    Unavailable,
)


def match_to_dict(match: RankedMatch) -> dict[str, Any]:
    """Return the JSON-like record for a scored or enriched match.

    Unmeasured similarity terms and enrichment fields are omitted rather than
    reported as zero.
    """
    scored = match.scored if isinstance(match, EnrichedCandidate) else match
    candidate = scored.candidate
    similarity = scored.similarity

    record: dict[str, Any] = {
        "title": candidate.title,
        "source": candidate.source,
        "link": candidate.link,
        "imageUrl": candidate.image_url,
        "thumbnailUrl": candidate.thumbnail_url,
        "similarity": similarity.combined,
    }
    if similarity.perceptual is not None:
        record["phashSimilarity"] = similarity.perceptual
    if similarity.embedding is not None:
        record["clipSimilarity"] = similarity.embedding

    if isinstance(match, EnrichedCandidate):
        record["classification"] = classification_to_dict(match.classification)
        record["potentialInfringement"] = match.likely_infringing
        record["textSnippet"] = match.text_snippet
    return record


def classification_to_dict(classification: Classification) -> dict[str, Any]:
    record: dict[str, Any] = {
        "label": classification.label.value,
        "score": classification.score,
        "labels": list(classification.labels),
        "fallback": classification.fallback,
    }
    if classification.reasoning:
        record["reasoning"] = classification.reasoning
    return record


def result_to_dict(result: PipelineResult) -> dict[str, Any]:
    """Return the full run, including the query signature, as a JSON-like dict."""
    signature = result.signature
    embedding = signature.embedding
    return {
        "query": result.query,
        "state": result.state.value,
        "candidatesFound": result.candidates_found,
        "original": {
            "phash": signature.fingerprint.hash,
            "clipEmbedding": None if isinstance(embedding, Unavailable) else list(embedding),
            "clipUnavailableReason": embedding.reason if isinstance(embedding, Unavailable) else None,
        },
        "results": [match_to_dict(match) for match in result.matches],
    }


def write_results(path: Path, result: PipelineResult) -> Path:
    """Write *result* to *path* as JSON and return the path."""
    path.write_text(json.dumps(result_to_dict(result), indent=2), encoding="utf-8")
    return path


def write_results_table(path: Path, matches: Sequence[RankedMatch]) -> Path | None:
    """Write one row per match to a parquet table; return ``None`` when empty."""
    if not matches:
        return None

    rows: list[dict[str, Any]] = []
    for rank, match in enumerate(matches, start=1):
        record = match_to_dict(match)
        classification = record.get("classification") or {}
        rows.append(
            {
                "rank": rank,
                "title": record["title"],
                "source": record["source"],
                "link": record["link"],
                "image_url": record["imageUrl"],
                "thumbnail_url": record["thumbnailUrl"],
                "similarity": record["similarity"],
                "phash_similarity": record.get("phashSimilarity"),
                "clip_similarity": record.get("clipSimilarity"),
                "classification": classification.get("label"),
                "classification_score": classification.get("score"),
                "potential_infringement": record.get("potentialInfringement", False),
                "text_snippet": record.get("textSnippet"),
            }
        )

    df = pd.DataFrame(rows)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=False, engine="pyarrow")
    return path
