import json

import pandas as pd

from conftest import make_candidate
from reverse_image.io.models import (
    Classification,
    EnrichedCandidate,
    ImageFingerprint,
    PipelineResult,
    PipelineState,
    QuerySignature,
    ScoredCandidate,
    SimilarityBreakdown,
    Unavailable,
    UsageLabel,
)
from reverse_image.io.outputs import match_to_dict, result_to_dict, write_results, write_results_table


def _scored(index=0, combined=0.9, perceptual=0.9, embedding=None):
    return ScoredCandidate(
        candidate=make_candidate(index),
        rank_order=index,
        similarity=SimilarityBreakdown(combined=combined, perceptual=perceptual, embedding=embedding),
        fingerprint=ImageFingerprint("ffff000000000000"),
    )


def _enriched(scored, label=UsageLabel.COMMERCIAL, reasoning=""):
    return EnrichedCandidate(
        scored=scored,
        text_snippet="Buy now",
        classification=Classification(label=label, score=0.9, labels=("Commercial",), reasoning=reasoning),
        likely_infringing=label is UsageLabel.COMMERCIAL,
    )


def _result(matches, embedding=Unavailable("disabled")):
    return PipelineResult(
        query="mug",
        state=PipelineState.DONE,
        signature=QuerySignature(fingerprint=ImageFingerprint("ffff000000000000"), embedding=embedding),
        matches=matches,
        candidates_found=len(matches),
    )


def test_scored_match_omits_unmeasured_terms():
    record = match_to_dict(_scored())
    assert record["similarity"] == 0.9
    assert record["phashSimilarity"] == 0.9
    assert "clipSimilarity" not in record
    assert "classification" not in record
    assert record["thumbnailUrl"] == "https://thumbs.example/0.png"


def test_enriched_match_carries_classification():
    record = match_to_dict(_enriched(_scored(embedding=0.8), reasoning="Sells mugs."))
    assert record["clipSimilarity"] == 0.8
    assert record["potentialInfringement"] is True
    assert record["textSnippet"] == "Buy now"
    assert record["classification"] == {
        "label": "Commercial",
        "score": 0.9,
        "labels": ["Commercial"],
        "fallback": False,
        "reasoning": "Sells mugs.",
    }


def test_result_reports_unavailable_embedding():
    payload = result_to_dict(_result([_scored()]))
    assert payload["state"] == "done"
    assert payload["original"] == {
        "phash": "ffff000000000000",
        "clipEmbedding": None,
        "clipUnavailableReason": "disabled",
    }
    assert len(payload["results"]) == 1


def test_result_includes_query_embedding():
    payload = result_to_dict(_result([], embedding=(0.6, 0.8)))
    assert payload["original"]["clipEmbedding"] == [0.6, 0.8]
    assert payload["original"]["clipUnavailableReason"] is None


def test_write_results_json(tmp_path):
    path = write_results(tmp_path / "results.json", _result([_enriched(_scored())]))
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["query"] == "mug"
    assert payload["results"][0]["classification"]["label"] == "Commercial"


def test_write_results_table(tmp_path):
    matches = [_enriched(_scored(0)), _scored(1, combined=0.4, perceptual=0.4)]
    path = write_results_table(tmp_path / "nested" / "results.parquet", matches)
    df = pd.read_parquet(path)
    assert list(df["rank"]) == [1, 2]
    assert list(df["potential_infringement"]) == [True, False]
    assert df.loc[0, "classification"] == "Commercial"
    assert pd.isna(df.loc[1, "classification"])


def test_write_results_table_skips_empty(tmp_path):
    assert write_results_table(tmp_path / "results.parquet", []) is None
    assert not (tmp_path / "results.parquet").exists()
