"""Typed runtime configuration for the reverse-image pipeline."""

from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, Field, field_validator

_FALSE_VALUES = {"0", "false", "no", "off"}


class Settings(BaseModel):
    """Settings shared by the search, scoring and enrichment stages."""

    serper_api_key: str | None = Field(default=None, description="Credential for the image-search provider.")
    serper_endpoint: str = Field(default="https://google.serper.dev/images")
    search_results: int = Field(default=30, ge=1, description="Number of candidates requested per search.")

    hf_api_key: str | None = Field(default=None, description="Credential for the hosted text classifier.")
    hf_endpoint: str = Field(default="https://api-inference.huggingface.co/models")
    classifier_model: str = Field(default="facebook/bart-large-mnli")
    explain_model: str = Field(default="google/flan-t5-small")
    explain_matches: bool = Field(default=False, description="Attach a short rationale to enriched matches.")

    enable_embedding: bool = Field(default=True, description="Load the visual embedding backend.")
    embedding_model: str = Field(default="openai/clip-vit-base-patch32")
    embedding_weight: float = Field(default=0.5, description="Weight of the embedding term in [0, 1].")

    top_k: int = Field(default=10, ge=0, description="Number of ranked matches eligible for enrichment.")
    enrichment_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    search_timeout: float = Field(default=20.0, gt=0)
    fetch_timeout: float = Field(default=15.0, gt=0)
    classify_timeout: float = Field(default=20.0, gt=0)
    max_workers: int = Field(default=8, ge=1, description="Concurrent candidate downloads.")

    @field_validator("embedding_weight")
    @classmethod
    def _clamp_weight(cls, value: float) -> float:
        return max(0.0, min(1.0, float(value)))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Instantiate settings, overriding defaults from environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        for field_name, env_name in (
            ("serper_api_key", "SERPER_API_KEY"),
            ("serper_endpoint", "SERPER_ENDPOINT"),
            ("search_results", "SEARCH_RESULTS"),
            ("hf_api_key", "HF_API_KEY"),
            ("classifier_model", "CLASSIFIER_MODEL"),
            ("explain_model", "EXPLAIN_MODEL"),
            ("embedding_model", "EMBEDDING_MODEL"),
            ("embedding_weight", "EMBEDDING_WEIGHT"),
            ("top_k", "TOP_K"),
            ("enrichment_threshold", "ENRICHMENT_THRESHOLD"),
            ("max_workers", "MAX_WORKERS"),
        ):
            raw = env.get(env_name)
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()

        enable_clip = env.get("ENABLE_CLIP")
        if enable_clip is not None:
            values["enable_embedding"] = enable_clip.strip().lower() not in _FALSE_VALUES
        explain = env.get("EXPLAIN_MATCHES")
        if explain is not None:
            values["explain_matches"] = explain.strip().lower() not in _FALSE_VALUES | {""}

        return cls(**values)


__all__ = ["Settings"]
