"""Reverse-image pipeline: search, score, rank and enrich candidate matches."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Sequence

from tqdm import tqdm

from .classify.usage import HostedZeroShotClassifier, UsageClassifier, explain_prompt
from .config import Settings
from .crawl.fetch import HttpFetcher
from .crawl.page_text import extract_page_text, snippet
from .errors import CandidateUnreachable, InvalidQueryImage, SearchUnavailable
from .extract.normalize import DECODE_ERRORS, normalize_image
from .features.embedding import EmbeddingEngine
from .features.perceptual import compute_fingerprint
from .io.models import (
    Candidate,
    EnrichedCandidate,
    PipelineResult,
    PipelineState,
    QuerySignature,
    RankedMatch,
    ScoredCandidate,
    UsageLabel,
)
from .score.similarity import (
    clamp_threshold,
    clamp_weight,
    combine,
    qualifies_for_enrichment,
    rank_by_similarity,
)
from .search.serper import ImageSearch, SerperImageSearch

logger = logging.getLogger(__name__)


class ReverseImagePipeline:
    """Wire the search, scoring and classification collaborators together.

    The pipeline object holds only collaborators and defaults; every call to
    :meth:`start` creates an independent :class:`PipelineRun`.
    """

    def __init__(
        self,
        searcher: ImageSearch,
        embeddings: EmbeddingEngine,
        classifier: UsageClassifier,
        fetcher: HttpFetcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.searcher = searcher
        self.embeddings = embeddings
        self.classifier = classifier
        self.fetcher = fetcher or HttpFetcher(timeout=self.settings.fetch_timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReverseImagePipeline":
        return cls(
            searcher=SerperImageSearch.from_settings(settings),
            embeddings=EmbeddingEngine.from_settings(settings),
            classifier=HostedZeroShotClassifier.from_settings(settings),
            fetcher=HttpFetcher(timeout=settings.fetch_timeout),
            settings=settings,
        )

    def start(
        self,
        image_bytes: bytes,
        query: str,
        embedding_weight: float | None = None,
        top_k: int | None = None,
        enrichment_threshold: float | None = None,
        show_progress: bool = False,
    ) -> "PipelineRun":
        settings = self.settings
        return PipelineRun(
            self,
            image_bytes=image_bytes,
            query=query,
            embedding_weight=clamp_weight(
                settings.embedding_weight if embedding_weight is None else embedding_weight
            ),
            top_k=settings.top_k if top_k is None else max(0, int(top_k)),
            enrichment_threshold=clamp_threshold(
                settings.enrichment_threshold if enrichment_threshold is None else enrichment_threshold
            ),
            show_progress=show_progress,
        )

    def run(self, image_bytes: bytes, query: str, **options) -> PipelineResult:
        """Execute one reverse-image search and return the ranked matches."""
        return self.start(image_bytes, query, **options).execute()


class PipelineRun:
    """State for a single invocation of the pipeline."""

    def __init__(
        self,
        pipeline: ReverseImagePipeline,
        image_bytes: bytes,
        query: str,
        embedding_weight: float,
        top_k: int,
        enrichment_threshold: float,
        show_progress: bool = False,
    ) -> None:
        self.pipeline = pipeline
        self.image_bytes = image_bytes
        self.query = query
        self.embedding_weight = embedding_weight
        self.top_k = top_k
        self.enrichment_threshold = enrichment_threshold
        self.show_progress = show_progress
        self.state = PipelineState.PENDING
        self.history: list[PipelineState] = [PipelineState.PENDING]
        self.signature: QuerySignature | None = None

    def execute(self) -> PipelineResult:
        # An undecodable query makes every score meaningless, so fail before
        # spending a search request on it.
        signature = self._signature_for_query()

        self._transition(PipelineState.SEARCHING)
        try:
            candidates = self.pipeline.searcher.search(
                self.query, self.pipeline.settings.search_results
            )
        except SearchUnavailable:
            self._transition(PipelineState.FAILED)
            logger.warning("Reverse-image search failed for %r", self.query)
            raise

        self._transition(PipelineState.SCORING)
        scored = self._score_all(candidates, signature)

        self._transition(PipelineState.RANKING)
        ranked = rank_by_similarity(scored)

        self._transition(PipelineState.ENRICHING)
        matches = self._enrich_top(ranked)

        self._transition(PipelineState.DONE)
        logger.info(
            "Scored %d of %d candidates for %r (%d enriched)",
            len(scored),
            len(candidates),
            self.query,
            sum(isinstance(match, EnrichedCandidate) for match in matches),
        )
        return PipelineResult(
            query=self.query,
            state=self.state,
            signature=signature,
            matches=matches,
            candidates_found=len(candidates),
        )

    def _transition(self, state: PipelineState) -> None:
        logger.debug("Pipeline %r: %s -> %s", self.query, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _signature_for_query(self) -> QuerySignature:
        if not self.image_bytes:
            self._transition(PipelineState.FAILED)
            raise InvalidQueryImage("Query image is empty")
        try:
            normalized = normalize_image(self.image_bytes)
            fingerprint = compute_fingerprint(normalized)
        except DECODE_ERRORS as exc:
            self._transition(PipelineState.FAILED)
            raise InvalidQueryImage(f"Query image could not be decoded: {exc}") from exc

        embedding = self.pipeline.embeddings.compute_embedding(normalized)
        self.signature = QuerySignature(fingerprint=fingerprint, embedding=embedding)
        return self.signature

    def _score_all(
        self, candidates: Sequence[Candidate], signature: QuerySignature
    ) -> list[ScoredCandidate]:
        if not candidates:
            return []

        workers = min(self.pipeline.settings.max_workers, len(candidates))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = executor.map(
                lambda pair: self._score_one(pair[0], pair[1], signature),
                enumerate(candidates),
            )
            scored = [
                item
                for item in tqdm(
                    results,
                    total=len(candidates),
                    desc="Scoring candidates",
                    unit="image",
                    leave=False,
                    disable=not self.show_progress,
                )
                if item is not None
            ]
        return scored

    def _score_one(
        self, index: int, candidate: Candidate, signature: QuerySignature
    ) -> ScoredCandidate | None:
        try:
            raw = self.pipeline.fetcher.fetch_image_bytes(
                candidate.download_url, referer=candidate.link
            )
            try:
                normalized = normalize_image(raw)
                fingerprint = compute_fingerprint(normalized)
            except DECODE_ERRORS as exc:
                raise CandidateUnreachable(candidate.download_url, f"undecodable image: {exc}") from exc
        except CandidateUnreachable as exc:
            logger.debug("Skipping candidate %d: %s", index, exc)
            return None

        embedding = self.pipeline.embeddings.compute_embedding(normalized)
        similarity = combine(
            signature.fingerprint,
            fingerprint,
            signature.embedding,
            embedding,
            self.embedding_weight,
        )
        return ScoredCandidate(
            candidate=candidate,
            rank_order=index,
            similarity=similarity,
            fingerprint=fingerprint,
        )

    def _enrich_top(self, ranked: list[ScoredCandidate]) -> list[RankedMatch]:
        eligible = [
            position
            for position, item in enumerate(ranked[: self.top_k])
            if qualifies_for_enrichment(item.combined_similarity, self.enrichment_threshold)
        ]
        matches: list[RankedMatch] = list(ranked)
        if not eligible:
            return matches

        workers = min(self.pipeline.settings.max_workers, len(eligible))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            enriched = executor.map(lambda position: self._enrich_or_pass(ranked[position]), eligible)
            for position, item in zip(eligible, enriched):
                matches[position] = item
        return matches

    def _enrich_or_pass(self, scored: ScoredCandidate) -> RankedMatch:
        try:
            return self._enrich(scored)
        except Exception as exc:
            logger.warning("Enrichment failed for %s: %s", scored.candidate.page_url, exc)
            return scored

    def _enrich(self, scored: ScoredCandidate) -> EnrichedCandidate:
        classifier = self.pipeline.classifier
        _, html = self.pipeline.fetcher.fetch_html(scored.candidate.page_url)
        text = extract_page_text(html)
        classification = classifier.classify(text)
        if self.pipeline.settings.explain_matches:
            reasoning = classifier.explain(explain_prompt(text))
            if reasoning:
                classification = replace(classification, reasoning=reasoning)

        likely_infringing = (
            scored.combined_similarity >= self.enrichment_threshold
            and classification.label is UsageLabel.COMMERCIAL
        )
        return EnrichedCandidate(
            scored=scored,
            text_snippet=snippet(text),
            classification=classification,
            likely_infringing=likely_infringing,
        )

