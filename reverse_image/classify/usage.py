"""Coarse usage classification of pages hosting a visual match."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import requests
from requests import Session

from ..crawl.fetch import get_session
from ..errors import ClassificationUnavailable
from ..io.models import Classification, UsageLabel

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api-inference.huggingface.co/models"
DEFAULT_CLASSIFIER_MODEL = "facebook/bart-large-mnli"
DEFAULT_EXPLAIN_MODEL = "google/flan-t5-small"
DEFAULT_TIMEOUT = 20.0

CANDIDATE_LABELS: tuple[str, ...] = tuple(label.value for label in UsageLabel)
CLASSIFY_INPUT_LIMIT = 2000
EXPLAIN_CONTEXT_LIMIT = 800

DEFAULT_CLASSIFICATION = Classification(label=UsageLabel.SAFE, score=0.5, fallback=True)


class UsageClassifier(Protocol):
    def classify(self, text: str) -> Classification:
        ...

    def explain(self, prompt: str) -> str:
        ...


class HostedZeroShotClassifier:
    """Zero-shot classification through a hosted inference API.

    Any failure (missing credential, network error, unexpected payload)
    yields :data:`DEFAULT_CLASSIFICATION` so enrichment never blocks.
    """

    def __init__(
        self,
        api_key: str | None,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_CLASSIFIER_MODEL,
        explain_model: str = DEFAULT_EXPLAIN_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.explain_model = explain_model
        self.timeout = timeout
        self._session = session

    @classmethod
    def from_settings(cls, settings) -> "HostedZeroShotClassifier":
        return cls(
            api_key=settings.hf_api_key,
            endpoint=settings.hf_endpoint,
            model=settings.classifier_model,
            explain_model=settings.explain_model,
            timeout=settings.classify_timeout,
        )

    def classify(self, text: str) -> Classification:
        try:
            return self._classify(text)
        except ClassificationUnavailable as exc:
            logger.debug("Classification unavailable, using default: %s", exc)
        except Exception as exc:
            logger.warning("Classification failed, using default: %s", exc)
        return DEFAULT_CLASSIFICATION

    def explain(self, prompt: str) -> str:
        """Return a short free-form rationale, or ``""`` when unavailable."""
        try:
            payload = self._post(self.explain_model, {"inputs": prompt[:CLASSIFY_INPUT_LIMIT]})
        except ClassificationUnavailable as exc:
            logger.debug("Explanation unavailable: %s", exc)
            return ""
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            generated = payload[0].get("generated_text")
            if isinstance(generated, str):
                return generated.strip()
        return ""

    def _classify(self, text: str) -> Classification:
        payload = self._post(
            self.model,
            {
                "inputs": (text or "")[:CLASSIFY_INPUT_LIMIT],
                "parameters": {"candidate_labels": list(CANDIDATE_LABELS), "multi_label": False},
            },
        )
        labels, scores = _parse_zero_shot(payload)
        if not labels:
            raise ClassificationUnavailable("classifier returned no labels")
        try:
            label = UsageLabel(labels[0])
        except ValueError as exc:
            raise ClassificationUnavailable(f"unexpected label {labels[0]!r}") from exc
        score = scores[0] if scores else 0.0
        return Classification(
            label=label,
            score=float(max(0.0, min(1.0, score))),
            labels=tuple(labels),
        )

    def _post(self, model: str, body: dict[str, Any]) -> Any:
        if not self.api_key:
            raise ClassificationUnavailable("HF_API_KEY is not configured")
        session = self._session if self._session is not None else get_session()
        try:
            response = session.post(
                f"{self.endpoint}/{model}",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise ClassificationUnavailable(f"{model}: {exc}") from exc
        except ValueError as exc:
            raise ClassificationUnavailable(f"{model}: invalid JSON response") from exc


def explain_prompt(text: str) -> str:
    """Build the rationale prompt for a page's extracted text."""
    return (
        "Classify the following page context as Commercial, Educational, or Safe "
        "and explain briefly.\n\n"
        f"Context:\n{(text or '')[:EXPLAIN_CONTEXT_LIMIT]}\n\nAnswer:"
    )


def _parse_zero_shot(payload: Any) -> tuple[list[str], list[float]]:
    """Accept both ``{labels, scores}`` and ``[{label, score}, ...]`` payloads."""
    if isinstance(payload, dict):
        labels = payload.get("labels")
        scores = payload.get("scores")
        if isinstance(labels, list):
            return [str(item) for item in labels], _floats(scores)
        return [], []
    if isinstance(payload, list):
        items = [item for item in payload if isinstance(item, dict) and item.get("label") is not None]
        pairs = list(
            zip(
                [str(item.get("label")) for item in items],
                _floats([item.get("score") for item in items]),
            )
        )
        pairs.sort(key=lambda pair: pair[1], reverse=True)
        return [label for label, _ in pairs], [score for _, score in pairs]
    return [], []


def _floats(values: Sequence[Any] | None) -> list[float]:
    if not isinstance(values, list):
        return []
    result: list[float] = []
    for value in values:
        try:
            result.append(float(value))
        except (TypeError, ValueError):
            result.append(0.0)
    return result
