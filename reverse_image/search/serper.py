"""Candidate search against a Serper-style image-search API."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Protocol

import requests
from requests import Session

from ..crawl.fetch import RetryableHTTPStatusError, get_session, retryer
from ..errors import SearchUnavailable
from ..io.models import Candidate

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://google.serper.dev/images"
DEFAULT_TIMEOUT = 20.0
DEFAULT_MAX_RESULTS = 30


class ImageSearch(Protocol):
    """Anything able to turn a query into ordered image candidates."""

    def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[Candidate]:
        ...


class SerperImageSearch:
    """Issue one POST per query and normalise the provider's image hits."""

    def __init__(
        self,
        api_key: str | None,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
        session: Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session

    @classmethod
    def from_settings(cls, settings) -> "SerperImageSearch":
        return cls(
            api_key=settings.serper_api_key,
            endpoint=settings.serper_endpoint,
            timeout=settings.search_timeout,
        )

    def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[Candidate]:
        """Return candidates in provider order; raise ``SearchUnavailable`` on failure."""
        if not self.api_key:
            raise SearchUnavailable("Missing SERPER_API_KEY")
        if not query or not query.strip():
            raise SearchUnavailable("Search query is empty")

        try:
            payload = retryer(lambda: self._post(query.strip(), max_results))
        except RetryableHTTPStatusError as exc:
            raise SearchUnavailable(f"Image search failed: {exc}") from exc
        except requests.Timeout as exc:
            raise SearchUnavailable(f"Image search timed out after {self.timeout:.0f}s") from exc
        except requests.RequestException as exc:
            raise SearchUnavailable(f"Image search failed: {exc}") from exc
        except ValueError as exc:
            raise SearchUnavailable("Image search returned invalid JSON") from exc

        candidates = list(parse_image_results(payload))
        logger.info("Image search for %r returned %d candidates", query, len(candidates))
        return candidates[:max_results] if max_results > 0 else candidates

    def _post(self, query: str, max_results: int) -> Any:
        session = self._session if self._session is not None else get_session()
        response = session.post(
            self.endpoint,
            json={"q": query, "num": max_results},
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if 500 <= response.status_code < 600:
            raise RetryableHTTPStatusError(response.status_code)
        response.raise_for_status()
        return response.json()


def parse_image_results(payload: Any) -> Iterator[Candidate]:
    """Yield candidates from a provider payload, tolerating missing keys."""
    if not isinstance(payload, dict):
        return
    images = payload.get("images")
    if not isinstance(images, list):
        return
    for item in images:
        if not isinstance(item, dict):
            continue
        yield Candidate(
            title=_text(item.get("title")),
            source=_text(item.get("source")),
            link=_text(item.get("link")),
            image_url=_text(item.get("imageUrl") or item.get("image")),
            thumbnail_url=_text(item.get("thumbnailUrl") or item.get("thumbnail")),
        )


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
