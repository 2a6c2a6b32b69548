"""HTTP fetching utilities for candidate images and hosting pages."""

from __future__ import annotations

import logging
from threading import Lock
from urllib.parse import urlparse

import requests
from requests import Session
from tenacity import (  # type: ignore[import-untyped]
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import CandidateUnreachable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
MAX_IMAGE_BYTES = 20 * 1024 * 1024
_CHUNK_SIZE = 64 * 1024
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

_session_lock = Lock()
_session: Session | None = None


class RetryableHTTPStatusError(Exception):
    """Raised for HTTP status codes that should trigger a retry."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Server returned status {status_code}")
        self.status_code = status_code


def get_session() -> Session:
    """Return a shared requests session configured with browser headers."""
    global _session
    if _session is None:
        with _session_lock:
            if _session is None:
                session = requests.Session()
                session.headers.update(
                    {
                        "User-Agent": USER_AGENT,
                        "Accept-Language": "en-US,en;q=0.5",
                    }
                )
                _session = session
    return _session


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, requests.Timeout):
        return False
    return isinstance(exc, (requests.ConnectionError, RetryableHTTPStatusError))


# Timeouts are abandoned, never retried; only refused connections and 5xx
# responses get a second attempt.
retryer = Retrying(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    retry=retry_if_exception(_is_retryable),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)


def ensure_http_scheme(url: str) -> str:
    """Ensure *url* is qualified with an HTTP scheme, defaulting to https."""
    cleaned = url.strip()
    if not cleaned:
        return cleaned
    if cleaned.startswith(("http://", "https://")):
        return cleaned
    if cleaned.startswith("//"):
        return f"https:{cleaned}"
    parsed = urlparse(cleaned)
    if parsed.scheme:
        return cleaned
    return f"https://{cleaned}"


class HttpFetcher:
    """Generic fetcher for image bytes and HTML documents."""

    def __init__(self, session: Session | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._session = session
        self.timeout = timeout

    @property
    def session(self) -> Session:
        return self._session if self._session is not None else get_session()

    def fetch_image_bytes(self, url: str | None, referer: str | None = None) -> bytes:
        """Download an image, raising ``CandidateUnreachable`` on any failure."""
        if not url:
            raise CandidateUnreachable(url, "no image url")
        target_url = ensure_http_scheme(url)
        headers = {"Accept": "image/*,*/*;q=0.8"}
        if referer:
            headers["Referer"] = referer
        try:
            response = self.session.get(target_url, headers=headers, timeout=self.timeout, stream=True)
            try:
                response.raise_for_status()
                content = _read_capped(url, response)
            finally:
                response.close()
        except requests.RequestException as exc:
            raise CandidateUnreachable(url, str(exc)) from exc

        if not content:
            raise CandidateUnreachable(url, "empty response body")
        return content

    def fetch_html(self, url: str | None) -> tuple[str | None, str | None]:
        """Fetch *url*, returning the final URL and HTML content.

        On error the method returns ``(None, None)`` and logs the failure.
        """
        if not url:
            return None, None
        try:
            return retryer(lambda: self._fetch_once(url))
        except RetryableHTTPStatusError as exc:
            logger.warning("Server error fetching %s: %s", url, exc)
        except requests.RequestException as exc:
            logger.warning("Request error fetching %s: %s", url, exc)
        return None, None

    def _fetch_once(self, url: str) -> tuple[str, str]:
        target_url = ensure_http_scheme(url)
        response = self.session.get(
            target_url,
            headers={"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"},
            timeout=self.timeout,
            allow_redirects=True,
        )
        if 500 <= response.status_code < 600:
            raise RetryableHTTPStatusError(response.status_code)
        response.raise_for_status()
        if not response.encoding:
            response.encoding = response.apparent_encoding or "utf-8"
        return response.url, response.text


def _read_capped(url: str, response: requests.Response) -> bytes:
    """Read a streamed body, giving up once it passes ``MAX_IMAGE_BYTES``."""
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > MAX_IMAGE_BYTES:
        raise CandidateUnreachable(url, f"declared size of {declared} bytes is too large")

    buffer = bytearray()
    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
        buffer.extend(chunk)
        if len(buffer) > MAX_IMAGE_BYTES:
            raise CandidateUnreachable(url, f"payload exceeds {MAX_IMAGE_BYTES} bytes")
    return bytes(buffer)

