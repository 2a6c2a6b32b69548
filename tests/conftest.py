"""Shared test fixtures for reverse-image tests."""

from io import BytesIO

import numpy as np
import pytest
import requests
from PIL import Image

from reverse_image.errors import CandidateUnreachable, EmbeddingUnavailable
from reverse_image.extract.normalize import decode_image
from reverse_image.io.models import Candidate, Classification, UsageLabel


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode an RGB uint8 array as PNG bytes."""
    buffer = BytesIO()
    Image.fromarray(pixels.astype(np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def noise_bytes(seed: int, size: int = 200) -> bytes:
    rng = np.random.RandomState(seed)
    return encode_png(rng.randint(0, 255, (size, size, 3), dtype=np.uint8))


@pytest.fixture
def red_square_bytes():
    """200x200 red square on a white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]
    return encode_png(img)


@pytest.fixture
def blue_circle_bytes():
    """200x200 blue disc on a white background."""
    yy, xx = np.mgrid[0:200, 0:200]
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[(yy - 100) ** 2 + (xx - 100) ** 2 <= 60 ** 2] = [30, 30, 200]
    return encode_png(img)


@pytest.fixture
def gradient_bytes():
    """Horizontal greyscale gradient, 320x160."""
    row = np.linspace(0, 255, 320, dtype=np.float64)
    grey = np.tile(row, (160, 1))
    return encode_png(np.stack([grey] * 3, axis=-1))


@pytest.fixture
def noise_image_bytes():
    return noise_bytes(42)


class FakeSearch:
    """In-memory image search returning a fixed candidate list."""

    def __init__(self, candidates=None, error=None):
        self.candidates = list(candidates or [])
        self.error = error
        self.calls = []

    def search(self, query, max_results=30):
        self.calls.append((query, max_results))
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class FakeFetcher:
    """Serves image bytes and HTML from dictionaries keyed by URL."""

    def __init__(self, images=None, pages=None):
        self.images = dict(images or {})
        self.pages = dict(pages or {})
        self.image_requests = []
        self.page_requests = []

    def fetch_image_bytes(self, url, referer=None):
        self.image_requests.append(url)
        if url not in self.images:
            raise CandidateUnreachable(url, "not found")
        return self.images[url]

    def fetch_html(self, url):
        self.page_requests.append(url)
        html = self.pages.get(url)
        return (url, html) if html is not None else (None, None)


class FakeClassifier:
    """Classifies any text containing 'buy' as commercial."""

    def __init__(self):
        self.texts = []

    def classify(self, text):
        self.texts.append(text)
        if "buy" in (text or "").lower():
            return Classification(label=UsageLabel.COMMERCIAL, score=0.9, labels=("Commercial", "Safe", "Educational"))
        return Classification(label=UsageLabel.EDUCATIONAL, score=0.7, labels=("Educational", "Safe", "Commercial"))

    def explain(self, prompt):
        return "Product page."


class PixelBackend:
    """Embedding backend built from a tiny colour thumbnail."""

    name = "pixels"

    def __init__(self, fail_load=False, fail_embed=False):
        self.fail_load = fail_load
        self.fail_embed = fail_embed
        self.load_calls = 0

    def load(self):
        self.load_calls += 1
        if self.fail_load:
            raise EmbeddingUnavailable("weights missing")

    def embed(self, image_bytes):
        if self.fail_embed:
            raise EmbeddingUnavailable("inference failed")
        img = decode_image(image_bytes)
        thumb = img.resize((4, 4))
        vector = np.asarray(thumb, dtype=np.float64).ravel() + 1.0
        thumb.close()
        img.close()
        return vector.tolist()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def pixel_backend():
    return PixelBackend()


def make_candidate(index: int, **overrides) -> Candidate:
    values = {
        "title": f"Hit {index}",
        "source": f"site{index}.example",
        "link": f"https://site{index}.example/page",
        "image_url": f"https://site{index}.example/full.png",
        "thumbnail_url": f"https://thumbs.example/{index}.png",
    }
    values.update(overrides)
    return Candidate(**values)



class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code=200, payload=None, content=b"", text="", url="", encoding="utf-8", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = text
        self.url = url
        self.encoding = encoding
        self.apparent_encoding = "utf-8"
        self.headers = dict(headers or {})
        self.closed = False
        self.bytes_read = 0

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            chunk = self.content[start : start + chunk_size]
            self.bytes_read += len(chunk)
            yield chunk

    def close(self):
        self.closed = True

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    """Records requests and replays queued responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)
