"""Visual embedding engine with a lazily initialised, pluggable backend."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol, Sequence

import numpy as np

from ..errors import EmbeddingUnavailable
from ..extract.normalize import DECODE_ERRORS, decode_image
from ..io.models import EmbeddingVector, Unavailable

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openai/clip-vit-base-patch32"


class EmbeddingBackend(Protocol):
    """Feature extractor turning image bytes into a raw vector."""

    name: str

    def load(self) -> None:
        """Load model weights; raise ``EmbeddingUnavailable`` on failure."""

    def embed(self, image_bytes: bytes) -> Sequence[float]:
        """Return a raw (not necessarily normalised) feature vector."""


class ClipBackend:
    """CLIP image tower served through Hugging Face transformers."""

    def __init__(self, model_name: str = DEFAULT_MODEL, device: str | None = None) -> None:
        self.model_name = model_name
        self.name = f"clip:{model_name}"
        self._device = device
        self._model = None
        self._processor = None
        self._torch = None

    def load(self) -> None:
        try:
            import torch
            from transformers import CLIPModel, CLIPProcessor
        except ImportError as exc:
            raise EmbeddingUnavailable("torch/transformers are not installed") from exc

        device = self._device or ("cuda" if torch.cuda.is_available() else "cpu")
        try:
            model = CLIPModel.from_pretrained(self.model_name)
            processor = CLIPProcessor.from_pretrained(self.model_name)
            model.to(device)
            model.eval()
        except (OSError, ValueError, RuntimeError) as exc:
            raise EmbeddingUnavailable(f"failed to load {self.model_name}: {exc}") from exc

        self._torch = torch
        self._model = model
        self._processor = processor
        self._device = device
        logger.info("Loaded embedding model %s on %s", self.model_name, device)

    def embed(self, image_bytes: bytes) -> Sequence[float]:
        if self._model is None or self._processor is None or self._torch is None:
            raise EmbeddingUnavailable("backend is not loaded")

        image = decode_image(image_bytes)
        try:
            inputs = self._processor(images=image, return_tensors="pt").to(self._device)
            with self._torch.no_grad():
                features = self._model.get_image_features(**inputs)
        finally:
            image.close()
        return features[0].detach().cpu().numpy().astype(np.float32).tolist()


class EmbeddingEngine:
    """Owns one embedding backend for the lifetime of the process.

    The backend is loaded at most once, either explicitly through
    :meth:`initialize` or on the first call to :meth:`compute_embedding`.
    A failed load is remembered so later calls return ``Unavailable``
    immediately instead of retrying the load.
    """

    def __init__(self, backend: EmbeddingBackend | None = None, enabled: bool = True) -> None:
        self._backend = backend
        self._enabled = enabled and backend is not None
        self._lock = Lock()
        self._ready = False
        self._load_error: str | None = None if self._enabled else "embedding backend disabled"

    @classmethod
    def from_settings(cls, settings) -> "EmbeddingEngine":
        if not settings.enable_embedding:
            return cls(backend=None, enabled=False)
        return cls(backend=ClipBackend(settings.embedding_model), enabled=True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_ready(self) -> bool:
        """Return ``True`` once the backend has loaded successfully."""
        return self._ready

    def initialize(self) -> bool:
        """Load the backend if needed and report whether it is usable."""
        if self._ready:
            return True
        if self._load_error is not None:
            return False
        with self._lock:
            if self._ready:
                return True
            if self._load_error is not None:
                return False
            try:
                self._backend.load()
            except Exception as exc:
                self._load_error = str(exc) or type(exc).__name__
                logger.warning("Embedding backend unavailable: %s", exc)
                return False
            self._ready = True
            return True

    def compute_embedding(self, image_bytes: bytes) -> EmbeddingVector | Unavailable:
        """Return an L2-normalised embedding or an ``Unavailable`` marker."""
        if not self.initialize():
            return Unavailable(self._load_error or "embedding backend unavailable")

        try:
            raw = self._backend.embed(image_bytes)
        except EmbeddingUnavailable as exc:
            logger.debug("Embedding inference unavailable: %s", exc)
            return Unavailable(str(exc))
        except DECODE_ERRORS as exc:
            logger.debug("Embedding input could not be decoded: %s", exc)
            return Unavailable(f"undecodable image: {exc}")
        except Exception as exc:
            logger.warning("Embedding inference failed: %s", exc)
            return Unavailable(f"inference failed: {exc}")

        vector = _l2_normalize(np.asarray(raw, dtype=np.float64).ravel())
        if vector is None:
            return Unavailable("backend returned an empty or zero vector")
        return tuple(float(value) for value in vector)


def cosine_similarity(
    vector_a: Sequence[float] | Unavailable | None,
    vector_b: Sequence[float] | Unavailable | None,
) -> float:
    """Return cosine similarity in [0, 1]; 0 for absent, mismatched or zero vectors."""
    if vector_a is None or vector_b is None:
        return 0.0
    if isinstance(vector_a, Unavailable) or isinstance(vector_b, Unavailable):
        return 0.0

    a = np.asarray(vector_a, dtype=np.float64).ravel()
    b = np.asarray(vector_b, dtype=np.float64).ravel()
    if a.size == 0 or a.size != b.size:
        return 0.0

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    return float(max(0.0, min(1.0, score)))


def _l2_normalize(vector: np.ndarray) -> np.ndarray | None:
    if vector.size == 0:
        return None
    norm = np.linalg.norm(vector)
    if norm == 0 or not np.isfinite(norm):
        return None
    return vector / norm
