"""Utilities for decoding and normalizing images into a consistent format."""

from __future__ import annotations

from io import BytesIO

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from PIL.Image import DecompressionBombError

NORMALIZED_SIZE = 256
_JPEG_QUALITY = 80

DECODE_ERRORS = (UnidentifiedImageError, DecompressionBombError, OSError, ValueError)


def decode_image(image_bytes: bytes) -> Image.Image:
    """Return a fully loaded RGB Pillow image decoded from *image_bytes*."""
    if not image_bytes:
        raise ValueError("Empty image payload cannot be decoded")

    with Image.open(BytesIO(image_bytes)) as img:
        img.load()
        return img.convert("RGB")


def normalize_image(image_bytes: bytes, size: int = NORMALIZED_SIZE) -> bytes:
    """Fit *image_bytes* inside a size-by-size box and re-encode as JPEG.

    Thumbnails arrive at many resolutions and encodings; re-encoding them
    through a common intermediate keeps perceptual hashes comparable.
    """
    if size <= 0:
        raise ValueError("Size must be a positive integer")

    img = decode_image(image_bytes)
    try:
        fitted = ImageOps.contain(img, (size, size), method=Image.Resampling.LANCZOS)
        buffer = BytesIO()
        fitted.save(buffer, format="JPEG", quality=_JPEG_QUALITY)
        fitted.close()
        return buffer.getvalue()
    finally:
        img.close()


def greyscale_grid(image_bytes: bytes, size: int) -> np.ndarray:
    """Return a size-by-size float matrix of 8-bit greyscale intensities."""
    img = decode_image(image_bytes)
    try:
        resized = img.resize((size, size), Image.Resampling.BILINEAR)
        grey = resized.convert("L")
        matrix = np.asarray(grey, dtype=np.float64)
        resized.close()
        grey.close()
        return matrix
    finally:
        img.close()

