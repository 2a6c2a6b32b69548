"""Perceptual feature computations."""

from __future__ import annotations

import math

import numpy as np

from ..extract.normalize import greyscale_grid
from ..io.models import FINGERPRINT_GRID, ImageFingerprint

_BLOCK_SIZE = 8
HASH_BITS = _BLOCK_SIZE * _BLOCK_SIZE
HASH_HEX_LENGTH = HASH_BITS // 4

_NIBBLE_BITS = (0, 1, 1, 2, 1, 2, 2, 3, 1, 2, 2, 3, 2, 3, 3, 4)


def dct_matrix(size: int) -> np.ndarray:
    """Return the size-by-size DCT-II basis with a 1/sqrt(2) DC scale."""
    k = np.arange(size).reshape(-1, 1)
    n = np.arange(size).reshape(1, -1)
    basis = np.cos((2 * n + 1) * k * math.pi / (2 * size))
    basis[0, :] *= math.sqrt(0.5)
    return basis


def dct_2d(matrix: np.ndarray) -> np.ndarray:
    """Row-wise 1-D DCT followed by a column-wise 1-D DCT."""
    rows, cols = matrix.shape
    row_basis = dct_matrix(cols)
    col_basis = dct_matrix(rows)
    transformed_rows = matrix @ row_basis.T
    return col_basis @ transformed_rows


def bits_to_hex(bits: np.ndarray) -> str:
    """Pack a flat bit array into hex, most-significant bit first per nibble."""
    flat = np.asarray(bits, dtype=np.uint8).ravel()
    if flat.size % 4:
        raise ValueError("Bit count must be a multiple of four")
    nibbles = flat.reshape(-1, 4) @ np.array([8, 4, 2, 1], dtype=np.uint8)
    return "".join(f"{int(value):x}" for value in nibbles)


def fingerprint_from_grid(matrix: np.ndarray) -> ImageFingerprint:
    """Return the DCT fingerprint of a square greyscale intensity matrix."""
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError("Fingerprints require a square greyscale matrix")
    if matrix.shape[0] < _BLOCK_SIZE:
        raise ValueError(f"Grid must be at least {_BLOCK_SIZE}x{_BLOCK_SIZE}")

    block = dct_2d(matrix.astype(np.float64))[:_BLOCK_SIZE, :_BLOCK_SIZE]
    # The DC term is excluded from the mean but still contributes a bit.
    ac_terms = block.ravel()[1:]
    mean = ac_terms.mean()
    bits = block > mean
    return ImageFingerprint(hash=bits_to_hex(bits), dimension=matrix.shape[0])


def compute_fingerprint(image_bytes: bytes) -> ImageFingerprint:
    """Decode *image_bytes* and return its 64-bit perceptual fingerprint."""
    grid = greyscale_grid(image_bytes, FINGERPRINT_GRID)
    return fingerprint_from_grid(grid)


def hamming_distance(
    fingerprint_a: ImageFingerprint | str | None,
    fingerprint_b: ImageFingerprint | str | None,
) -> int:
    """Return the number of differing bits between two fingerprints.

    Missing, mismatched or malformed inputs are treated as completely
    dissimilar and yield the maximum distance.
    """
    hex_a = _as_hex(fingerprint_a)
    hex_b = _as_hex(fingerprint_b)
    if not hex_a or not hex_b or len(hex_a) != len(hex_b):
        return HASH_BITS

    distance = 0
    for char_a, char_b in zip(hex_a, hex_b):
        try:
            distance += _NIBBLE_BITS[int(char_a, 16) ^ int(char_b, 16)]
        except ValueError:
            return HASH_BITS
    return min(distance, HASH_BITS)


def perceptual_similarity(
    fingerprint_a: ImageFingerprint | str | None,
    fingerprint_b: ImageFingerprint | str | None,
) -> float:
    """Return ``1 - hamming_distance / 64`` clamped to the unit interval."""
    distance = hamming_distance(fingerprint_a, fingerprint_b)
    score = 1.0 - (distance / float(HASH_BITS))
    return float(max(0.0, min(1.0, score)))


def _as_hex(value: ImageFingerprint | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, ImageFingerprint):
        value = value.hash
    if not isinstance(value, str):
        return ""
    stripped = value.strip().lower()
    return stripped[2:] if stripped.startswith("0x") else stripped
