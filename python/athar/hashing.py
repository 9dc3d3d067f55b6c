"""Content and perceptual fingerprints."""
import logging
from typing import Optional

import cv2
import numpy as np

from .crypto import CryptoUtils
from .types import ContentDigest, PixelBuffer

logger = logging.getLogger(__name__)


class ContentHasher:
    """Exact-match identity of raw file bytes."""

    @staticmethod
    def digest(content: bytes) -> ContentDigest:
        return CryptoUtils.digest(content)

    @staticmethod
    def matches(a: Optional[ContentDigest], b: Optional[ContentDigest]) -> bool:
        """True only when both digests exist and are bit-for-bit equal."""
        return a is not None and b is not None and a == b


class PerceptualHasher:
    """Average-hash fingerprint over an 8x8 luminance grid.

    Visually similar images land within a small Hamming distance of each
    other; byte-identical pixels always hash identically.
    """

    GRID = 8
    LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

    def fingerprint(self, pixels: PixelBuffer) -> str:
        """Return the 64-bit fingerprint as 16 uppercase hex characters."""
        rgb = np.ascontiguousarray(pixels.rgb)
        small = cv2.resize(rgb, (self.GRID, self.GRID), interpolation=cv2.INTER_AREA)
        luma = small.astype(np.float64) @ self.LUMA_WEIGHTS
        bits = (luma.ravel() >= luma.mean()).astype(np.uint8)
        return np.packbits(bits).tobytes().hex().upper()

    @staticmethod
    def hamming_distance(hash1: Optional[str], hash2: Optional[str]) -> Optional[int]:
        """Differing bits between two fingerprints, or None if not comparable."""
        if not hash1 or not hash2 or len(hash1) != len(hash2):
            return None
        try:
            return bin(int(hash1, 16) ^ int(hash2, 16)).count("1")
        except ValueError:
            logger.warning("Fingerprint is not hexadecimal; similarity unavailable")
            return None

    @classmethod
    def similarity(cls, hash1: Optional[str], hash2: Optional[str]) -> Optional[float]:
        """Similarity 0..100, or None ("unavailable") when not comparable."""
        distance = cls.hamming_distance(hash1, hash2)
        if distance is None:
            return None
        bits = len(hash1) * 4
        return 100.0 * (bits - distance) / bits
