"""Tests for content and perceptual hashing."""

import cv2
import numpy as np
import pytest

from athar.hashing import ContentHasher, PerceptualHasher
from athar.types import PixelBuffer

from conftest import gradient_array


class TestContentHasher:
    def test_deterministic(self):
        assert ContentHasher.digest(b"abc") == ContentHasher.digest(b"abc")

    def test_matches_requires_both(self):
        d = ContentHasher.digest(b"abc")
        assert ContentHasher.matches(d, ContentHasher.digest(b"abc"))
        assert not ContentHasher.matches(d, ContentHasher.digest(b"abd"))
        assert not ContentHasher.matches(d, None)
        assert not ContentHasher.matches(None, None)


class TestPerceptualHasher:
    def test_fingerprint_format(self, gradient_pixels):
        fp = PerceptualHasher().fingerprint(gradient_pixels)
        assert len(fp) == 16
        assert fp == fp.upper()
        int(fp, 16)

    def test_identical_images(self, gradient_pixels):
        hasher = PerceptualHasher()
        h1 = hasher.fingerprint(gradient_pixels)
        h2 = hasher.fingerprint(gradient_pixels.copy())
        assert PerceptualHasher.hamming_distance(h1, h2) == 0
        assert PerceptualHasher.similarity(h1, h2) == 100

    def test_resized_copy_is_similar(self):
        hasher = PerceptualHasher()
        arr = gradient_array(256, 192)
        small = cv2.resize(arr, (128, 96), interpolation=cv2.INTER_AREA)
        h1 = hasher.fingerprint(PixelBuffer.from_array(arr))
        h2 = hasher.fingerprint(PixelBuffer.from_array(small))
        assert PerceptualHasher.similarity(h1, h2) >= 85

    def test_inverted_image_is_dissimilar(self):
        hasher = PerceptualHasher()
        arr = gradient_array()
        h1 = hasher.fingerprint(PixelBuffer.from_array(arr))
        h2 = hasher.fingerprint(PixelBuffer.from_array(255 - arr))
        assert PerceptualHasher.similarity(h1, h2) < 50

    def test_alpha_ignored(self, gradient_pixels):
        hasher = PerceptualHasher()
        faded = gradient_pixels.copy()
        faded.data[:, :, 3] = 10
        assert hasher.fingerprint(faded) == hasher.fingerprint(gradient_pixels)

    def test_symmetric(self):
        a, b = "F0F0F0F0F0F0F0F0", "FFFF0000FFFF0000"
        assert PerceptualHasher.similarity(a, b) == PerceptualHasher.similarity(b, a)

    def test_distance_counts_bits(self):
        assert PerceptualHasher.hamming_distance("0000000000000000", "000000000000000F") == 4
        assert PerceptualHasher.similarity("0000000000000000", "FFFFFFFFFFFFFFFF") == 0

    @pytest.mark.parametrize("h1,h2", [
        (None, "FFFFFFFFFFFFFFFF"),
        ("", "FFFFFFFFFFFFFFFF"),
        ("FFFF", "FFFFFFFFFFFFFFFF"),
        ("ZZZZZZZZZZZZZZZZ", "FFFFFFFFFFFFFFFF"),
    ])
    def test_unavailable(self, h1, h2):
        assert PerceptualHasher.hamming_distance(h1, h2) is None
        assert PerceptualHasher.similarity(h1, h2) is None
