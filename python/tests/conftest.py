"""Shared pytest fixtures for Athar tests."""

import io
import struct

import numpy as np
import pytest
from PIL import Image

from athar import Athar, CryptoUtils, PixelBuffer


# ---------------------------------------------------------------------------
# Crypto fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def key_pair():
    """Generate a reusable RSA key pair (session-scoped for speed)."""
    public_key, private_key = CryptoUtils.generate_key_pair()
    return public_key, private_key


@pytest.fixture()
def athar_instance():
    """Fresh Athar instance with a seeded random source."""
    return Athar(rng=np.random.default_rng(7))


# ---------------------------------------------------------------------------
# Pixel fixtures
# ---------------------------------------------------------------------------


def gradient_array(w: int = 128, h: int = 96) -> np.ndarray:
    """Smooth RGB gradient with some structure."""
    xs = np.linspace(0, 255, w)
    ys = np.linspace(0, 255, h)
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[:, :, 0] = xs[None, :]
    arr[:, :, 1] = ys[:, None]
    arr[:, :, 2] = 128
    return arr


@pytest.fixture()
def gradient_pixels():
    return PixelBuffer.from_array(gradient_array())


@pytest.fixture()
def opaque_100():
    """100x100 opaque mid-grey buffer."""
    return PixelBuffer.from_array(np.full((100, 100, 3), 128, dtype=np.uint8))


# ---------------------------------------------------------------------------
# Encoded file builders
# ---------------------------------------------------------------------------


def encode_jpeg(arr: np.ndarray, **save_kwargs) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="JPEG", **save_kwargs)
    return buf.getvalue()


def encode_png(arr: np.ndarray, **save_kwargs) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG", **save_kwargs)
    return buf.getvalue()


def decode(content: bytes) -> PixelBuffer:
    with Image.open(io.BytesIO(content)) as img:
        return PixelBuffer.from_array(np.asarray(img.convert("RGBA")))


@pytest.fixture()
def sample_jpeg_bytes():
    """Gradient JPEG at quality 90."""
    return encode_jpeg(gradient_array(64, 64), quality=90)


@pytest.fixture()
def sample_png_bytes():
    """Gradient PNG."""
    return encode_png(gradient_array(64, 64))


# ---------------------------------------------------------------------------
# Hand-assembled JPEG segments
# ---------------------------------------------------------------------------


def segment(marker: int, payload: bytes) -> bytes:
    """One JPEG marker segment with its big-endian length."""
    return bytes([0xFF, marker]) + struct.pack(">H", len(payload) + 2) + payload


def dqt(table_id: int, values) -> bytes:
    return segment(0xDB, bytes([table_id]) + bytes(values))


def sof0(width: int, height: int, luma_sampling: int = 0x22, chroma_sampling: int = 0x11) -> bytes:
    body = struct.pack(">BHHB", 8, height, width, 3)
    body += bytes([1, luma_sampling, 0, 2, chroma_sampling, 1, 3, chroma_sampling, 1])
    return segment(0xC0, body)


def jfif() -> bytes:
    return segment(0xE0, b"JFIF\x00" + bytes([1, 1, 0, 0, 1, 0, 1, 0, 0]))


def assemble_jpeg(*segments: bytes) -> bytes:
    """SOI + segments + a stub scan + EOI."""
    return b"\xff\xd8" + b"".join(segments) + segment(0xDA, b"\x00" * 10) + b"\xff\xd9"


def quant_table(dc: int, ac: int = None):
    """64 coefficients with the given DC and a flat AC value."""
    return [dc] + [ac if ac is not None else dc * 3] * 63
