"""
Athar - Python Implementation

Athar (أثر) means "Trace" in Arabic.
Image Provenance and Tamper-Forensics Library
"""

from .verify import Athar
from .types import (
    PixelBuffer,
    Payload,
    ExtractionResult,
    ContentDigest,
    FormatSignals,
    AttributionResult,
    PixelDiff,
    Finding,
    ComparisonVerdict,
    ComparisonOptions,
    ClassificationResult,
    RegisteredOriginal,
    ImageCase,
    Severity,
    InvalidBufferError,
)
from .crypto import CryptoUtils
from .codec import BitCodec
from .hashing import ContentHasher, PerceptualHasher
from .inspector import FormatInspector, TruncatedDataError
from .attribution import PlatformAttributor
from .diff import PixelDiffEngine
from .classify import ClassificationEngine
from .registry import RegistrationBuilder

__version__ = "0.1.0"
__all__ = [
    "Athar",
    "PixelBuffer",
    "Payload",
    "ExtractionResult",
    "ContentDigest",
    "FormatSignals",
    "AttributionResult",
    "PixelDiff",
    "Finding",
    "ComparisonVerdict",
    "ComparisonOptions",
    "ClassificationResult",
    "RegisteredOriginal",
    "ImageCase",
    "Severity",
    "InvalidBufferError",
    "CryptoUtils",
    "BitCodec",
    "ContentHasher",
    "PerceptualHasher",
    "FormatInspector",
    "TruncatedDataError",
    "PlatformAttributor",
    "PixelDiffEngine",
    "ClassificationEngine",
    "RegistrationBuilder",
]
