"""Type definitions for Athar."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np


class InvalidBufferError(ValueError):
    """Raised when a pixel buffer has unusable dimensions or layout."""


class ContainerFormat(Enum):
    """Image container detected from magic bytes."""
    JPEG = "jpeg"
    PNG = "png"
    UNKNOWN = "unknown"


class ChromaSubsampling(Enum):
    """JPEG chroma subsampling modes."""
    YUV420 = "4:2:0"
    YUV422 = "4:2:2"
    YUV440 = "4:4:0"
    YUV444 = "4:4:4"


class ExtractionConfidence(Enum):
    """Confidence in a recovered payload."""
    VERY_HIGH = "very_high"
    HIGH = "high"
    NONE = "none"


class Severity(Enum):
    """Severity of a finding or hot region."""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
}


class FindingCategory(Enum):
    """Categories of comparison findings."""
    INTEGRITY = "integrity"
    SIMILARITY = "similarity"
    REGION = "region"
    COLOR = "color"
    GEOMETRY = "geometry"
    COMPRESSION = "compression"
    FORMAT = "format"
    ATTRIBUTION = "attribution"
    WATERMARK = "watermark"
    REGISTRATION = "registration"


class AttributionSource(Enum):
    """Where an attribution label came from."""
    METADATA = "metadata"
    SCREENSHOT = "screenshot"
    HEURISTIC = "heuristic"
    ESTIMATE = "estimate"
    NONE = "none"


class ImageCase(Enum):
    """Provenance classes for a single image."""
    MOBILE_CAPTURE = "mobile_capture"
    SYNTHETIC = "synthetic"
    WEB_DOWNLOAD = "web_download"
    SCREEN_CAPTURE = "screen_capture"
    WATERMARKED = "watermarked"
    WATERMARKED_CROPPED = "watermarked_cropped"


@dataclass
class PixelBuffer:
    """Decoded RGBA pixels, shaped (height, width, 4)."""
    width: int
    height: int
    data: np.ndarray

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidBufferError(
                f"Pixel buffer dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.data.shape != (self.height, self.width, 4):
            raise InvalidBufferError(
                f"Pixel data shape {self.data.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )
        if self.data.dtype != np.uint8:
            self.data = self.data.astype(np.uint8)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Build a buffer from an HxWx3 (RGB) or HxWx4 (RGBA) array."""
        arr = np.asarray(array)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise InvalidBufferError(f"Expected HxWx3 or HxWx4 array, got shape {arr.shape}")
        arr = arr.astype(np.uint8, copy=True)
        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=2)
        height, width = arr.shape[:2]
        return cls(width=width, height=height, data=arr)

    @classmethod
    def from_rgba_bytes(cls, width: int, height: int, raw: bytes) -> "PixelBuffer":
        """Build a buffer from a flat sequence of RGBA records."""
        if width <= 0 or height <= 0:
            raise InvalidBufferError(
                f"Pixel buffer dimensions must be positive, got {width}x{height}"
            )
        if len(raw) != width * height * 4:
            raise InvalidBufferError(
                f"Expected {width * height * 4} bytes for {width}x{height} RGBA, got {len(raw)}"
            )
        arr = np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width=width, height=height, data=arr)

    @property
    def rgb(self) -> np.ndarray:
        return self.data[:, :, :3]

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(width=self.width, height=self.height, data=self.data.copy())

    def rotated(self, quarter_turns: int) -> "PixelBuffer":
        """Return a copy rotated counter-clockwise by 90° * quarter_turns."""
        arr = np.ascontiguousarray(np.rot90(self.data, quarter_turns % 4, axes=(0, 1)))
        return PixelBuffer.from_array(arr)


@dataclass
class Payload:
    """Identity record embedded into pixels by the bit codec."""
    subject_id: str
    timestamp_ms: int
    gps: Optional[Tuple[float, float]] = None
    device_id: Optional[str] = None
    original_size: Optional[Tuple[int, int]] = None

    @property
    def gps_text(self) -> Optional[str]:
        if self.gps is None:
            return None
        return f"{self.gps[0]},{self.gps[1]}"

    @property
    def is_extended(self) -> bool:
        return self.device_id is not None or self.original_size is not None


@dataclass
class ExtractionResult:
    """Outcome of a payload extraction attempt."""
    found: bool
    payload: Optional[Payload] = None
    matches: int = 0
    confidence: ExtractionConfidence = ExtractionConfidence.NONE
    rotation: int = 0


@dataclass(frozen=True)
class ContentDigest:
    """Cryptographic digest of raw file bytes."""
    value: bytes
    algorithm: str = "sha256"

    def hex(self) -> str:
        return self.value.hex()


@dataclass
class QuantTable:
    """A single JPEG quantization table (64 coefficients, file order)."""
    table_id: int
    precision: int
    values: List[int]

    @property
    def kind(self) -> str:
        return "luminance" if self.table_id == 0 else "chrominance"

    @property
    def dc(self) -> int:
        return self.values[0]

    @property
    def ac_mean(self) -> float:
        return sum(self.values[1:]) / max(1, len(self.values) - 1)

    @property
    def mean(self) -> float:
        return sum(self.values) / max(1, len(self.values))


@dataclass
class FormatSignals:
    """Container-level signals parsed from a single image file."""
    container: ContainerFormat = ContainerFormat.UNKNOWN
    width: Optional[int] = None
    height: Optional[int] = None
    software: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    comments: List[str] = field(default_factory=list)
    xmp_creator_tool: Optional[str] = None
    has_icc: bool = False
    icc_profile_name: Optional[str] = None
    chroma_subsampling: Optional[ChromaSubsampling] = None
    quant_tables: Dict[int, QuantTable] = field(default_factory=dict)
    has_jfif: bool = False
    jfif_version: Optional[str] = None
    has_exif: bool = False
    has_photoshop_marker: bool = False
    has_adobe_marker: bool = False
    progressive: bool = False
    text_chunks: Dict[str, str] = field(default_factory=dict)
    pixels_per_unit: Optional[Tuple[int, int]] = None
    pixel_unit: Optional[int] = None
    crc_errors: int = 0
    truncated: bool = False

    @property
    def luminance_table(self) -> Optional[QuantTable]:
        return self.quant_tables.get(0)

    @property
    def chrominance_table(self) -> Optional[QuantTable]:
        return self.quant_tables.get(1)

    @property
    def dpi(self) -> Optional[Tuple[float, float]]:
        """Density in dots per inch when pHYs declares metres."""
        if self.pixels_per_unit is None or self.pixel_unit != 1:
            return None
        x, y = self.pixels_per_unit
        return (round(x * 0.0254, 1), round(y * 0.0254, 1))


@dataclass
class AttributionResult:
    """Best guess at the tool or platform that produced a file."""
    label: Optional[str]
    score: float
    basis: str
    source: AttributionSource = AttributionSource.NONE
    platform_scores: Dict[str, float] = field(default_factory=dict)
    estimated_quality: Optional[int] = None


@dataclass
class RegionCell:
    """One cell of the comparison grid."""
    row: int
    col: int
    name: str
    score: float
    severity: Optional[Severity] = None


@dataclass
class RegionDiff:
    """Grid of per-cell divergence scores."""
    rows: int
    cols: int
    cells: List[RegionCell] = field(default_factory=list)

    def cell(self, row: int, col: int) -> RegionCell:
        return self.cells[row * self.cols + col]


@dataclass
class PixelDiff:
    """Pixel and region level divergence between two images."""
    avg_diff: float
    changed_pct: float
    regions: RegionDiff
    hot_regions: List[RegionCell]
    brightness_shift: float
    channel_shifts: Dict[str, float]
    pixel_similarity: float
    edge_divergence: float = 0.0


@dataclass(frozen=True)
class Finding:
    """A categorized observation made during comparison."""
    category: FindingCategory
    severity: Severity
    text: str


@dataclass(frozen=True)
class ComparisonVerdict:
    """Tamper verdict for a candidate against a registered original."""
    is_tampered: bool
    confidence: int
    findings: Tuple[Finding, ...] = ()
    candidate_digest: Optional[ContentDigest] = None
    original_digest: Optional[ContentDigest] = None
    candidate_fingerprint: Optional[str] = None
    original_fingerprint: Optional[str] = None
    fingerprint_similarity: Optional[float] = None
    pixel_diff: Optional[PixelDiff] = None
    attribution: Optional[AttributionResult] = None
    signals: Optional[FormatSignals] = None


@dataclass
class ClassificationResult:
    """Provenance class of a single image with its evidence trail."""
    case: ImageCase
    confidence: int
    reasoning: List[str] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=dict)
    scores: Dict[str, int] = field(default_factory=dict)


@dataclass
class RegistrationSignature:
    """Signature over a registered original's canonical record."""
    algorithm: str
    public_key: str
    signature: str
    timestamp: str
    signer: str


@dataclass
class RegisteredOriginal:
    """Metadata kept for a registered original, supplied at comparison time."""
    id: str
    content_digest: Optional[ContentDigest]
    fingerprint: Optional[str]
    width: int
    height: int
    file_size: int
    container: ContainerFormat = ContainerFormat.UNKNOWN
    thumbnail: Optional[PixelBuffer] = None
    payload: Optional[Payload] = None
    created_at: str = ""
    signatures: List[RegistrationSignature] = field(default_factory=list)


@dataclass
class ComparisonOptions:
    """Options for comparison."""
    include_attribution: bool = True
    include_payload_check: bool = True
    trust_store: List[str] = field(default_factory=list)
