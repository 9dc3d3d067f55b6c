"""Main Athar implementation.

Athar (أثر) means "Trace" in Arabic.
Image provenance and tamper-forensics library.
"""
import logging
from typing import List, Optional, Tuple

import numpy as np

from .attribution import PlatformAttributor
from .classify import ClassificationEngine
from .codec import BitCodec
from .crypto import CryptoUtils
from .diff import PixelDiffEngine
from .hashing import ContentHasher, PerceptualHasher
from .inspector import FormatInspector
from .registry import RegistrationBuilder, verify_registration
from .types import (
    AttributionResult,
    AttributionSource,
    ClassificationResult,
    ComparisonOptions,
    ComparisonVerdict,
    ContainerFormat,
    ExtractionResult,
    Finding,
    FindingCategory,
    FormatSignals,
    Payload,
    PixelBuffer,
    PixelDiff,
    RegisteredOriginal,
    Severity,
)

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {
    Severity.HIGH: 30,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
    Severity.INFO: 0,
}
TAMPER_EVIDENCE = 30

EDITING_TOOLS = (
    "photoshop", "gimp", "canva", "snapseed",
    "lightroom", "pixelmator", "affinity", "paint.net",
)


class Athar:
    """Main class for embedding, registration and tamper comparison."""

    THRESHOLDS = {
        'fingerprint_high': 60,     # below: HIGH
        'fingerprint_medium': 85,   # below: MEDIUM, below 100: LOW
        'pixel_high': 50,
        'pixel_medium': 80,
        'changed_low': 0.5,         # changed_pct above this: LOW
        'brightness': 10,
        'color_balance': 10,
        'edge_divergence': 0.3,
        'aspect_delta': 0.05,
        'resize_ratio': 0.05,
        'resize_pixels': 50,
        'file_size_ratio': 0.05,
    }

    def __init__(self, rng: Optional[np.random.Generator] = None,
                 repetitions: int = BitCodec.REPETITIONS):
        """Initialize Athar instance.

        Args:
            rng: Random source for classification sampling
            repetitions: Payload copies written by the bit codec
        """
        self.codec = BitCodec(repetitions)
        self.hasher = PerceptualHasher()
        self.inspector = FormatInspector()
        self.attributor = PlatformAttributor()
        self.diff_engine = PixelDiffEngine()
        self.classifier = ClassificationEngine(rng=rng)

    def compare(
        self,
        candidate_bytes: bytes,
        candidate_pixels: Optional[PixelBuffer],
        original: RegisteredOriginal,
        options: Optional[ComparisonOptions] = None
    ) -> ComparisonVerdict:
        """Compare a candidate file against a registered original.

        Args:
            candidate_bytes: Raw bytes of the candidate file
            candidate_pixels: Decoded candidate pixels
            original: Registered original to compare against
            options: Comparison options

        Returns:
            ComparisonVerdict with findings
        """
        if options is None:
            options = ComparisonOptions()

        digest = ContentHasher.digest(candidate_bytes)
        fingerprint = self.hasher.fingerprint(candidate_pixels) if candidate_pixels is not None else None

        if ContentHasher.matches(digest, original.content_digest):
            return ComparisonVerdict(
                is_tampered=False,
                confidence=100,
                candidate_digest=digest,
                original_digest=original.content_digest,
                candidate_fingerprint=fingerprint,
                original_fingerprint=original.fingerprint,
                fingerprint_similarity=PerceptualHasher.similarity(fingerprint, original.fingerprint),
            )

        signals = self.inspector.inspect(candidate_bytes)
        similarity = PerceptualHasher.similarity(fingerprint, original.fingerprint)
        pixel_diff = self.diff_engine.diff(original.thumbnail, candidate_pixels)

        findings: List[Finding] = []
        findings.extend(self._fingerprint_findings(similarity))
        findings.extend(self._pixel_findings(pixel_diff))
        if candidate_pixels is not None:
            findings.extend(self._geometry_findings(candidate_pixels, original))
        findings.extend(self._file_findings(len(candidate_bytes), signals, original))

        attribution = None
        if options.include_attribution:
            attribution = self.attributor.attribute(signals)
            findings.extend(self._attribution_findings(attribution))

        if options.include_payload_check and original.payload is not None and candidate_pixels is not None:
            findings.extend(self._payload_findings(candidate_pixels, original.payload))

        if options.trust_store:
            findings.extend(self._registration_findings(original, options.trust_store))

        is_tampered, confidence = self._calculate_verdict(findings, pixel_diff, similarity)
        logger.debug(f"Comparison against {original.id}: tampered={is_tampered} confidence={confidence}")

        return ComparisonVerdict(
            is_tampered=is_tampered,
            confidence=confidence,
            findings=tuple(findings),
            candidate_digest=digest,
            original_digest=original.content_digest,
            candidate_fingerprint=fingerprint,
            original_fingerprint=original.fingerprint,
            fingerprint_similarity=similarity,
            pixel_diff=pixel_diff,
            attribution=attribution,
            signals=signals,
        )

    @staticmethod
    def _calculate_verdict(findings: List[Finding], pixel_diff: Optional[PixelDiff],
                           similarity: Optional[float]) -> Tuple[bool, int]:
        evidence = sum(SEVERITY_WEIGHTS[f.severity] for f in findings)
        if evidence >= TAMPER_EVIDENCE:
            return True, min(99, 55 + evidence // 2)

        if pixel_diff is not None:
            base = pixel_diff.pixel_similarity
        elif similarity is not None:
            base = similarity
        else:
            base = 50
        return False, int(max(1, min(99, round(base - evidence))))

    def _fingerprint_findings(self, similarity: Optional[float]) -> List[Finding]:
        t = self.THRESHOLDS
        category = FindingCategory.SIMILARITY
        if similarity is None:
            return [Finding(category, Severity.INFO, "Perceptual similarity unavailable")]
        if similarity < t['fingerprint_high']:
            severity = Severity.HIGH
        elif similarity < t['fingerprint_medium']:
            severity = Severity.MEDIUM
        elif similarity < 100:
            severity = Severity.LOW
        else:
            return [Finding(category, Severity.INFO, "Perceptual fingerprint matches the original")]
        return [Finding(category, severity, f"Perceptual fingerprint is {similarity:.1f}% similar to the original")]

    def _pixel_findings(self, pixel_diff: Optional[PixelDiff]) -> List[Finding]:
        t = self.THRESHOLDS
        if pixel_diff is None:
            return [Finding(FindingCategory.SIMILARITY, Severity.INFO,
                            "Pixel comparison unavailable (no original thumbnail)")]

        findings = []
        changed = pixel_diff.changed_pct
        if pixel_diff.pixel_similarity < t['pixel_high']:
            findings.append(Finding(FindingCategory.INTEGRITY, Severity.HIGH,
                                    f"Extensive pixel changes: {changed:.1f}% of pixels differ"))
        elif pixel_diff.pixel_similarity < t['pixel_medium']:
            findings.append(Finding(FindingCategory.INTEGRITY, Severity.MEDIUM,
                                    f"Significant pixel changes: {changed:.1f}% of pixels differ"))
        elif changed > t['changed_low']:
            findings.append(Finding(FindingCategory.INTEGRITY, Severity.LOW,
                                    f"Minor pixel changes: {changed:.1f}% of pixels differ"))

        if abs(pixel_diff.brightness_shift) > t['brightness']:
            findings.append(Finding(FindingCategory.COLOR, Severity.MEDIUM,
                                    f"Brightness shifted by {pixel_diff.brightness_shift:+.1f}"))

        shifts = pixel_diff.channel_shifts
        if max(shifts.values()) - min(shifts.values()) > t['color_balance']:
            detail = ", ".join(f"{k.upper()} {v:+.1f}" for k, v in shifts.items())
            findings.append(Finding(FindingCategory.COLOR, Severity.LOW, f"Colour balance changed ({detail})"))

        if pixel_diff.edge_divergence > t['edge_divergence']:
            findings.append(Finding(
                FindingCategory.INTEGRITY, Severity.MEDIUM,
                f"Edge structure changed: {pixel_diff.edge_divergence * 100:.0f}% of edges differ"
            ))

        for cell in pixel_diff.hot_regions:
            findings.append(Finding(
                FindingCategory.REGION, cell.severity,
                f"Changes concentrated in the {cell.name} region (divergence {cell.score:.1f})"
            ))
        return findings

    def _geometry_findings(self, pixels: PixelBuffer, original: RegisteredOriginal) -> List[Finding]:
        t = self.THRESHOLDS
        ow, oh = original.width, original.height
        w, h = pixels.width, pixels.height
        if ow <= 0 or oh <= 0 or (w, h) == (ow, oh):
            return []

        if (w, h) == (oh, ow):
            return [Finding(FindingCategory.GEOMETRY, Severity.LOW, "Image rotated by 90 degrees")]

        findings = []
        orig_aspect, aspect = ow / oh, w / h
        if abs(orig_aspect - aspect) > t['aspect_delta']:
            findings.append(Finding(
                FindingCategory.GEOMETRY, Severity.MEDIUM,
                f"Aspect ratio changed from {orig_aspect:.2f} to {aspect:.2f} (likely cropped)"
            ))
        area_change = abs(w * h - ow * oh) / (ow * oh)
        if area_change > t['resize_ratio'] or abs(w - ow) > t['resize_pixels'] or abs(h - oh) > t['resize_pixels']:
            findings.append(Finding(FindingCategory.GEOMETRY, Severity.LOW,
                                    f"Resized from {ow}x{oh} to {w}x{h}"))
        return findings

    def _file_findings(self, file_size: int, signals: FormatSignals,
                       original: RegisteredOriginal) -> List[Finding]:
        findings = []
        if original.file_size > 0:
            ratio = abs(file_size - original.file_size) / original.file_size
            if ratio > self.THRESHOLDS['file_size_ratio']:
                findings.append(Finding(
                    FindingCategory.COMPRESSION, Severity.LOW,
                    f"File size changed from {original.file_size} to {file_size} bytes "
                    f"(re-encoded or compressed)"
                ))

        unknown = ContainerFormat.UNKNOWN
        if signals.container != original.container and unknown not in (signals.container, original.container):
            findings.append(Finding(
                FindingCategory.FORMAT, Severity.LOW,
                f"Format converted from {original.container.value.upper()} to {signals.container.value.upper()}"
            ))
        return findings

    @staticmethod
    def _attribution_findings(attribution: AttributionResult) -> List[Finding]:
        if attribution.label is None:
            return []
        category = FindingCategory.ATTRIBUTION
        if attribution.source == AttributionSource.METADATA:
            label = attribution.label.lower()
            if any(tool in label for tool in EDITING_TOOLS):
                return [Finding(category, Severity.HIGH,
                                f"Edited with {attribution.label} ({attribution.basis})")]
            return [Finding(category, Severity.INFO, f"Written by {attribution.label}")]
        if attribution.source == AttributionSource.HEURISTIC:
            return [Finding(category, Severity.INFO,
                            f"Re-encoded by {attribution.label} (score {attribution.score:.0f})")]
        return [Finding(category, Severity.INFO, attribution.label)]

    def _payload_findings(self, pixels: PixelBuffer, expected: Payload) -> List[Finding]:
        result = self.codec.extract_with_rotation(pixels)
        category = FindingCategory.WATERMARK
        if not result.found:
            return [Finding(category, Severity.MEDIUM, "Embedded identity payload is missing or destroyed")]
        if result.payload.subject_id != expected.subject_id:
            return [Finding(
                category, Severity.HIGH,
                f"Embedded payload names {result.payload.subject_id}, expected {expected.subject_id}"
            )]
        text = f"Embedded payload intact ({result.matches} copies)"
        if result.rotation:
            text += f", recovered after {result.rotation} degree rotation"
        return [Finding(category, Severity.INFO, text)]

    @staticmethod
    def _registration_findings(original: RegisteredOriginal, trust_store: List[str]) -> List[Finding]:
        category = FindingCategory.REGISTRATION
        if verify_registration(original, trust_store):
            return [Finding(category, Severity.INFO, "Registration signed by a trusted key")]
        return [Finding(category, Severity.HIGH, "Registration signature not verified by the trust store")]

    def register(
        self,
        content: bytes,
        pixels: PixelBuffer,
        payload: Optional[Payload] = None,
        private_key: Optional[str] = None,
        signer: Optional[str] = None,
    ) -> RegisteredOriginal:
        """Register an original for later comparison.

        Args:
            content: Raw bytes of the original file
            pixels: Decoded pixels of the original
            payload: Payload embedded in the original, if any
            private_key: Private key in PEM format to sign the registration
            signer: Signer identifier

        Returns:
            RegisteredOriginal for the persistence layer to store
        """
        builder = RegistrationBuilder(content, pixels)
        if payload is not None:
            builder.with_payload(payload)
        if private_key:
            builder.sign(private_key, signer or "unknown-signer")
        return builder.build()

    def embed(self, pixels: PixelBuffer, payload: Payload) -> PixelBuffer:
        return self.codec.embed(pixels, payload)

    def extract(self, pixels: PixelBuffer, try_rotations: bool = True) -> ExtractionResult:
        if try_rotations:
            return self.codec.extract_with_rotation(pixels)
        return self.codec.extract(pixels)

    def inspect(self, content: bytes) -> FormatSignals:
        return self.inspector.inspect(content)

    def attribute(self, content: bytes) -> AttributionResult:
        return self.attributor.attribute(self.inspector.inspect(content))

    def classify(
        self,
        pixels: PixelBuffer,
        file_size: int,
        file_name: str,
        content: Optional[bytes] = None,
    ) -> ClassificationResult:
        """Classify a single image, checking for an embedded payload first.

        Args:
            pixels: Decoded pixels
            file_size: Encoded file size in bytes
            file_name: File name
            content: Raw file bytes; enables container-aware priors

        Returns:
            ClassificationResult
        """
        signals = self.inspector.inspect(content) if content is not None else None
        extraction = self.codec.extract(pixels)
        original_size = extraction.payload.original_size if extraction.found else None
        return self.classifier.classify(
            pixels,
            file_size,
            file_name,
            extraction.found,
            original_size=original_size,
            signals=signals,
        )

    def generate_key_pair(self) -> Tuple[str, str]:
        """Generate new key pair for signing registrations.

        Returns:
            Tuple of (public_key, private_key) in PEM format
        """
        return CryptoUtils.generate_key_pair()
