"""
Single-image provenance classification.

Answers "what kind of image is this" without a registered original:
a device capture, a synthetic render, a web re-encode, a screen capture,
or a copy that already carries an embedded payload.

Texture, frequency and entropy statistics are computed over bounded
windows or fixed-size random samples, then scored against ``CASE_RULES``.
Randomness comes from an injected ``numpy.random.Generator`` so results
are reproducible under a fixed seed.
"""
import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.stats import entropy

from .types import (
    ClassificationResult,
    ContainerFormat,
    FormatSignals,
    ImageCase,
    PixelBuffer,
)

logger = logging.getLogger(__name__)

MOBILE_ASPECTS = (0.5625, 0.75, 1.0, 1.333, 1.777, 2.0, 2.165)
MOBILE_WIDTHS = (720, 1080, 1440, 1920, 2160, 3024, 4032)
MOBILE_HEIGHTS = (1280, 1920, 2560, 2880, 4032)
SCREEN_RESOLUTIONS = {
    (1280, 800), (1366, 768), (1440, 900), (1536, 864), (1680, 1050),
    (1920, 1080), (1920, 1200), (2560, 1440), (2560, 1600), (2880, 1800),
    (3024, 1964), (3456, 2234), (3840, 2160),
    (1170, 2532), (1179, 2556), (1284, 2778), (1290, 2796), (1080, 2400),
}
SCREENSHOT_PPM = (5669, 2835, 3779, 3780)

CASE_LABELS = {
    ImageCase.MOBILE_CAPTURE: "mobile capture",
    ImageCase.SYNTHETIC: "synthetic",
    ImageCase.WEB_DOWNLOAD: "web download",
    ImageCase.SCREEN_CAPTURE: "screen capture",
    ImageCase.WATERMARKED: "watermarked",
    ImageCase.WATERMARKED_CROPPED: "watermarked and cropped",
}


class ClassificationEngine:
    """Score an image against synthetic, device, web and screen origins."""

    THRESHOLDS = {
        'outright': 60,             # a case at or above this wins outright
        'outright_cap': 97,
        'fallback_floor': 55,       # strictly-highest winner below 'outright'
        'fallback_cap': 85,
        'web_floor': 60,            # tie falls back to web download
        'web_cap': 80,
        'close_margin': 20,         # top two closer than this are "mixed"
        'close_floor': 70,          # only confident calls get capped
        'close_cap': 75,
        'watermark': 98,
        'watermark_cropped': 95,
        'watermark_cropped_small': 85,
        'small_crop_pixels': 150000,
        'crop_aspect_low': 0.7,
        'crop_aspect_high': 1.8,
        'crop_pixel_loss': 0.15,
    }

    CORRELATION_SAMPLES = 5000
    LBP_WINDOW = 100
    BLOCK_WINDOW = 200
    BLOCK_SIZE = 4
    SMOOTH_BLOCK_VARIANCE = 100
    EDGE_MAGNITUDE = 20
    EDGE_COHERENCE_DELTA = 10
    CLUSTER_BIN = 10
    CLUSTER_SHARE = 0.05
    ROW_CHUNK_PIXELS = 1 << 16

    # case -> [(fact, op, threshold, points, evidence label)]
    CASE_RULES: Dict[ImageCase, List[Tuple]] = {
        ImageCase.SYNTHETIC: [
            ('smooth_block_ratio', '>', 0.6, 25, 'Overly smooth blocks'),
            ('edge_coherence', '>', 0.7, 25, 'Overly coherent edges'),
            ('uniformity_ratio', '>', 0.65, 20, 'Uniform texture patterns'),
            ('channel_correlation', '>', 0.85, 15, 'High channel correlation'),
            ('entropy', '<', 6.5, 15, 'Low color entropy'),
            ('clustering_score', '<', 0.3, 15, 'Clustered pixel values'),
            ('is_png', 'is', True, 10, 'PNG container (common for generators)'),
            ('noise_level', '<', 5, 15, 'Very low noise'),
            ('dims_multiple_of_64', 'is', True, 10, 'Generator-typical dimensions'),
        ],
        ImageCase.MOBILE_CAPTURE: [
            ('noise_level', '>', 15, 30, 'High sensor noise'),
            ('is_jpeg', 'is', True, 25, 'JPEG container (camera output)'),
            ('variance', '>', 3000, 20, 'Natural variance'),
            ('entropy', '>', 7.2, 20, 'High color entropy'),
            ('compression_ratio', '>', 1.3, 15, 'Camera-grade file size'),
            ('uniformity_ratio', '<', 0.4, 15, 'Non-uniform texture'),
            ('smooth_block_ratio', '<', 0.3, 15, 'Few smooth blocks'),
            ('mobile_aspect', 'is', True, 20, 'Camera aspect ratio'),
            ('mobile_dimensions', 'is', True, 15, 'Camera sensor dimensions'),
        ],
        ImageCase.WEB_DOWNLOAD: [
            ('compression_ratio', 'between', (0.5, 1.5), 25, 'Moderate compression'),
            ('dims_multiple_of_10', 'is', True, 20, 'Round web dimensions'),
            ('noise_level', 'between', (8, 18), 20, 'Moderate noise'),
            ('entropy', 'between', (6.5, 7.5), 15, 'Moderate entropy'),
            ('uniformity_ratio', 'between', (0.4, 0.6), 15, 'Mixed texture'),
            ('variance', 'between', (1500, 3500), 20, 'Moderate variance'),
        ],
        ImageCase.SCREEN_CAPTURE: [
            ('is_png', 'is', True, 25, 'PNG container (screenshot tools)'),
            ('screenshot_density', 'is', True, 35, 'Screenshot pixel density'),
            ('screen_resolution', 'is', True, 20, 'Display resolution'),
            ('smooth_block_ratio', '>', 0.5, 15, 'Flat UI regions'),
            ('noise_level', '<', 5, 10, 'No sensor noise'),
        ],
    }

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()

    def classify(
        self,
        pixels: PixelBuffer,
        file_size: int,
        file_name: str,
        has_embedded_payload: bool,
        original_size: Optional[Tuple[int, int]] = None,
        signals: Optional[FormatSignals] = None,
    ) -> ClassificationResult:
        """Classify a single image.

        Args:
            pixels: Decoded pixels
            file_size: Size of the encoded file in bytes
            file_name: File name, used for the container when ``signals`` is absent
            has_embedded_payload: Whether a payload was already recovered
            original_size: (width, height) recorded in the payload, if any
            signals: Container signals from ``FormatInspector``, if available

        Returns:
            ClassificationResult with metrics and per-case scores
        """
        if has_embedded_payload:
            return self._classify_watermarked(pixels, original_size)

        metrics = self.compute_metrics(pixels, file_size)
        facts = dict(metrics)
        facts.update(self._priors(pixels, file_name, signals))

        scores: Dict[ImageCase, int] = {}
        evidence: Dict[ImageCase, List[str]] = {}
        for case, rules in self.CASE_RULES.items():
            scores[case], evidence[case] = self._score(rules, facts)

        case, confidence = self._decide(scores)
        reasoning = list(evidence[case]) or [f"Standard {CASE_LABELS[case]} characteristics"]

        ranked = sorted(scores.values(), reverse=True)
        if (ranked[0] - ranked[1] < self.THRESHOLDS['close_margin']
                and confidence > self.THRESHOLDS['close_floor']):
            runner_up = max((c for c in scores if c != case), key=lambda c: scores[c])
            reasoning.append(f"Mixed signals: some {CASE_LABELS[runner_up]} characteristics present")
            confidence = min(confidence, self.THRESHOLDS['close_cap'])

        reasoning.extend(f"{name}: {value:.3f}" for name, value in metrics.items())
        logger.debug(f"Classified as {case.value} ({confidence}) with scores {scores}")

        return ClassificationResult(
            case=case,
            confidence=int(confidence),
            reasoning=reasoning,
            metrics=metrics,
            scores={c.value: s for c, s in scores.items()},
        )

    def compute_metrics(self, pixels: PixelBuffer, file_size: int) -> Dict[str, float]:
        """Texture, frequency and entropy statistics of one image.

        Whole-image statistics are accumulated over row chunks of at most
        ``ROW_CHUNK_PIXELS`` pixels; the rest use bounded windows or samples.
        """
        rgb = pixels.rgb
        red = pixels.data[:, :, 0]
        scan = self._scan_rows(rgb)

        return {
            'channel_correlation': self._channel_correlation(rgb),
            'uniformity_ratio': self._uniformity_ratio(red),
            'smooth_block_ratio': self._smooth_block_ratio(red),
            'edge_coherence': self._edge_coherence(red),
            'entropy': float(np.mean([entropy(hist, base=2) for hist in scan['histograms']])),
            'clustering_score': self._clustering_score(scan['brightness_bins'], pixels.pixel_count),
            'variance': scan['variance'],
            'noise_level': scan['noise'] / pixels.pixel_count,
            'compression_ratio': file_size / pixels.pixel_count,
            'aspect_ratio': pixels.aspect_ratio,
        }

    def _classify_watermarked(self, pixels: PixelBuffer,
                              original_size: Optional[Tuple[int, int]]) -> ClassificationResult:
        t = self.THRESHOLDS
        aspect = pixels.aspect_ratio
        reasoning = ["Embedded identity payload verified"]

        cropped = aspect < t['crop_aspect_low'] or aspect > t['crop_aspect_high']
        if original_size is not None:
            orig_w, orig_h = original_size
            lost = 1 - pixels.pixel_count / max(1, orig_w * orig_h)
            if lost >= t['crop_pixel_loss']:
                cropped = True
                reasoning.append(f"{lost * 100:.1f}% of the original {orig_w}x{orig_h} pixels missing")
            elif (pixels.width, pixels.height) not in ((orig_w, orig_h), (orig_h, orig_w)):
                cropped = True
                reasoning.append(
                    f"Dimensions {pixels.width}x{pixels.height} differ from original {orig_w}x{orig_h}"
                )

        if not cropped:
            return ClassificationResult(
                case=ImageCase.WATERMARKED,
                confidence=t['watermark'],
                reasoning=reasoning,
                metrics={'aspect_ratio': aspect},
            )

        reasoning.append("Likely cropped image")
        reasoning.append(f"Aspect ratio: {aspect:.2f}")
        confidence = t['watermark_cropped']
        if pixels.pixel_count < t['small_crop_pixels']:
            confidence = t['watermark_cropped_small']
            reasoning.append("Reduced confidence due to small cropped size")
        return ClassificationResult(
            case=ImageCase.WATERMARKED_CROPPED,
            confidence=confidence,
            reasoning=reasoning,
            metrics={'aspect_ratio': aspect},
        )

    def _decide(self, scores: Dict[ImageCase, int]) -> Tuple[ImageCase, int]:
        t = self.THRESHOLDS
        outright = [c for c, s in scores.items() if s >= t['outright']]
        if outright:
            best = max(outright, key=lambda c: scores[c])  # first in table order on ties
            return best, min(scores[best], t['outright_cap'])

        top = max(scores.values())
        leaders = [c for c, s in scores.items() if s == top]
        if len(leaders) == 1 and leaders[0] != ImageCase.WEB_DOWNLOAD:
            return leaders[0], min(max(top, t['fallback_floor']), t['fallback_cap'])

        web = scores[ImageCase.WEB_DOWNLOAD]
        return ImageCase.WEB_DOWNLOAD, min(max(web, t['web_floor']), t['web_cap'])

    @staticmethod
    def _score(rules: List[Tuple], facts: Dict[str, object]) -> Tuple[int, List[str]]:
        score = 0
        evidence = []
        for fact, op, threshold, points, label in rules:
            value = facts[fact]
            if op == '>':
                hit = value > threshold
            elif op == '<':
                hit = value < threshold
            elif op == 'between':
                hit = threshold[0] < value < threshold[1]
            else:
                hit = value is threshold
            if hit:
                score += points
                evidence.append(label if isinstance(value, bool) else f"{label}: {value:.2f}")
        return score, evidence

    @staticmethod
    def _priors(pixels: PixelBuffer, file_name: str,
                signals: Optional[FormatSignals]) -> Dict[str, bool]:
        name = (file_name or "").lower()
        if signals is not None and signals.container != ContainerFormat.UNKNOWN:
            is_png = signals.container == ContainerFormat.PNG
            is_jpeg = signals.container == ContainerFormat.JPEG
        else:
            is_png = name.endswith(".png")
            is_jpeg = name.endswith((".jpg", ".jpeg"))

        density = False
        if signals is not None and signals.pixels_per_unit and signals.pixel_unit == 1:
            density = signals.pixels_per_unit[0] in SCREENSHOT_PPM

        w, h = pixels.width, pixels.height
        return {
            'is_png': is_png,
            'is_jpeg': is_jpeg,
            'dims_multiple_of_64': w % 64 == 0 and h % 64 == 0,
            'dims_multiple_of_10': w % 10 == 0 and h % 10 == 0,
            'mobile_aspect': any(abs(pixels.aspect_ratio - a) < 0.05 for a in MOBILE_ASPECTS),
            'mobile_dimensions': w in MOBILE_WIDTHS or h in MOBILE_HEIGHTS,
            'screen_resolution': (w, h) in SCREEN_RESOLUTIONS,
            'screenshot_density': density,
        }

    def _row_chunks(self, height: int, width: int):
        """Row slices covering the image, each at most ``ROW_CHUNK_PIXELS`` pixels."""
        step = max(1, self.ROW_CHUNK_PIXELS // max(1, width))
        for start in range(0, height, step):
            yield slice(start, min(height, start + step))

    def _scan_rows(self, rgb: np.ndarray) -> Dict[str, object]:
        """Exact whole-image histograms, variance and neighbour noise in one chunked pass."""
        h, w, _ = rgb.shape
        histograms = np.zeros((3, 256), dtype=np.int64)
        brightness_bins = np.zeros(-(-256 // self.CLUSTER_BIN), dtype=np.int64)
        sums = np.zeros(3)
        squares = np.zeros(3)
        noise = 0
        previous = None

        for rows in self._row_chunks(h, w):
            chunk = rgb[rows]
            for c in range(3):
                histograms[c] += np.bincount(chunk[:, :, c].ravel(), minlength=256)

            brightness = chunk.astype(np.uint16).sum(axis=2) // 3
            brightness_bins += np.bincount((brightness // self.CLUSTER_BIN).ravel(),
                                           minlength=brightness_bins.size)

            values = chunk.reshape(-1, 3).astype(np.float64)
            sums += values.sum(axis=0)
            squares += (values * values).sum(axis=0)

            # neighbour differences run along the raveled plane, across row ends
            red = chunk[:, :, 0].ravel().astype(np.int32)
            noise += int(np.abs(np.diff(red)).sum())
            if previous is not None:
                noise += abs(int(red[0]) - previous)
            previous = int(red[-1])

        n = max(1, h * w)
        means = sums / n
        variance = np.maximum(squares / n - means * means, 0.0)
        return {
            'histograms': histograms,
            'brightness_bins': brightness_bins,
            'variance': float(variance.mean()),
            'noise': noise,
        }

    def _channel_correlation(self, rgb: np.ndarray) -> float:
        h, w, _ = rgb.shape
        n = min(self.CORRELATION_SAMPLES, h * w)
        ys, xs = np.divmod(self.rng.integers(0, h * w, size=n), w)
        sample = rgb[ys, xs].astype(np.float64)
        r, g, b = sample[:, 0], sample[:, 1], sample[:, 2]
        cross = (r * g).sum() + (r * b).sum() + (g * b).sum()
        own = (r * r).sum() + (g * g).sum() + (b * b).sum()
        return float(cross / (own + 0.001))

    def _uniformity_ratio(self, red: np.ndarray) -> float:
        """Share of LBP-style patterns with at most two 0/1 transitions."""
        h, w = red.shape
        ys = np.arange(2, min(h - 2, self.LBP_WINDOW), 2)
        xs = np.arange(2, min(w - 2, self.LBP_WINDOW), 2)
        if ys.size == 0 or xs.size == 0:
            return 0.0

        center = red[np.ix_(ys, xs)]
        ring = [(-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1)]
        above = [red[np.ix_(ys + dy, xs + dx)] > center for dy, dx in ring]
        transitions = sum((above[i] != above[(i + 1) % 8]).astype(np.int32) for i in range(8))
        return float((transitions <= 2).sum() / (transitions.size + 0.001))

    def _smooth_block_ratio(self, red: np.ndarray) -> float:
        h, w = red.shape
        size = self.BLOCK_SIZE
        ny = len(range(0, min(h - size, self.BLOCK_WINDOW), size))
        nx = len(range(0, min(w - size, self.BLOCK_WINDOW), size))
        if ny == 0 or nx == 0:
            return 0.0

        blocks = red[:ny * size, :nx * size].reshape(ny, size, nx, size).astype(np.float64)
        spread = ((blocks - blocks.mean(axis=(1, 3), keepdims=True)) ** 2).sum(axis=(1, 3))
        return float((spread < self.SMOOTH_BLOCK_VARIANCE).sum() / (spread.size + 0.001))

    def _edge_coherence(self, red: np.ndarray) -> float:
        """Share of stride-2 edge points whose gradient matches the next point's."""
        h, w = red.shape
        if h < 5 or w < 5:
            return 0.0

        xs, left, right, right2 = (slice(2, w - 2, 2), slice(1, w - 3, 2),
                                   slice(3, w - 1, 2), slice(4, w, 2))
        centers = np.arange(2, h - 2, 2)
        total = 0
        coherent = 0
        for rows in self._row_chunks(centers.size, 2 * w):
            ys = centers[rows]
            base = ys[0] - 1
            slab = red[base:ys[-1] + 3].astype(np.float64)
            local = ys - base
            row, up, down, down2 = slab[local], slab[local - 1], slab[local + 1], slab[local + 2]

            center = row[:, xs]
            magnitude = np.hypot(np.abs(row[:, right] - row[:, left]), np.abs(down[:, xs] - up[:, xs]))
            edges = magnitude > self.EDGE_MAGNITUDE
            follow = np.hypot(np.abs(row[:, right2] - center), np.abs(down2[:, xs] - center))
            total += int(edges.sum())
            coherent += int((edges & (np.abs(magnitude - follow) < self.EDGE_COHERENCE_DELTA)).sum())

        if total == 0:
            return 0.0
        return float(coherent / total)

    def _clustering_score(self, bins: np.ndarray, pixel_count: int) -> float:
        crowded = (bins > pixel_count * self.CLUSTER_SHARE).sum()
        return float(crowded / bins.size)
