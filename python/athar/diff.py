"""Pixel and region level divergence between an original and a candidate."""
import logging
from typing import Optional

import cv2
import numpy as np

from .types import PixelBuffer, PixelDiff, RegionCell, RegionDiff, Severity

logger = logging.getLogger(__name__)


class PixelDiffEngine:
    """
    Compare two images on a common square canvas.

    Both sides are resampled to ``CANVAS_SIZE`` so the metrics do not
    depend on either image's resolution. Divergence is the mean absolute
    R, G, B difference per pixel; the canvas is split into a
    ``GRID`` x ``GRID`` set of named cells for localisation.
    """

    CANVAS_SIZE = 256
    GRID = 4
    CHANGED_THRESHOLD = 25
    SIMILARITY_WEIGHT = 2
    # (minimum cell average, severity), checked in order; LOW starts above 8
    HOT_BANDS = (
        (40, Severity.HIGH),
        (20, Severity.MEDIUM),
    )
    HOT_FLOOR = 8
    ROW_NAMES = ("top", "upper-middle", "lower-middle", "bottom")
    COL_NAMES = ("left", "center-left", "center-right", "right")
    CANNY_LOW = 100
    CANNY_HIGH = 200
    LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

    def normalize(self, pixels: PixelBuffer) -> np.ndarray:
        """RGB canvas of ``CANVAS_SIZE`` x ``CANVAS_SIZE`` pixels."""
        rgb = np.ascontiguousarray(pixels.rgb)
        return cv2.resize(rgb, (self.CANVAS_SIZE, self.CANVAS_SIZE), interpolation=cv2.INTER_AREA)

    def make_thumbnail(self, pixels: PixelBuffer) -> PixelBuffer:
        """Normalized canvas kept alongside a registered original."""
        return PixelBuffer.from_array(self.normalize(pixels))

    @classmethod
    def similarity_from_changed(cls, changed_pct: float) -> float:
        return max(0.0, 100.0 - changed_pct * cls.SIMILARITY_WEIGHT)

    def diff(self, original: Optional[PixelBuffer], candidate: Optional[PixelBuffer]) -> Optional[PixelDiff]:
        """Diff two images.

        Args:
            original: Registered original (or its thumbnail)
            candidate: Image under test

        Returns:
            PixelDiff, or None when either side is unavailable
        """
        if original is None or candidate is None:
            logger.warning("Pixel diff unavailable: missing original or candidate pixels")
            return None

        orig = self.normalize(original).astype(np.float64)
        cand = self.normalize(candidate).astype(np.float64)

        delta = cand - orig
        divergence = np.abs(delta).mean(axis=2)
        changed_pct = float((divergence > self.CHANGED_THRESHOLD).mean() * 100.0)

        regions = self._region_grid(divergence)
        hot = [cell for cell in regions.cells if cell.severity is not None]
        hot.sort(key=lambda c: (c.severity.rank, c.score), reverse=True)

        brightness_shift = float((cand @ self.LUMA_WEIGHTS).mean() - (orig @ self.LUMA_WEIGHTS).mean())
        channel_shifts = {
            name: float(delta[:, :, i].mean()) for i, name in enumerate(("r", "g", "b"))
        }

        return PixelDiff(
            avg_diff=float(divergence.mean()),
            changed_pct=changed_pct,
            regions=regions,
            hot_regions=hot,
            brightness_shift=brightness_shift,
            channel_shifts=channel_shifts,
            pixel_similarity=self.similarity_from_changed(changed_pct),
            edge_divergence=self._edge_divergence(orig, cand),
        )

    def _region_grid(self, divergence: np.ndarray) -> RegionDiff:
        step = self.CANVAS_SIZE // self.GRID
        cells = []
        for row in range(self.GRID):
            for col in range(self.GRID):
                block = divergence[row * step:(row + 1) * step, col * step:(col + 1) * step]
                score = float(block.mean())
                cells.append(RegionCell(
                    row=row,
                    col=col,
                    name=f"{self.ROW_NAMES[row]} {self.COL_NAMES[col]}",
                    score=score,
                    severity=self._severity(score),
                ))
        return RegionDiff(rows=self.GRID, cols=self.GRID, cells=cells)

    def _severity(self, score: float) -> Optional[Severity]:
        for floor, severity in self.HOT_BANDS:
            if score >= floor:
                return severity
        if score > self.HOT_FLOOR:
            return Severity.LOW
        return None

    def _edge_divergence(self, orig: np.ndarray, cand: np.ndarray) -> float:
        """Share of edge pixels present in only one of the two images."""
        edges = []
        for canvas in (orig, cand):
            gray = np.clip(canvas @ self.LUMA_WEIGHTS, 0, 255).astype(np.uint8)
            edges.append(cv2.Canny(gray, self.CANNY_LOW, self.CANNY_HIGH) > 0)
        union = np.logical_or(*edges).sum()
        if union == 0:
            return 0.0
        return float(np.logical_xor(*edges).sum() / union)
