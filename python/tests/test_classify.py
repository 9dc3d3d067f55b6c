"""Tests for ClassificationEngine."""

import tracemalloc

import numpy as np
import pytest

from athar.classify import ClassificationEngine
from athar.types import ContainerFormat, FormatSignals, ImageCase, PixelBuffer


def _flat(width, height, color=(120, 130, 140)):
    arr = np.empty((height, width, 3), dtype=np.uint8)
    arr[:, :] = color
    return PixelBuffer.from_array(arr)


@pytest.fixture()
def engine():
    return ClassificationEngine(rng=np.random.default_rng(42))


class TestSingleImageCases:
    def test_flat_render_is_synthetic(self, engine):
        pixels = _flat(512, 512)
        result = engine.classify(pixels, file_size=2000, file_name="render.png",
                                 has_embedded_payload=False)
        assert result.case is ImageCase.SYNTHETIC
        assert result.confidence == 97
        assert result.scores["synthetic"] > result.scores["screen_capture"]
        assert "Overly smooth blocks: 1.00" in result.reasoning

    def test_noisy_camera_frame_is_mobile_capture(self, engine):
        rng = np.random.default_rng(1)
        arr = rng.integers(0, 256, (1080, 1440, 3), dtype=np.uint8)
        pixels = PixelBuffer.from_array(arr)
        result = engine.classify(pixels, file_size=3 * pixels.pixel_count,
                                 file_name="IMG_0001.jpg", has_embedded_payload=False)
        assert result.case is ImageCase.MOBILE_CAPTURE
        assert result.confidence == 97
        assert "Camera aspect ratio" in result.reasoning

    def test_reasoning_ends_with_metrics(self, engine):
        result = engine.classify(_flat(128, 128), 500, "a.png", False)
        metric_lines = result.reasoning[-len(result.metrics):]
        for line, name in zip(metric_lines, result.metrics):
            assert line.startswith(f"{name}: ")
        assert set(result.metrics) >= {"entropy", "noise_level", "channel_correlation"}

    def test_seeded_runs_are_reproducible(self):
        rng = np.random.default_rng(5)
        pixels = PixelBuffer.from_array(rng.integers(0, 256, (200, 300, 3), dtype=np.uint8))
        a = ClassificationEngine(rng=np.random.default_rng(9)).classify(pixels, 50000, "x.jpg", False)
        b = ClassificationEngine(rng=np.random.default_rng(9)).classify(pixels, 50000, "x.jpg", False)
        assert a.metrics == b.metrics
        assert a.case is b.case
        assert a.confidence == b.confidence

    def test_confidence_bounds(self, engine):
        rng = np.random.default_rng(2)
        pixels = PixelBuffer.from_array(rng.integers(90, 160, (150, 150, 3), dtype=np.uint8))
        result = engine.classify(pixels, 20000, "photo.webp", False)
        assert 0 <= result.confidence <= 100
        assert set(result.scores) == {"synthetic", "mobile_capture", "web_download", "screen_capture"}


class TestWatermarked:
    def test_square_copy(self, engine):
        result = engine.classify(_flat(1000, 1000), 1, "a.png", True)
        assert result.case is ImageCase.WATERMARKED
        assert result.confidence == 98
        assert result.reasoning[0] == "Embedded identity payload verified"

    def test_extreme_aspect_is_cropped(self, engine):
        result = engine.classify(_flat(2000, 500), 1, "a.png", True)
        assert result.case is ImageCase.WATERMARKED_CROPPED
        assert result.confidence == 95
        assert "Likely cropped image" in result.reasoning

    def test_small_crop_reduces_confidence(self, engine):
        result = engine.classify(_flat(300, 100), 1, "a.png", True)
        assert result.case is ImageCase.WATERMARKED_CROPPED
        assert result.confidence == 85

    def test_recorded_size_detects_crop(self, engine):
        result = engine.classify(_flat(1000, 1000), 1, "a.png", True, original_size=(2000, 2000))
        assert result.case is ImageCase.WATERMARKED_CROPPED
        assert any("75.0%" in line for line in result.reasoning)

    def test_recorded_size_accepts_rotation(self, engine):
        result = engine.classify(_flat(800, 600), 1, "a.png", True, original_size=(600, 800))
        assert result.case is ImageCase.WATERMARKED


class TestDecision:
    def _scores(self, synthetic=0, mobile=0, web=0, screen=0):
        return {
            ImageCase.SYNTHETIC: synthetic,
            ImageCase.MOBILE_CAPTURE: mobile,
            ImageCase.WEB_DOWNLOAD: web,
            ImageCase.SCREEN_CAPTURE: screen,
        }

    def test_outright_winner_capped(self, engine):
        assert engine._decide(self._scores(synthetic=150)) == (ImageCase.SYNTHETIC, 97)

    def test_outright_tie_prefers_table_order(self, engine):
        assert engine._decide(self._scores(synthetic=70, mobile=70)) == (ImageCase.SYNTHETIC, 70)

    def test_unique_leader_below_outright(self, engine):
        assert engine._decide(self._scores(synthetic=50, mobile=40)) == (ImageCase.SYNTHETIC, 55)

    def test_tie_falls_back_to_web(self, engine):
        assert engine._decide(self._scores(synthetic=30, mobile=30, web=10)) == (ImageCase.WEB_DOWNLOAD, 60)

    def test_web_leader_uses_web_band(self, engine):
        assert engine._decide(self._scores(web=50)) == (ImageCase.WEB_DOWNLOAD, 60)

    def test_close_call_is_capped(self, engine, monkeypatch):
        fixed = {ImageCase.SYNTHETIC: 80, ImageCase.MOBILE_CAPTURE: 65,
                 ImageCase.WEB_DOWNLOAD: 0, ImageCase.SCREEN_CAPTURE: 0}
        by_rules = {id(rules): case for case, rules in engine.CASE_RULES.items()}
        monkeypatch.setattr(engine, "_score", lambda rules, facts: (fixed[by_rules[id(rules)]], ["hit"]))

        result = engine.classify(_flat(64, 64), 100, "a.png", False)
        assert result.case is ImageCase.SYNTHETIC
        assert result.confidence == 75
        assert "Mixed signals: some mobile capture characteristics present" in result.reasoning


class TestPriors:
    def test_signals_override_file_name(self):
        signals = FormatSignals(container=ContainerFormat.PNG, pixels_per_unit=(5669, 5669), pixel_unit=1)
        priors = ClassificationEngine._priors(_flat(1920, 1080), "shot.jpg", signals)
        assert priors["is_png"] and not priors["is_jpeg"]
        assert priors["screenshot_density"]
        assert priors["screen_resolution"]

    def test_file_name_fallback(self):
        priors = ClassificationEngine._priors(_flat(640, 480), "Holiday.JPEG", None)
        assert priors["is_jpeg"]
        assert priors["mobile_aspect"]
        assert priors["dims_multiple_of_10"]
        assert not priors["screenshot_density"]


class TestBoundedMemory:
    def test_large_buffer_peak_allocation(self):
        rng = np.random.default_rng(4)
        pixels = PixelBuffer.from_array(rng.integers(0, 256, (2000, 3000, 3), dtype=np.uint8))
        engine = ClassificationEngine(rng=np.random.default_rng(1))

        tracemalloc.start()
        try:
            engine.classify(pixels, 3_000_000, "big.jpg", False)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()

        assert pixels.data.nbytes == 24_000_000
        assert peak < 12_000_000

    def test_chunked_statistics_match_whole_image(self):
        rng = np.random.default_rng(8)
        arr = rng.integers(0, 256, (300, 400, 3), dtype=np.uint8)
        pixels = PixelBuffer.from_array(arr)
        engine = ClassificationEngine(rng=np.random.default_rng(1))
        engine.ROW_CHUNK_PIXELS = 1000

        metrics = engine.compute_metrics(pixels, 1000)
        red = arr[:, :, 0].astype(np.int32)
        assert metrics["noise_level"] == pytest.approx(np.abs(np.diff(red.ravel())).sum() / red.size)
        assert metrics["variance"] == pytest.approx(np.mean([arr[:, :, c].var() for c in range(3)]))

        whole = ClassificationEngine(rng=np.random.default_rng(1))
        whole.ROW_CHUNK_PIXELS = arr.shape[0] * arr.shape[1]
        reference = whole.compute_metrics(pixels, 1000)
        for name in ("entropy", "clustering_score", "edge_coherence"):
            assert metrics[name] == pytest.approx(reference[name])
