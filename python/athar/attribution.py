"""
Platform attribution from container signals.

Definitive metadata (software tags, XMP CreatorTool, Photoshop resources,
Adobe ICC profiles, tool keywords in comments) always wins. Without it the
JPEG quantization tables, chroma subsampling, canonical output sizes and
the absence of Exif are scored against a table of known social-platform
re-encoders.

The platform table is empirical and tied to the encoders those platforms
shipped when it was compiled; treat ``PROFILE_VERSION`` as part of any
result you persist.
"""
import logging
from typing import Dict, List, Optional, Tuple

from .types import AttributionResult, AttributionSource, ChromaSubsampling, FormatSignals

logger = logging.getLogger(__name__)

PROFILE_VERSION = "2024.1"
ATTRIBUTION_THRESHOLD = 60

_420 = ChromaSubsampling.YUV420
_444 = ChromaSubsampling.YUV444

# name -> scoring profile
PLATFORM_PROFILES: Dict[str, dict] = {
    "Instagram": {
        "category": "photo-sharing",
        "dc_range": (6, 11),
        "ac_mean_range": (20.0, 42.0),
        "chroma": (_420,),
        "strict_chroma": False,
        "long_edges": (1080, 1350, 1440),
    },
    "WhatsApp": {
        "category": "messaging",
        "dc_range": (9, 14),
        "ac_mean_range": (32.0, 52.0),
        "chroma": (_420,),
        "strict_chroma": False,
        "long_edges": (1600, 1280, 2560),
    },
    "Facebook": {
        "category": "social network",
        "dc_range": (5, 9),
        "ac_mean_range": (18.0, 33.0),
        "chroma": (_420,),
        "strict_chroma": False,
        "long_edges": (2048, 960, 720),
    },
    "Twitter": {
        "category": "microblog",
        "dc_range": (2, 5),
        "ac_mean_range": (7.0, 19.0),
        "chroma": (_420, _444),
        "strict_chroma": False,
        "long_edges": (4096, 2048, 1200, 680),
    },
    "Snapchat": {
        "category": "ephemeral-photo",
        "dc_range": (8, 14),
        "ac_mean_range": (28.0, 52.0),
        "chroma": (_420,),
        "strict_chroma": False,
        "long_edges": (1920, 1280),
    },
    "Discord": {
        "category": "chat",
        "dc_range": (3, 6),
        "ac_mean_range": (10.0, 22.0),
        "chroma": (_444,),
        "strict_chroma": True,
        "long_edges": (),
    },
}

POINTS = {
    "dc_match": 30,
    "ac_match": 15,
    "chroma_match": 15,
    "chroma_mismatch": -20,
    "long_edge": 30,
    "no_exif": 10,
    "exif_present": -25,
}

EDITOR_KEYWORDS = {
    "photoshop": "Adobe Photoshop",
    "gimp": "GIMP",
    "canva": "Canva",
    "snapseed": "Snapseed",
}

# pHYs pixels-per-metre written by OS screenshot tools
SCREENSHOT_DENSITIES = {
    5669: "macOS screenshot (144 DPI Retina)",
    2835: "Screenshot (72 DPI)",
    3779: "Windows screenshot (96 DPI)",
    3780: "Windows screenshot (96 DPI)",
}
SCREENSHOT_SCORE = 80

METADATA_SCORE = 100

# IJG / JPEG Annex K luminance table at quality 50
STD_LUMINANCE_TABLE = (
    16, 11, 10, 16, 24, 40, 51, 61,
    12, 12, 14, 19, 26, 58, 60, 55,
    14, 13, 16, 24, 40, 57, 69, 56,
    14, 17, 22, 29, 51, 87, 80, 62,
    18, 22, 37, 56, 68, 109, 103, 77,
    24, 35, 55, 64, 81, 104, 113, 92,
    49, 64, 78, 87, 103, 121, 120, 101,
    72, 92, 95, 98, 112, 100, 103, 99,
)
_STD_LUMINANCE_MEAN = sum(STD_LUMINANCE_TABLE) / len(STD_LUMINANCE_TABLE)


def estimate_quality(mean_coefficient: float) -> int:
    """Invert IJG quality scaling from a table's mean coefficient."""
    if mean_coefficient <= 0:
        return 100
    scale = mean_coefficient / _STD_LUMINANCE_MEAN * 100
    if scale <= 100:
        quality = (200 - scale) / 2
    else:
        quality = 5000 / scale
    return int(max(1, min(100, round(quality))))


class PlatformAttributor:
    """Map ``FormatSignals`` to the tool or platform that most likely wrote them."""

    def __init__(self, profiles: Optional[Dict[str, dict]] = None,
                 threshold: int = ATTRIBUTION_THRESHOLD):
        self.profiles = PLATFORM_PROFILES if profiles is None else profiles
        self.threshold = threshold

    def attribute(self, signals: FormatSignals) -> AttributionResult:
        """Attribute a file from its parsed signals.

        Args:
            signals: Output of ``FormatInspector.inspect``

        Returns:
            AttributionResult; ``label`` is None when nothing can be said
        """
        metadata = self._from_metadata(signals)
        if metadata is not None:
            return metadata

        screenshot = self._from_screenshot_density(signals)
        if screenshot is not None:
            return screenshot

        luminance = signals.luminance_table
        if luminance is None:
            if signals.has_jfif and not signals.has_exif:
                return AttributionResult(
                    label="Metadata stripped (JFIF without Exif)",
                    score=0.0,
                    basis="JFIF header present, Exif removed; no quantization table to score",
                    source=AttributionSource.ESTIMATE,
                )
            return AttributionResult(label=None, score=0.0, basis="No attributable signals")

        scores, reasons = self.score_platforms(signals)
        best = max(scores, key=scores.get) if scores else None
        quality = estimate_quality(luminance.mean)

        if best is not None and scores[best] >= self.threshold:
            profile = self.profiles[best]
            logger.debug(f"Attributed to {best} with score {scores[best]} (profiles {PROFILE_VERSION})")
            return AttributionResult(
                label=best,
                score=float(scores[best]),
                basis=f"{best} ({profile['category']} re-encode): " + ", ".join(reasons[best]),
                source=AttributionSource.HEURISTIC,
                platform_scores={k: float(v) for k, v in scores.items()},
                estimated_quality=quality,
            )

        chroma = signals.chroma_subsampling.value if signals.chroma_subsampling else "unknown"
        top = scores[best] if best is not None else 0
        return AttributionResult(
            label=f"JPEG re-encode (quality ~{quality}%, DC={luminance.dc}, chroma={chroma})",
            score=float(top),
            basis=f"No platform reached {self.threshold} points (best {best}: {top})",
            source=AttributionSource.ESTIMATE,
            platform_scores={k: float(v) for k, v in scores.items()},
            estimated_quality=quality,
        )

    def score_platforms(self, signals: FormatSignals) -> Tuple[Dict[str, int], Dict[str, List[str]]]:
        """Additive score per platform with the reasons that earned each point."""
        luminance = signals.luminance_table
        scores: Dict[str, int] = {}
        reasons: Dict[str, List[str]] = {}
        if luminance is None:
            return scores, reasons

        chroma = signals.chroma_subsampling
        long_edge = max(signals.width or 0, signals.height or 0)
        explained_elsewhere = {
            name: any(
                chroma in other["chroma"]
                for other_name, other in self.profiles.items() if other_name != name
            )
            for name in self.profiles
        }

        for name, profile in self.profiles.items():
            score = 0
            why: List[str] = []

            lo, hi = profile["dc_range"]
            if lo <= luminance.dc <= hi:
                score += POINTS["dc_match"]
                why.append(f"DC={luminance.dc} in {lo}-{hi}")

            ac_lo, ac_hi = profile["ac_mean_range"]
            if ac_lo <= luminance.ac_mean <= ac_hi:
                score += POINTS["ac_match"]
                why.append(f"AC mean {luminance.ac_mean:.1f}")

            if chroma is not None:
                if chroma in profile["chroma"]:
                    score += POINTS["chroma_match"]
                    why.append(f"chroma {chroma.value}")
                elif profile["strict_chroma"] and explained_elsewhere[name]:
                    score += POINTS["chroma_mismatch"]
                    why.append(f"chroma {chroma.value} contradicts profile")

            if long_edge and long_edge in profile["long_edges"]:
                score += POINTS["long_edge"]
                why.append(f"long edge {long_edge}px")

            if signals.has_exif:
                score += POINTS["exif_present"]
                why.append("Exif present")
            else:
                score += POINTS["no_exif"]
                why.append("no Exif")

            scores[name] = max(0, score)
            reasons[name] = why

        return scores, reasons

    def _from_metadata(self, signals: FormatSignals) -> Optional[AttributionResult]:
        if signals.software:
            return self._metadata(signals.software, f"Software tag: {signals.software}")
        if signals.xmp_creator_tool:
            return self._metadata(signals.xmp_creator_tool, f"XMP CreatorTool: {signals.xmp_creator_tool}")
        if signals.has_photoshop_marker:
            return self._metadata("Adobe Photoshop", "Photoshop APP13 resource block")

        icc = (signals.icc_profile_name or "").lower()
        if "adobe" in icc or "prophoto" in icc:
            return self._metadata(
                "Adobe software", f"Adobe ICC profile: {signals.icc_profile_name}"
            )

        fields = list(signals.comments) + list(signals.text_chunks.values())
        for text in fields:
            lowered = text.lower()
            for keyword, tool in EDITOR_KEYWORDS.items():
                if keyword in lowered:
                    return self._metadata(tool, f"Keyword '{keyword}' in metadata text")
        return None

    @staticmethod
    def _metadata(label: str, basis: str) -> AttributionResult:
        return AttributionResult(
            label=label,
            score=float(METADATA_SCORE),
            basis=basis,
            source=AttributionSource.METADATA,
        )

    @staticmethod
    def _from_screenshot_density(signals: FormatSignals) -> Optional[AttributionResult]:
        if signals.pixels_per_unit is None or signals.pixel_unit != 1:
            return None
        x, y = signals.pixels_per_unit
        if x != y or x not in SCREENSHOT_DENSITIES:
            return None
        return AttributionResult(
            label=SCREENSHOT_DENSITIES[x],
            score=float(SCREENSHOT_SCORE),
            basis=f"pHYs density {x} px/m ({signals.dpi[0]} DPI)",
            source=AttributionSource.SCREENSHOT,
        )
