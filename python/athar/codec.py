"""
LSB bit codec for identity payloads.

A payload is serialized to a short ASCII record, expanded to bits and
written into the least-significant bit of the R, G and B samples of a
pixel buffer. The record is repeated once per segment so that it survives
partial corruption of the buffer.
"""
import logging
import math
import re
from collections import Counter
from typing import List, Optional, Tuple

import numpy as np

from .types import ExtractionConfidence, ExtractionResult, Payload, PixelBuffer

logger = logging.getLogger(__name__)

MAGIC = "IMGCRYPT|"
MAGIC_EXTENDED = "IMGCRYPT2|"
TERMINATOR = "|END"
NO_GPS = "NOGPS"
UNKNOWN_DEVICE = "UNKNOWN"

_SIZE_RE = re.compile(r"(\d{1,6})x(\d{1,6})")


def serialize_payload(payload: Payload) -> str:
    """Render a payload in its wire format.

    ``IMGCRYPT|<subject>|<lat,lon or NOGPS>|<timestamp ms>|END`` for plain
    payloads and ``IMGCRYPT2|...|<device>|<WxH>|END`` when a device id or
    original size is attached.
    """
    subject = payload.subject_id
    if not subject:
        raise ValueError("subject_id must not be empty")
    if "|" in subject or any(not 32 <= ord(ch) <= 126 for ch in subject):
        raise ValueError(f"subject_id must be printable ASCII without '|': {subject!r}")
    if payload.timestamp_ms < 0:
        raise ValueError("timestamp_ms must be non-negative")
    if payload.gps is not None and valid_gps(*payload.gps) is None:
        raise ValueError(f"gps must be finite with lat in [-90, 90] and lon in [-180, 180]: {payload.gps!r}")

    fields = [subject, payload.gps_text or NO_GPS, str(int(payload.timestamp_ms))]
    if not payload.is_extended:
        return MAGIC + "|".join(fields) + TERMINATOR

    device = payload.device_id or UNKNOWN_DEVICE
    if "|" in device or any(not 32 <= ord(ch) <= 126 for ch in device):
        raise ValueError(f"device_id must be printable ASCII without '|': {device!r}")
    size = ""
    if payload.original_size is not None:
        size = f"{payload.original_size[0]}x{payload.original_size[1]}"
    fields.extend([device, size])
    return MAGIC_EXTENDED + "|".join(fields) + TERMINATOR


def parse_payload(text: str) -> Optional[Payload]:
    """Parse a decoded record that starts with a magic token.

    Returns None for anything that is not a well-formed record, including
    a malformed GPS field. A missing location is the ``NOGPS`` token, never
    an empty field.
    """
    if text.startswith(MAGIC_EXTENDED):
        body, expected = text[len(MAGIC_EXTENDED):], 5
    elif text.startswith(MAGIC):
        body, expected = text[len(MAGIC):], 3
    else:
        return None

    end = body.find(TERMINATOR)
    if end < 0:
        return None
    parts = body[:end].split("|")
    if len(parts) != expected:
        return None

    subject, gps_field, ts_field = parts[:3]
    if not subject or not ts_field.isdigit():
        return None

    gps = _parse_gps(gps_field)
    if gps is None and gps_field != NO_GPS:
        return None

    payload = Payload(subject_id=subject, timestamp_ms=int(ts_field), gps=gps)
    if expected == 5:
        device, size = parts[3], parts[4]
        payload.device_id = None if device in ("", UNKNOWN_DEVICE) else device
        if size:
            match = _SIZE_RE.fullmatch(size)
            if match is None:
                return None
            payload.original_size = (int(match.group(1)), int(match.group(2)))
    return payload


def _parse_gps(field: str) -> Optional[Tuple[float, float]]:
    parts = field.split(",")
    if len(parts) != 2:
        return None
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    return valid_gps(lat, lon)


def valid_gps(lat: float, lon: float) -> Optional[Tuple[float, float]]:
    """The pair if it is a finite, in-range coordinate, else None."""
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return (lat, lon)


class BitCodec:
    """Embed and recover delimited text payloads in RGB least-significant bits.

    The buffer is split into ``repetitions`` contiguous segments whose size
    is a multiple of 8 pixels, so each segment starts on a byte boundary of
    the concatenated LSB stream. Extraction only needs one segment to
    decode cleanly.
    """

    REPETITIONS = 12
    WINDOW_CHARS = 250  # 2,000 bits per decode window
    _CHUNK_PIXELS = 1 << 18  # multiple of 8 so chunk bit counts stay byte aligned

    def __init__(self, repetitions: int = REPETITIONS):
        if repetitions < 1:
            raise ValueError("repetitions must be at least 1")
        self.repetitions = repetitions

    def segment_pixels(self, pixel_count: int) -> int:
        """Pixels per repetition segment."""
        return (pixel_count // self.repetitions) // 8 * 8

    def segment_bounds(self, pixel_count: int) -> List[Tuple[int, int]]:
        """(start, end) pixel indices of each repetition segment."""
        size = self.segment_pixels(pixel_count)
        return [(i * size, (i + 1) * size) for i in range(self.repetitions)]

    def capacity_chars(self, pixel_count: int) -> int:
        """Longest serialized payload (in characters) a buffer can hold."""
        return min(self.WINDOW_CHARS, self.segment_pixels(pixel_count) * 3 // 8)

    def embed(self, pixels: PixelBuffer, payload: Payload) -> PixelBuffer:
        """Return a new buffer carrying ``payload`` in every segment.

        Raises:
            ValueError: if the serialized payload does not fit a segment or
                the decode window.
        """
        message = serialize_payload(payload)
        if len(message) > self.WINDOW_CHARS:
            raise ValueError(
                f"Serialized payload is {len(message)} chars, window holds {self.WINDOW_CHARS}"
            )

        bits = np.unpackbits(np.frombuffer(message.encode("ascii"), dtype=np.uint8))
        segment = self.segment_pixels(pixels.pixel_count)
        if bits.size > segment * 3:
            raise ValueError(
                f"Payload needs {bits.size} bits but each of {self.repetitions} "
                f"segments of a {pixels.width}x{pixels.height} buffer holds {segment * 3}"
            )

        out = pixels.copy()
        records = out.data.reshape(-1, 4)
        pixel_idx, channel_idx = np.divmod(np.arange(bits.size), 3)
        for start, _ in self.segment_bounds(pixels.pixel_count):
            rows = pixel_idx + start
            records[rows, channel_idx] = (records[rows, channel_idx] & 0xFE) | bits

        logger.debug(
            f"Embedded {len(message)} chars x {self.repetitions} segments "
            f"into {pixels.width}x{pixels.height} buffer"
        )
        return out

    def extract(self, pixels: PixelBuffer) -> ExtractionResult:
        """Recover the payload from a buffer. Never raises on noisy input."""
        stream = self._lsb_stream(pixels)
        candidates: List[Payload] = []

        for magic in (MAGIC_EXTENDED, MAGIC):
            token = magic.encode("ascii")
            pos = stream.find(token)
            while pos != -1:
                window = stream[pos:pos + self.WINDOW_CHARS]
                text = "".join(chr(b) for b in window if 32 <= b <= 126)
                payload = parse_payload(text)
                if payload is not None:
                    candidates.append(payload)
                pos = stream.find(token, pos + 1)

        if not candidates:
            return ExtractionResult(found=False)

        votes = Counter(serialize_payload(c) for c in candidates)
        winner, count = votes.most_common(1)[0]
        best = next(c for c in candidates if serialize_payload(c) == winner)
        if len(votes) > 1:
            logger.debug(f"{len(votes)} distinct payloads decoded; majority has {count} copies")

        matches = len(candidates)
        confidence = ExtractionConfidence.VERY_HIGH if matches >= 3 else ExtractionConfidence.HIGH
        return ExtractionResult(found=True, payload=best, matches=matches, confidence=confidence)

    def extract_with_rotation(self, pixels: PixelBuffer) -> ExtractionResult:
        """Try each quarter-turn rotation until a payload decodes."""
        for quarter_turns in range(4):
            candidate = pixels if quarter_turns == 0 else pixels.rotated(quarter_turns)
            result = self.extract(candidate)
            if result.found:
                result.rotation = 90 * quarter_turns
                return result
        return ExtractionResult(found=False)

    def _lsb_stream(self, pixels: PixelBuffer) -> bytes:
        """Pack the LSB of every R, G, B sample into bytes, chunk by chunk."""
        records = pixels.data.reshape(-1, 4)
        chunks = []
        for start in range(0, records.shape[0], self._CHUNK_PIXELS):
            bits = (records[start:start + self._CHUNK_PIXELS, :3] & 1).reshape(-1)
            usable = bits.size // 8 * 8
            chunks.append(np.packbits(bits[:usable]).tobytes())
        return b"".join(chunks)
