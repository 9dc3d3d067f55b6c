"""
Container-level introspection of JPEG and PNG files.

Walks JPEG marker segments and PNG chunks to recover encoder and editor
metadata (Exif, XMP, ICC, text chunks), quantization tables and chroma
subsampling. Pixel data is never decoded.

Every read goes through ``ByteCursor``, which refuses to read past the end
of its window. Malformed or truncated input therefore produces partial
signals with ``truncated`` set instead of an exception.
"""
import logging
import re
import zlib
from functools import partial
from typing import Dict, Optional, Tuple

from .types import ChromaSubsampling, ContainerFormat, FormatSignals, QuantTable

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SOI = b"\xff\xd8"

EXIF_HEADER = b"Exif\x00\x00"
XMP_HEADER = b"http://ns.adobe.com/xap/1.0/\x00"
ICC_HEADER = b"ICC_PROFILE\x00"
PHOTOSHOP_HEADER = b"Photoshop "
ADOBE_HEADER = b"Adobe"

_CREATOR_TOOL_RE = re.compile(
    r'xmp:CreatorTool\s*=\s*"([^"<>]{1,200})"'
    r'|<xmp:CreatorTool>\s*([^<]{1,200}?)\s*</xmp:CreatorTool>'
)

# TIFF field type -> byte size per value
_TIFF_TYPE_SIZES = {1: 1, 2: 1, 3: 2, 4: 4, 5: 8, 6: 1, 7: 1, 8: 2, 9: 4, 10: 8, 11: 4, 12: 8}

_IFD0_TEXT_TAGS = {
    0x010F: "make",
    0x0110: "model",
    0x0131: "software",
}
_IFD0_COMMENT_TAGS = (0x010E, 0x013C)  # ImageDescription, HostComputer
_TAG_EXIF_IFD = 0x8769
_TAG_USER_COMMENT = 0x9286
_TAG_XP_COMMENT = 0x9C9C

_SUBSAMPLING = {
    (1, 1): ChromaSubsampling.YUV444,
    (2, 1): ChromaSubsampling.YUV422,
    (2, 2): ChromaSubsampling.YUV420,
    (1, 2): ChromaSubsampling.YUV440,
}

_ICC_NAME_HINTS = (b"Adobe RGB", b"ProPhoto", b"Display P3", b"sRGB")


class TruncatedDataError(Exception):
    """Raised when a read would run past the end of the cursor window."""


class ByteCursor:
    """Bounds-checked read-and-advance view over a byte buffer."""

    def __init__(self, data: bytes, offset: int = 0):
        self._data = data
        self._end = len(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return max(0, self._end - self.offset)

    def _require(self, n: int):
        if n < 0 or self.offset + n > self._end:
            raise TruncatedDataError(
                f"need {n} bytes at offset {self.offset}, {self.remaining} available"
            )

    def read(self, n: int) -> bytes:
        self._require(n)
        chunk = self._data[self.offset:self.offset + n]
        self.offset += n
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u16(self, little: bool = False) -> int:
        return int.from_bytes(self.read(2), "little" if little else "big")

    def read_u32(self, little: bool = False) -> int:
        return int.from_bytes(self.read(4), "little" if little else "big")

    def skip(self, n: int):
        self._require(n)
        self.offset += n

    def seek(self, position: int):
        if position < 0 or position > self._end:
            raise TruncatedDataError(f"seek to {position} outside 0..{self._end}")
        self.offset = position

    def peek(self, n: int) -> bytes:
        """Up to ``n`` bytes from the current offset without advancing."""
        return self._data[self.offset:min(self._end, self.offset + max(0, n))]

    def sub_cursor(self, n: int) -> "ByteCursor":
        """Consume ``n`` bytes and return a cursor confined to them."""
        return ByteCursor(self.read(n))


class FormatInspector:
    """Parse JPEG segments and PNG chunks into ``FormatSignals``."""

    XMP_SCAN_LIMIT = 64 * 1024
    TEXT_INFLATE_LIMIT = 64 * 1024
    MAX_PNG_CHUNKS = 10000
    MAX_IFD_ENTRIES = 512
    MAX_ICC_TAGS = 128

    def inspect(self, content: bytes) -> FormatSignals:
        """Inspect raw file bytes.

        Args:
            content: Complete file contents

        Returns:
            FormatSignals; empty signals for unrecognized containers
        """
        if not isinstance(content, (bytes, bytearray, memoryview)):
            raise ValueError(f"Expected bytes, got {type(content).__name__}")
        data = bytes(content)

        if data.startswith(PNG_SIGNATURE):
            return self._inspect_png(data)
        if data.startswith(JPEG_SOI):
            return self._inspect_jpeg(data)
        return FormatSignals()

    # ------------------------------------------------------------------
    # JPEG
    # ------------------------------------------------------------------

    def _inspect_jpeg(self, data: bytes) -> FormatSignals:
        signals = FormatSignals(container=ContainerFormat.JPEG)
        handlers = {
            0xE0: self._read_jfif,
            0xE1: self._read_app1,
            0xE2: self._read_icc_segment,
            0xED: self._read_photoshop,
            0xEE: self._read_adobe,
            0xFE: self._read_comment,
            0xDB: self._read_dqt,
            0xC0: partial(self._read_frame, progressive=False),
            0xC1: partial(self._read_frame, progressive=False),
            0xC2: partial(self._read_frame, progressive=True),
        }
        cursor = ByteCursor(data, 2)

        try:
            while cursor.remaining:
                if cursor.read_u8() != 0xFF:
                    logger.debug(f"Lost JPEG marker sync at offset {cursor.offset - 1}")
                    signals.truncated = True
                    break
                marker = cursor.read_u8()
                while marker == 0xFF:
                    marker = cursor.read_u8()

                if marker in (0xD9, 0xDA):  # EOI, SOS
                    break
                if marker == 0x00:
                    signals.truncated = True
                    break
                if marker == 0x01 or 0xD0 <= marker <= 0xD7:  # TEM, RSTn carry no length
                    continue

                length = cursor.read_u16()
                if length < 2 or length - 2 > cursor.remaining:
                    logger.warning(
                        f"JPEG segment 0x{marker:02X} declares {length} bytes, "
                        f"{cursor.remaining} remain; stopping walk"
                    )
                    signals.truncated = True
                    break

                segment = cursor.sub_cursor(length - 2)
                handler = handlers.get(marker)
                if handler is None:
                    continue
                try:
                    handler(segment, signals)
                except TruncatedDataError as e:
                    logger.debug(f"Malformed JPEG segment 0x{marker:02X}: {e}")
        except TruncatedDataError as e:
            logger.debug(f"JPEG walk ended early: {e}")
            signals.truncated = True

        return signals

    def _read_jfif(self, cursor: ByteCursor, signals: FormatSignals):
        if cursor.read(5) != b"JFIF\x00":
            return
        signals.has_jfif = True
        major, minor = cursor.read_u8(), cursor.read_u8()
        signals.jfif_version = f"{major}.{minor:02d}"

    def _read_app1(self, cursor: ByteCursor, signals: FormatSignals):
        if cursor.peek(len(EXIF_HEADER)) == EXIF_HEADER:
            cursor.skip(len(EXIF_HEADER))
            signals.has_exif = True
            self._read_tiff(cursor.sub_cursor(cursor.remaining), signals)
        elif cursor.peek(len(XMP_HEADER)) == XMP_HEADER:
            cursor.skip(len(XMP_HEADER))
            packet = cursor.read(min(cursor.remaining, self.XMP_SCAN_LIMIT))
            tool = self._creator_tool(packet)
            if tool and signals.xmp_creator_tool is None:
                signals.xmp_creator_tool = tool

    def _read_tiff(self, tiff: ByteCursor, signals: FormatSignals):
        order = tiff.read(2)
        if order == b"II":
            little = True
        elif order == b"MM":
            little = False
        else:
            logger.debug(f"Unknown TIFF byte order {order!r}")
            return
        if tiff.read_u16(little) != 42:
            return

        ifd0 = self._read_ifd(tiff, tiff.read_u32(little), little)
        for tag, attr in _IFD0_TEXT_TAGS.items():
            if tag in ifd0:
                text = self._ifd_text(tiff, ifd0[tag], little)
                if text and getattr(signals, attr) is None:
                    setattr(signals, attr, text)
        for tag in _IFD0_COMMENT_TAGS:
            if tag in ifd0:
                text = self._ifd_text(tiff, ifd0[tag], little)
                if text:
                    signals.comments.append(text)
        if _TAG_XP_COMMENT in ifd0:
            raw = self._ifd_bytes(tiff, ifd0[_TAG_XP_COMMENT], little)
            if raw:
                text = raw.decode("utf-16-le", "replace").strip("\x00 ")
                if text:
                    signals.comments.append(text)

        if _TAG_EXIF_IFD in ifd0:
            _, _, raw = ifd0[_TAG_EXIF_IFD]
            exif_ifd = self._read_ifd(tiff, int.from_bytes(raw, "little" if little else "big"), little)
            if _TAG_USER_COMMENT in exif_ifd:
                comment = self._user_comment(self._ifd_bytes(tiff, exif_ifd[_TAG_USER_COMMENT], little), little)
                if comment:
                    signals.comments.append(comment)

    def _read_ifd(self, tiff: ByteCursor, offset: int, little: bool) -> Dict[int, Tuple[int, int, bytes]]:
        entries: Dict[int, Tuple[int, int, bytes]] = {}
        try:
            tiff.seek(offset)
            count = tiff.read_u16(little)
            for _ in range(min(count, self.MAX_IFD_ENTRIES)):
                tag = tiff.read_u16(little)
                field_type = tiff.read_u16(little)
                n_values = tiff.read_u32(little)
                entries[tag] = (field_type, n_values, tiff.read(4))
        except TruncatedDataError as e:
            logger.debug(f"IFD at offset {offset} truncated after {len(entries)} entries: {e}")
        return entries

    def _ifd_bytes(self, tiff: ByteCursor, entry: Tuple[int, int, bytes], little: bool) -> Optional[bytes]:
        field_type, n_values, raw = entry
        size = _TIFF_TYPE_SIZES.get(field_type, 1) * n_values
        if size <= 4:
            return raw[:size]
        try:
            tiff.seek(int.from_bytes(raw, "little" if little else "big"))
            return tiff.read(size)
        except TruncatedDataError as e:
            logger.debug(f"IFD value out of bounds: {e}")
            return None

    def _ifd_text(self, tiff: ByteCursor, entry: Tuple[int, int, bytes], little: bool) -> Optional[str]:
        raw = self._ifd_bytes(tiff, entry, little)
        if not raw:
            return None
        text = raw.split(b"\x00", 1)[0].decode("utf-8", "replace").strip()
        return text or None

    @staticmethod
    def _user_comment(raw: Optional[bytes], little: bool) -> Optional[str]:
        if not raw or len(raw) <= 8:
            return None
        charset, body = raw[:8], raw[8:]
        if charset.startswith(b"UNICODE"):
            text = body.decode("utf-16-le" if little else "utf-16-be", "replace")
        else:
            text = body.decode("utf-8", "replace")
        text = text.strip("\x00 \r\n\t")
        return text or None

    def _read_icc_segment(self, cursor: ByteCursor, signals: FormatSignals):
        if cursor.peek(len(ICC_HEADER)) != ICC_HEADER:
            return
        cursor.skip(len(ICC_HEADER))
        sequence = cursor.read_u8()
        cursor.skip(1)  # chunk count
        signals.has_icc = True
        if sequence != 1 or signals.icc_profile_name is not None:
            return
        signals.icc_profile_name = self._icc_description(cursor.read(cursor.remaining))

    def _icc_description(self, profile: bytes) -> Optional[str]:
        """Profile description from the ``desc`` tag, else a name scan."""
        table = ByteCursor(profile)
        try:
            table.seek(128)
            tag_count = table.read_u32()
            for _ in range(min(tag_count, self.MAX_ICC_TAGS)):
                signature = table.read(4)
                offset, size = table.read_u32(), table.read_u32()
                if signature == b"desc":
                    text = self._icc_tag_text(profile, offset, size)
                    if text:
                        return text
                    break
        except TruncatedDataError as e:
            logger.debug(f"ICC tag table truncated: {e}")

        head = profile[:4096]
        for hint in _ICC_NAME_HINTS:
            if hint in head:
                return hint.decode("ascii")
        return None

    @staticmethod
    def _icc_tag_text(profile: bytes, offset: int, size: int) -> Optional[str]:
        tag = ByteCursor(profile)
        tag.seek(offset)
        body = tag.sub_cursor(size)
        tag_type = body.read(4)
        body.skip(4)
        if tag_type == b"desc":
            length = body.read_u32()
            raw = body.read(min(length, body.remaining))
            text = raw.split(b"\x00", 1)[0].decode("latin-1").strip()
        elif tag_type == b"mluc":
            records, record_size = body.read_u32(), body.read_u32()
            if records == 0 or record_size < 12:
                return None
            body.skip(4)  # language + country
            length, text_offset = body.read_u32(), body.read_u32()
            body.seek(text_offset)
            text = body.read(length).decode("utf-16-be", "replace").strip("\x00 ")
        else:
            return None
        return text or None

    @staticmethod
    def _read_photoshop(cursor: ByteCursor, signals: FormatSignals):
        if cursor.peek(len(PHOTOSHOP_HEADER)) == PHOTOSHOP_HEADER:
            signals.has_photoshop_marker = True

    @staticmethod
    def _read_adobe(cursor: ByteCursor, signals: FormatSignals):
        if cursor.peek(len(ADOBE_HEADER)) == ADOBE_HEADER:
            signals.has_adobe_marker = True

    @staticmethod
    def _read_comment(cursor: ByteCursor, signals: FormatSignals):
        text = cursor.read(cursor.remaining).decode("utf-8", "replace").strip("\x00 \r\n\t")
        if text:
            signals.comments.append(text)

    @staticmethod
    def _read_dqt(cursor: ByteCursor, signals: FormatSignals):
        while cursor.remaining:
            header = cursor.read_u8()
            precision, table_id = header >> 4, header & 0x0F
            if precision > 1 or table_id > 3:
                logger.debug(f"Invalid DQT header byte 0x{header:02X}")
                return
            if precision == 0:
                values = list(cursor.read(64))
            else:
                raw = cursor.read(128)
                values = [int.from_bytes(raw[i:i + 2], "big") for i in range(0, 128, 2)]
            signals.quant_tables[table_id] = QuantTable(
                table_id=table_id,
                precision=16 if precision else 8,
                values=values,
            )

    @staticmethod
    def _read_frame(cursor: ByteCursor, signals: FormatSignals, progressive: bool):
        if signals.width is not None:
            return
        cursor.skip(1)  # sample precision
        height, width = cursor.read_u16(), cursor.read_u16()
        n_components = cursor.read_u8()
        sampling = []
        for _ in range(n_components):
            cursor.skip(1)  # component id
            factors = cursor.read_u8()
            cursor.skip(1)  # quant table selector
            sampling.append((factors >> 4, factors & 0x0F))

        signals.width = width or None
        signals.height = height or None
        signals.progressive = progressive

        if len(sampling) < 3:
            return
        (yh, yv), (ch, cv) = sampling[0], sampling[1]
        if 0 in (yh, yv, ch, cv) or yh % ch or yv % cv:
            return
        signals.chroma_subsampling = _SUBSAMPLING.get((yh // ch, yv // cv))

    # ------------------------------------------------------------------
    # PNG
    # ------------------------------------------------------------------

    def _inspect_png(self, data: bytes) -> FormatSignals:
        signals = FormatSignals(container=ContainerFormat.PNG)
        handlers = {
            b"IHDR": self._read_ihdr,
            b"tEXt": self._read_text,
            b"zTXt": self._read_ztxt,
            b"iTXt": self._read_itxt,
            b"iCCP": self._read_iccp,
            b"pHYs": self._read_phys,
        }
        cursor = ByteCursor(data, len(PNG_SIGNATURE))
        seen_end = False
        chunks = 0

        try:
            while cursor.remaining >= 12 and chunks < self.MAX_PNG_CHUNKS:
                length = cursor.read_u32()
                chunk_type = cursor.read(4)
                if length > cursor.remaining - 4:
                    logger.warning(
                        f"PNG chunk {chunk_type!r} declares {length} bytes, "
                        f"{cursor.remaining} remain; stopping walk"
                    )
                    break
                body = cursor.read(length)
                if zlib.crc32(chunk_type + body) & 0xFFFFFFFF != cursor.read_u32():
                    signals.crc_errors += 1
                chunks += 1

                if chunk_type == b"IEND":
                    seen_end = True
                    break
                handler = handlers.get(chunk_type)
                if handler is None:
                    continue
                try:
                    handler(ByteCursor(body), signals)
                except TruncatedDataError as e:
                    logger.debug(f"Malformed PNG chunk {chunk_type!r}: {e}")
        except TruncatedDataError as e:
            logger.debug(f"PNG walk ended early: {e}")

        if not seen_end:
            signals.truncated = True
        if signals.crc_errors:
            logger.warning(f"PNG has {signals.crc_errors} chunk(s) with CRC mismatch")
        return signals

    @staticmethod
    def _read_ihdr(cursor: ByteCursor, signals: FormatSignals):
        width, height = cursor.read_u32(), cursor.read_u32()
        signals.width = width or None
        signals.height = height or None

    def _read_text(self, cursor: ByteCursor, signals: FormatSignals):
        key, _, value = cursor.read(cursor.remaining).partition(b"\x00")
        self._record_text(signals, key.decode("latin-1"), value.decode("latin-1"))

    def _read_ztxt(self, cursor: ByteCursor, signals: FormatSignals):
        key, _, rest = cursor.read(cursor.remaining).partition(b"\x00")
        if not rest:
            return
        text = self._inflate(rest[1:])
        if text is not None:
            self._record_text(signals, key.decode("latin-1"), text.decode("latin-1"))

    def _read_itxt(self, cursor: ByteCursor, signals: FormatSignals):
        key, _, rest = cursor.read(cursor.remaining).partition(b"\x00")
        if len(rest) < 2:
            return
        compressed = rest[0] == 1
        _lang, _, rest = rest[2:].partition(b"\x00")
        _translated, _, text = rest.partition(b"\x00")
        if compressed:
            text = self._inflate(text)
            if text is None:
                return
        self._record_text(signals, key.decode("latin-1"), text.decode("utf-8", "replace"))

    @staticmethod
    def _read_iccp(cursor: ByteCursor, signals: FormatSignals):
        name = cursor.read(cursor.remaining).partition(b"\x00")[0].decode("latin-1").strip()
        signals.has_icc = True
        signals.icc_profile_name = name or None

    @staticmethod
    def _read_phys(cursor: ByteCursor, signals: FormatSignals):
        x, y = cursor.read_u32(), cursor.read_u32()
        signals.pixel_unit = cursor.read_u8()
        signals.pixels_per_unit = (x, y)

    def _record_text(self, signals: FormatSignals, key: str, value: str):
        signals.text_chunks[key] = value
        value = value.strip("\x00 \r\n\t")
        if key == "Software" and value and signals.software is None:
            signals.software = value
        elif key in ("Comment", "Description") and value:
            signals.comments.append(value)
        elif key == "XML:com.adobe.xmp" and signals.xmp_creator_tool is None:
            signals.xmp_creator_tool = self._creator_tool(value.encode("utf-8"))

    def _inflate(self, compressed: bytes) -> Optional[bytes]:
        try:
            return zlib.decompressobj().decompress(compressed, self.TEXT_INFLATE_LIMIT)
        except zlib.error as e:
            logger.debug(f"Compressed PNG text failed to inflate: {e}")
            return None

    def _creator_tool(self, packet: bytes) -> Optional[str]:
        text = packet[:self.XMP_SCAN_LIMIT].decode("utf-8", "replace")
        match = _CREATOR_TOOL_RE.search(text)
        if match is None:
            return None
        tool = (match.group(1) or match.group(2) or "").strip()
        return tool or None
