from __future__ import annotations

"""
JPEG codec, 8 and 12 bit baseline/extended sequential Huffman.

- Both precisions decode through imagecodecs.jpeg8_decode, which raises on
  corrupt entropy data instead of filling the tile
- 8 bit tiles are encoded by OpenCV, 12 bit tiles by imagecodecs.jpeg8_encode

The frame header is parsed here first, so precision, coding process,
channel count and tile size are checked before any library call.
"""

from dataclasses import dataclass
from typing import Optional

import cv2
import imagecodecs
import numpy as np

from convert.codec import (
    Codec,
    CodecParams,
    ImageFormat,
    JPEG_SIG,
    JpegOptions,
    check_decoded,
    to_cv_order,
)
from convert.errors import CodecError
from convert.pyramid import RasterGeometry


# Start of frame markers
_SOF_SEQUENTIAL = {0xC0, 0xC1}
_SOF_PROGRESSIVE = {0xC2, 0xC6, 0xCA, 0xCE}
_SOF_ARITHMETIC = {0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}
_SOS = 0xDA
_EOI = 0xD9
_APP3 = 0xE3
# Markers without a length field
_STANDALONE = {0x01, 0xD8} | set(range(0xD0, 0xD8))

ZEN_TAG = b"Zen\x00"


@dataclass(frozen=True, slots=True)
class JpegHeader:
    precision: int
    width: int
    height: int
    components: int
    sof: int
    # Payload of the Zen APP3 segment after the tag, None when absent
    zen: Optional[bytes] = None


def read_header(data: bytes) -> JpegHeader:
    """Walk the marker segments up to the start of scan and return the frame header."""
    if not data.startswith(JPEG_SIG):
        raise CodecError("JPEG: missing start of image marker")
    pos = 2
    n = len(data)
    frame = None
    zen = None
    while True:
        if pos >= n or data[pos] != 0xFF:
            raise CodecError(f"JPEG: corrupt marker at byte {pos}")
        while pos < n and data[pos] == 0xFF:
            pos += 1
        if pos >= n:
            raise CodecError("JPEG: truncated header")
        marker = data[pos]
        pos += 1
        if marker in _STANDALONE:
            continue
        if marker == _EOI:
            raise CodecError("JPEG: end of image before start of scan")
        if pos + 2 > n:
            raise CodecError("JPEG: truncated header")
        length = int.from_bytes(data[pos : pos + 2], "big")
        if length < 2 or pos + length > n:
            raise CodecError(f"JPEG: bad segment length {length} for marker 0x{marker:02X}")
        body = data[pos + 2 : pos + length]

        if 0xC0 <= marker <= 0xCF and marker not in (0xC4, 0xC8, 0xCC):
            if len(body) < 6:
                raise CodecError("JPEG: truncated frame header")
            frame = (
                body[0],
                int.from_bytes(body[3:5], "big"),
                int.from_bytes(body[1:3], "big"),
                body[5],
                marker,
            )
        elif marker == _APP3 and body.startswith(ZEN_TAG):
            zen = body[len(ZEN_TAG):]
        elif marker == _SOS:
            break
        pos += length

    if frame is None:
        raise CodecError("JPEG: no frame header before start of scan")
    precision, width, height, components, sof = frame
    return JpegHeader(precision, width, height, components, sof, zen)


def check_header(header: JpegHeader, geometry: RasterGeometry) -> None:
    if header.sof in _SOF_ARITHMETIC:
        raise CodecError("JPEG: arithmetic coding is not supported")
    if header.sof in _SOF_PROGRESSIVE:
        raise CodecError("JPEG: progressive coding is not supported")
    if header.sof not in _SOF_SEQUENTIAL:
        raise CodecError(f"JPEG: coding process 0x{header.sof:02X} is not supported")
    if header.precision not in (8, 12):
        raise CodecError(f"JPEG: {header.precision} bit precision is not supported")
    if header.components not in (1, 3):
        raise CodecError(f"JPEG: {header.components} components, only 1 or 3 are supported")
    ps = geometry.page_size
    if (header.width, header.height) != (ps.x, ps.y):
        raise CodecError(f"JPEG: tile is {header.width}x{header.height}, expected {ps.x}x{ps.y}")
    if header.components != ps.c:
        raise CodecError(f"JPEG: {header.components} components, expected {ps.c}")
    itemsize = 1 if header.precision == 8 else 2
    if geometry.datatype.itemsize != itemsize:
        raise CodecError(
            f"JPEG: {header.precision} bit samples do not fit {geometry.datatype.name}"
        )


def apply_mask(pixels: np.ndarray, mask: Optional[np.ndarray] = None) -> int:
    """
    Force samples to agree with a validity mask, in place.

    Where the mask is set, zero samples become 1; elsewhere every sample
    becomes 0. A None mask means every pixel is valid. Returns the number of
    samples changed.
    """
    if mask is None:
        zeros = pixels == 0
        count = int(np.count_nonzero(zeros))
        pixels[zeros] = 1
        return count
    valid = mask.astype(bool)[:, :, np.newaxis] & np.ones(pixels.shape, dtype=bool)
    fix_up = valid & (pixels == 0)
    fix_down = ~valid & (pixels != 0)
    count = int(np.count_nonzero(fix_up) + np.count_nonzero(fix_down))
    pixels[fix_up] = 1
    pixels[fix_down] = 0
    return count


class JpegCodec(Codec):
    format = ImageFormat.JPEG
    signature = JPEG_SIG

    def supports(self, geometry: RasterGeometry) -> bool:
        # 1 byte samples encode as 8 bit, 2 byte samples as 12 bit
        return geometry.datatype.itemsize in (1, 2) and geometry.page_size.c in (1, 3)

    def _decode(self, params: CodecParams, geometry: RasterGeometry, data: bytes) -> np.ndarray:
        header = read_header(data)
        check_header(header, geometry)
        if b"\xff\xd9" not in data[-16:]:
            raise CodecError("JPEG: truncated bitstream, no end of image marker")

        # RGB order, uint8 or uint16 samples depending on precision
        img = imagecodecs.jpeg8_decode(data)
        pixels = check_decoded(img, geometry, "JPEG", bgr=False)
        pixels = np.array(pixels, copy=True)

        if header.zen is not None:
            if header.zen:
                # Only the "all pixels valid" form of the mask segment is handled
                raise CodecError("JPEG: compressed zero mask is not supported")
            params.modified = apply_mask(pixels) > 0
        return pixels

    def _encode(self, params: CodecParams, geometry: RasterGeometry, pixels: np.ndarray) -> bytes:
        opts = params.options if isinstance(params.options, JpegOptions) else JpegOptions()
        quality = int(min(100, max(0, opts.quality)))
        if geometry.datatype.itemsize == 1:
            ok, buf = cv2.imencode(".jpg", to_cv_order(pixels), [cv2.IMWRITE_JPEG_QUALITY, quality])
            if not ok:
                raise CodecError("JPEG: encoder failed")
            return buf.tobytes()
        # 12 bit
        samples = np.ascontiguousarray(pixels.view(np.uint16))
        if samples.shape[2] == 1:
            samples = samples[:, :, 0]
        return bytes(imagecodecs.jpeg8_encode(samples, level=quality, bitspersample=12))
