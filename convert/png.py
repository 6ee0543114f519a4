from __future__ import annotations

"""
PNG codec, 8 and 16 bit, gray/RGB/RGBA.

OpenCV decodes and encodes; tiles with a no data value are written by Pillow,
which emits the tRNS chunk itself.
"""

import io
import struct
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image

from convert.codec import (
    Codec,
    CodecParams,
    ImageFormat,
    PNG_SIG,
    PngOptions,
    check_decoded,
    to_cv_order,
)
from convert.errors import CodecError, CodecErrorKind
from convert.pyramid import RasterGeometry


# PNG color types
GRAY, RGB, GRAY_ALPHA, RGBA = 0, 2, 4, 6


@dataclass(frozen=True, slots=True)
class PngHeader:
    width: int
    height: int
    bit_depth: int
    color_type: int


def read_header(data: bytes) -> PngHeader:
    if not data.startswith(PNG_SIG):
        raise CodecError("PNG: bad signature")
    if len(data) < 33 or data[12:16] != b"IHDR":
        raise CodecError("PNG: missing IHDR chunk")
    width, height, bit_depth, color_type = struct.unpack(">IIBB", data[16:26])
    return PngHeader(width, height, bit_depth, color_type)


def png_options(geometry: RasterGeometry, quality: float = 6, nodata=None) -> PngOptions:
    """PNG parameters implied by a raster: bit depth from the data type, zlib level from quality."""
    level = int(min(9, max(0, quality)))
    return PngOptions(bit_depth=8 * geometry.datatype.itemsize, compression_level=level, nodata=nodata)


def supports_transparency(geometry: RasterGeometry) -> bool:
    """Gray of either depth and 8 bit RGB can carry a no data value; RGBA has alpha instead."""
    c = geometry.page_size.c
    return c == 1 or (c == 3 and geometry.datatype.itemsize == 1) or c == 4


def encode_transparent(pixels: np.ndarray, opts: PngOptions) -> bytes:
    """Write gray or RGB samples with `opts.nodata` marked transparent."""
    value = int(opts.nodata)
    if not 0 <= value < (1 << opts.bit_depth):
        raise CodecError(f"PNG: no data value {value} does not fit {opts.bit_depth} bits")
    if pixels.shape[2] == 1:
        im = Image.fromarray(np.ascontiguousarray(pixels[:, :, 0]))
        transparency = value
    elif pixels.shape[2] == 3 and opts.bit_depth == 8:
        im = Image.fromarray(np.ascontiguousarray(pixels))
        transparency = (value, value, value)
    else:
        raise CodecError(
            f"PNG: no data value needs gray or 8 bit RGB samples, got {pixels.shape[2]} x {opts.bit_depth} bit",
            CodecErrorKind.UNSUPPORTED_PIXEL_FORMAT,
        )
    buf = io.BytesIO()
    im.save(buf, "PNG", compress_level=opts.compression_level, transparency=transparency)
    return buf.getvalue()


class PngCodec(Codec):
    format = ImageFormat.PNG
    signature = PNG_SIG

    def supports(self, geometry: RasterGeometry) -> bool:
        return geometry.datatype.itemsize in (1, 2) and geometry.page_size.c in (1, 3, 4)

    def _decode(self, params: CodecParams, geometry: RasterGeometry, data: bytes) -> np.ndarray:
        header = read_header(data)
        ps = geometry.page_size
        if (header.width, header.height) != (ps.x, ps.y):
            raise CodecError(f"PNG: tile is {header.width}x{header.height}, expected {ps.x}x{ps.y}")
        if header.color_type == GRAY_ALPHA:
            raise CodecError("PNG: gray with alpha tiles are not supported")
        if header.bit_depth > 8 * geometry.datatype.itemsize:
            raise CodecError(f"PNG: {header.bit_depth} bit samples do not fit {geometry.datatype.name}")
        img = cv2.imdecode(
            np.frombuffer(data, dtype=np.uint8),
            cv2.IMREAD_UNCHANGED | cv2.IMREAD_IGNORE_ORIENTATION,
        )
        if img is not None and img.ndim == 3 and img.shape[2] == 4 and header.color_type != RGBA:
            # Alpha synthesized by OpenCV from a tRNS chunk
            img = img[:, :, :3]
        if img is not None and img.dtype.itemsize < geometry.datatype.itemsize:
            # Low bit depth into a wide raster
            img = img.astype(np.uint16)
        return check_decoded(img, geometry, "PNG")

    def _encode(self, params: CodecParams, geometry: RasterGeometry, pixels: np.ndarray) -> bytes:
        opts = params.options if isinstance(params.options, PngOptions) else png_options(geometry)
        if opts.bit_depth != 8 * pixels.dtype.itemsize:
            raise CodecError(
                f"PNG: {opts.bit_depth} bit depth requested for {geometry.datatype.name} samples",
                CodecErrorKind.UNSUPPORTED_PIXEL_FORMAT,
            )
        # PNG samples are unsigned
        unsigned = pixels.view(np.uint8 if pixels.dtype.itemsize == 1 else np.uint16)
        if opts.nodata is not None and unsigned.shape[2] != 4:
            return encode_transparent(unsigned, opts)
        ok, buf = cv2.imencode(".png", to_cv_order(unsigned), [cv2.IMWRITE_PNG_COMPRESSION, opts.compression_level])
        if not ok:
            raise CodecError("PNG: encoder failed")
        return buf.tobytes()
