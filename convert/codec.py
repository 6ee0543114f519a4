from __future__ import annotations

"""
Codec abstraction.

Every image format implements `decode` (compressed bitstream -> strided raw
pixels) and `encode` (the reverse). Failures of the underlying libraries never
leave this layer as anything but `CodecError`; the first diagnostic is also
stored in `CodecParams.error_message`.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

import cv2
import numpy as np

from common.logging_setup import get_logger
from common.types import StorageBuffer
from convert.errors import CodecError, CodecErrorKind
from convert.pyramid import RasterGeometry


log = get_logger("convert.codec")

MAX_MESSAGE = 1024

JPEG_SIG = b"\xff\xd8\xff"
PNG_SIG = b"\x89PNG\r\n\x1a\n"


class ImageFormat(str, Enum):
    JPEG = "image/jpeg"
    PNG = "image/png"

    @property
    def mime_type(self) -> str:
        return self.value


# -------------------------
# Per-call parameters
# -------------------------
@dataclass
class JpegOptions:
    quality: int = 75


@dataclass
class PngOptions:
    # 8 or 16
    bit_depth: int = 8
    # 0 to 9
    compression_level: int = 6
    # Sample value written as the tRNS transparent color, None for no tRNS
    nodata: Optional[int] = None


FormatOptions = Union[JpegOptions, PngOptions]


@dataclass
class CodecParams:
    """
    Shared decode/encode parameters plus a format specific `options` payload.

    line_stride: bytes per raw row, 0 means tight rows.
    error_message: first diagnostic of a failed call.
    modified: set by a decoder that altered samples beyond plain decoding.
    """
    line_stride: int = 0
    error_message: str = ""
    modified: bool = False
    options: Optional[FormatOptions] = field(default=None)

    def stride_for(self, geometry: RasterGeometry) -> int:
        return self.line_stride or geometry.line_stride

    def set_error(self, message: str) -> None:
        if not self.error_message:
            self.error_message = message[:MAX_MESSAGE]


# -------------------------
# Raw buffer helpers
# -------------------------
def raw_view(buf: StorageBuffer, geometry: RasterGeometry, line_stride: int) -> np.ndarray:
    """
    (rows, cols, channels) ndarray over a raw buffer, honoring the line stride.
    Writable if the underlying buffer is.
    """
    ps = geometry.page_size
    dt = geometry.datatype.dtype
    pixel = ps.c * dt.itemsize
    if line_stride < ps.x * pixel:
        raise CodecError(
            f"line stride {line_stride} smaller than a row of {ps.x * pixel} bytes",
            CodecErrorKind.UNSUPPORTED_PIXEL_FORMAT,
        )
    needed = line_stride * (ps.y - 1) + ps.x * pixel
    if buf.capacity < needed:
        raise CodecError(
            f"raw buffer holds {buf.capacity} bytes, tile needs {needed}",
            CodecErrorKind.UNSUPPORTED_PIXEL_FORMAT,
        )
    return np.ndarray(
        shape=(ps.y, ps.x, ps.c),
        dtype=dt,
        buffer=buf.buffer,
        strides=(line_stride, pixel, dt.itemsize),
    )


def to_rgb_order(img: np.ndarray) -> np.ndarray:
    """OpenCV channel order (BGR/BGRA) to RGB/RGBA; gray passes through as (h, w, 1)."""
    if img.ndim == 2:
        return img[:, :, np.newaxis]
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    return img


def to_cv_order(img: np.ndarray) -> np.ndarray:
    """Inverse of `to_rgb_order`, always returns a contiguous array."""
    c = img.shape[2]
    if c == 1:
        return np.ascontiguousarray(img[:, :, 0])
    if c == 3:
        return cv2.cvtColor(np.ascontiguousarray(img), cv2.COLOR_RGB2BGR)
    if c == 4:
        return cv2.cvtColor(np.ascontiguousarray(img), cv2.COLOR_RGBA2BGRA)
    return np.ascontiguousarray(img)


def store(encoded: Union[bytes, np.ndarray], dst: Optional[StorageBuffer]) -> StorageBuffer:
    """Copy an encoded bitstream into `dst`, or wrap it when no buffer is given."""
    data = encoded.tobytes() if isinstance(encoded, np.ndarray) else bytes(encoded)
    if dst is None:
        return StorageBuffer(bytearray(data))
    if len(data) > dst.capacity:
        raise CodecError(
            f"encoded tile needs {len(data)} bytes, output buffer holds {dst.capacity}",
            CodecErrorKind.UNSUPPORTED_PIXEL_FORMAT,
        )
    dst.buffer[: len(data)] = data
    return StorageBuffer(dst.buffer, len(data))


@contextmanager
def library_boundary(params: CodecParams, fmt: ImageFormat) -> Iterator[None]:
    """
    Translate anything the image libraries raise into CodecError.

    Native codec aborts surface in Python as cv2.error, RuntimeError (the
    imagecodecs error classes), OSError (Pillow), ValueError or MemoryError;
    none of them may propagate further.
    """
    try:
        yield
    except CodecError as e:
        params.set_error(e.message)
        raise
    except (cv2.error, RuntimeError, OSError, ValueError, MemoryError) as e:
        first = (str(e).strip().splitlines() or [type(e).__name__])[0]
        message = f"{fmt.name}: {first}"
        params.set_error(message)
        log.debug("codec library failure", extra={"extra": {"format": fmt.name, "error": type(e).__name__}})
        raise CodecError(message) from e


# -------------------------
# Codec contract
# -------------------------
class Codec(ABC):
    format: ImageFormat
    signature: bytes

    @property
    def mime_type(self) -> str:
        return self.format.mime_type

    def matches(self, data: Union[bytes, memoryview]) -> bool:
        return bytes(data[: len(self.signature)]) == self.signature

    @abstractmethod
    def supports(self, geometry: RasterGeometry) -> bool:
        """True if tiles of this geometry can be encoded."""

    def decode(
        self,
        params: CodecParams,
        geometry: RasterGeometry,
        src: StorageBuffer,
        dst: Optional[StorageBuffer] = None,
    ) -> StorageBuffer:
        """
        Decode `src` into `dst` (allocated when None) at `params.line_stride`.
        Nothing is written to `dst` unless the whole tile decoded.
        """
        stride = params.stride_for(geometry)
        with library_boundary(params, self.format):
            pixels = self._decode(params, geometry, bytes(src.data))
            if dst is None:
                dst = StorageBuffer.allocate(stride * geometry.page_size.y)
            raw_view(dst, geometry, stride)[...] = pixels
        return dst

    def encode(
        self,
        params: CodecParams,
        geometry: RasterGeometry,
        raw: StorageBuffer,
        dst: Optional[StorageBuffer] = None,
    ) -> StorageBuffer:
        """
        Encode the raw tile in `raw`. The returned buffer shares `dst` storage
        when given; its size is the number of bytes written.
        """
        with library_boundary(params, self.format):
            if not self.supports(geometry):
                raise CodecError(
                    f"{self.format.name} cannot encode {geometry.page_size.c} x "
                    f"{geometry.datatype.name} pixels",
                    CodecErrorKind.UNSUPPORTED_PIXEL_FORMAT,
                )
            pixels = raw_view(raw, geometry, params.stride_for(geometry))
            return store(self._encode(params, geometry, pixels), dst)

    @abstractmethod
    def _decode(self, params: CodecParams, geometry: RasterGeometry, data: bytes) -> np.ndarray:
        """Return a (rows, cols, channels) array of the geometry's data type."""

    @abstractmethod
    def _encode(self, params: CodecParams, geometry: RasterGeometry, pixels: np.ndarray) -> bytes:
        """Return the compressed bitstream."""


def check_decoded(
    img: Optional[np.ndarray], geometry: RasterGeometry, what: str, *, bgr: bool = True
) -> np.ndarray:
    """
    Validate a decoded image against the expected tile, return it as a
    (rows, cols, channels) array in RGB order. `bgr` tells whether the
    decoder produced OpenCV channel order.
    """
    if img is None:
        raise CodecError(f"{what}: decoder rejected the bitstream")
    ps = geometry.page_size
    if img.shape[0] != ps.y or img.shape[1] != ps.x:
        raise CodecError(f"{what}: tile is {img.shape[1]}x{img.shape[0]}, expected {ps.x}x{ps.y}")
    img = to_rgb_order(img) if bgr else (img[:, :, np.newaxis] if img.ndim == 2 else img)
    if img.shape[2] != ps.c:
        raise CodecError(f"{what}: {img.shape[2]} channels, expected {ps.c}")
    if img.dtype.itemsize != geometry.datatype.itemsize:
        raise CodecError(f"{what}: {img.dtype} samples, expected {geometry.datatype.name}")
    # Same width samples, reinterpret (e.g. uint16 bitstream for Int16 rasters)
    return img.view(geometry.datatype.dtype)


# -------------------------
# Registry
# -------------------------
class CodecRegistry:
    """
    Immutable format -> codec mapping, built once at startup and handed to
    the pipeline.
    """

    _ALIASES = {
        "jpeg": ImageFormat.JPEG,
        "jpg": ImageFormat.JPEG,
        "image/jpeg": ImageFormat.JPEG,
        "png": ImageFormat.PNG,
        "image/png": ImageFormat.PNG,
    }

    def __init__(self, codecs: Mapping[ImageFormat, Codec]):
        self._codecs: Mapping[ImageFormat, Codec] = MappingProxyType(dict(codecs))

    @classmethod
    def default(cls) -> "CodecRegistry":
        from convert.jpeg import JpegCodec
        from convert.png import PngCodec

        return cls({ImageFormat.JPEG: JpegCodec(), ImageFormat.PNG: PngCodec()})

    @classmethod
    def format_from_name(cls, name: str) -> ImageFormat:
        try:
            return cls._ALIASES[str(name).strip().lower()]
        except KeyError:
            raise ValueError(f"Unsupported image format {name!r}") from None

    def __getitem__(self, fmt: ImageFormat) -> Codec:
        return self._codecs[fmt]

    def __contains__(self, fmt: object) -> bool:
        return fmt in self._codecs

    @property
    def formats(self) -> Mapping[ImageFormat, Codec]:
        return self._codecs

    def sniff(self, data: Union[bytes, memoryview]) -> Optional[Codec]:
        """Codec whose signature starts `data`, None for unknown bitstreams."""
        for codec in self._codecs.values():
            if codec.matches(data):
                return codec
        return None
