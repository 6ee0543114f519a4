from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

import numpy as np


BufferLike = Union[bytes, bytearray, memoryview]


class DataType(IntEnum):
    """Pixel sample types, numbered the way GDAL numbers them."""
    BYTE = 1
    UINT16 = 2
    INT16 = 3
    UINT32 = 4
    INT32 = 5
    FLOAT32 = 6
    FLOAT64 = 7

    @classmethod
    def from_name(cls, name: Optional[str]) -> "DataType":
        """
        Case-insensitive lookup. A missing name means Byte.
        Accepts the aliases Char, Int (Int16), Float (Float32), Double (Float64).
        """
        if name is None:
            return cls.BYTE
        key = str(name).strip().upper()
        try:
            return _DT_NAMES[key]
        except KeyError:
            raise ValueError(f"Unknown data type {name!r}") from None

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_DT_NUMPY[self])

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    @property
    def is_float(self) -> bool:
        return self in (DataType.FLOAT32, DataType.FLOAT64)


_DT_NAMES = {
    "BYTE": DataType.BYTE,
    "CHAR": DataType.BYTE,
    "UINT16": DataType.UINT16,
    "INT16": DataType.INT16,
    "SHORT": DataType.INT16,
    "INT": DataType.INT16,
    "UINT32": DataType.UINT32,
    "INT32": DataType.INT32,
    "FLOAT32": DataType.FLOAT32,
    "FLOAT": DataType.FLOAT32,
    "FLOAT64": DataType.FLOAT64,
    "DOUBLE": DataType.FLOAT64,
}

_DT_NUMPY = {
    DataType.BYTE: np.uint8,
    DataType.UINT16: np.uint16,
    DataType.INT16: np.int16,
    DataType.UINT32: np.uint32,
    DataType.INT32: np.int32,
    DataType.FLOAT32: np.float32,
    DataType.FLOAT64: np.float64,
}


@dataclass(frozen=True, slots=True)
class Size:
    """Raster or page extent: columns, rows, extra axis (z) and channels."""
    x: int
    y: int
    z: int = 1
    c: int = 3

    def __post_init__(self) -> None:
        if min(self.x, self.y, self.z, self.c) <= 0:
            raise ValueError(f"size components must be positive, got {self}")


@dataclass(frozen=True, slots=True)
class BoundingBox:
    xmin: float = 0.0
    ymin: float = 0.0
    xmax: float = 1.0
    ymax: float = 1.0

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin


@dataclass(frozen=True, slots=True)
class TileAddress:
    """
    Logical tile address, in the skip-adjusted numbering of one pyramid.

    Attributes:
        level: 0 is the coarsest visible level.
        row, column: tile indices within the level grid.
        extra: index along the z axis, 0 for plain 2D pyramids.
    """
    level: int
    row: int
    column: int
    extra: int = 0

    def to_meta(self) -> dict:
        return {"level": self.level, "row": self.row, "column": self.column, "extra": self.extra}


class StorageBuffer:
    """
    View over a contiguous byte region with a logical length.

    The logical `size` can be smaller than the region (`capacity`), so an
    encoder can under-fill a buffer it was handed. The region itself is never
    resized or copied.
    """

    __slots__ = ("buffer", "size")

    def __init__(self, buffer: BufferLike, size: Optional[int] = None):
        view = memoryview(buffer)
        if view.ndim != 1 or view.itemsize != 1:
            view = view.cast("B")
        if size is None:
            size = view.nbytes
        if not 0 <= size <= view.nbytes:
            raise ValueError(f"size {size} outside buffer capacity {view.nbytes}")
        self.buffer = view
        self.size = size

    @classmethod
    def allocate(cls, capacity: int) -> "StorageBuffer":
        """Zero-filled writable buffer, logical length equal to its capacity."""
        return cls(bytearray(capacity))

    @property
    def capacity(self) -> int:
        return self.buffer.nbytes

    @property
    def writable(self) -> bool:
        return not self.buffer.readonly

    @property
    def data(self) -> memoryview:
        """The logically valid bytes."""
        return self.buffer[: self.size]

    def tobytes(self) -> bytes:
        return self.data.tobytes()

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return f"StorageBuffer(size={self.size}, capacity={self.capacity})"
