from __future__ import annotations

"""
Piecewise linear lookup tables for data type conversion.

A LUT is a list of (input, output) control points with strictly increasing
inputs. Between points the mapping is linear; past the last point it is
flat. Slopes are precomputed once, when the LUT is built.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Sequence, Tuple

import numpy as np

from common.types import DataType, StorageBuffer
from convert.errors import ConfigurationError, ConversionError


_IN_TYPES = frozenset(DataType)

# Supported (input, output) pairs
CONVERSIONS: FrozenSet[Tuple[DataType, DataType]] = frozenset(
    [(src, DataType.BYTE) for src in _IN_TYPES - {DataType.BYTE}]
    + [(src, DataType.UINT16) for src in _IN_TYPES - {DataType.UINT16}]
    + [(src, DataType.INT16) for src in (DataType.BYTE, DataType.UINT16, DataType.INT32, DataType.FLOAT32)]
    + [(src, DataType.FLOAT32) for src in _IN_TYPES - {DataType.FLOAT32}]
)


def check_conversion(dt_in: DataType, dt_out: DataType) -> None:
    """Setup time check, raises ConfigurationError for unlisted pairs."""
    if (dt_in, dt_out) not in CONVERSIONS:
        raise ConfigurationError(f"conversion from {dt_in.name} to {dt_out.name} is not supported")


@dataclass(frozen=True)
class Lut:
    """
    Control points of a monotonic piecewise linear mapping.

    slopes[i] = (outputs[i+1] + 0.5 - outputs[i]) / (inputs[i+1] - inputs[i]),
    the last slope is 0 so the mapping saturates at the last output.
    """
    inputs: Tuple[float, ...]
    outputs: Tuple[float, ...]
    slopes: Tuple[float, ...]

    @classmethod
    def from_points(cls, points: Iterable[Tuple[float, float]]) -> "Lut":
        pts = [(float(i), float(o)) for i, o in points]
        if len(pts) < 2:
            raise ConfigurationError("a LUT needs at least two control points")
        for (a, _), (b, _) in zip(pts, pts[1:]):
            if b <= a:
                raise ConfigurationError(f"LUT input values must increase, got {a:g} then {b:g}")
        inputs = tuple(p[0] for p in pts)
        outputs = tuple(p[1] for p in pts)
        slopes = tuple(
            (outputs[i + 1] + 0.5 - outputs[i]) / (inputs[i + 1] - inputs[i])
            for i in range(len(pts) - 1)
        ) + (0.0,)
        return cls(inputs, outputs, slopes)

    @classmethod
    def parse(cls, text: str) -> "Lut":
        """Parse "in:out,in:out,..." with increasing inputs."""
        points = []
        for token in str(text).split(","):
            token = token.strip()
            parts = token.split(":")
            if len(parts) != 2:
                raise ConfigurationError(f"malformed LUT entry {token!r}, expected input:output")
            try:
                points.append((float(parts[0]), float(parts[1])))
            except ValueError:
                raise ConfigurationError(f"malformed LUT entry {token!r}") from None
        return cls.from_points(points)

    def __len__(self) -> int:
        return len(self.inputs)

    def apply(self, samples: np.ndarray) -> np.ndarray:
        """Map samples through the LUT, returns float64."""
        x = np.asarray(samples, dtype=np.float64)
        inputs = np.asarray(self.inputs)
        outputs = np.asarray(self.outputs)
        slopes = np.asarray(self.slopes)
        # Segment index: last control point <= sample, first segment below the range
        idx = np.clip(np.searchsorted(inputs, x, side="right") - 1, 0, len(inputs) - 1)
        base = inputs[idx]
        out = outputs[idx] + (x - base) * slopes[idx]
        # Exact control point hits skip the arithmetic
        return np.where(x == base, outputs[idx], out)


def _cast(values: np.ndarray, dt: DataType) -> np.ndarray:
    """Float64 -> destination type, truncating towards zero for integers."""
    if dt.is_float:
        return values.astype(dt.dtype)
    # Through int64 so out of range values wrap instead of being undefined
    return np.trunc(values).astype(np.int64).astype(dt.dtype)


def convert(lut: Lut, dt_in: DataType, dt_out: DataType, src: StorageBuffer) -> StorageBuffer:
    """
    Convert the samples in `src` from `dt_in` to `dt_out` through `lut`.

    When the output samples are not wider than the input and `src` is
    writable, the result is written over `src` and shares its storage;
    otherwise a new buffer is allocated.
    """
    if (dt_in, dt_out) not in CONVERSIONS:
        raise ConversionError(f"conversion from {dt_in.name} to {dt_out.name} is not supported")
    count = src.size // dt_in.itemsize
    samples = np.frombuffer(src.buffer, dtype=dt_in.dtype, count=count)
    result = _cast(lut.apply(samples), dt_out)

    if dt_out.itemsize <= dt_in.itemsize and src.writable:
        dst = np.frombuffer(src.buffer, dtype=dt_out.dtype, count=count)
        dst[:] = result
        return StorageBuffer(src.buffer, count * dt_out.itemsize)
    return StorageBuffer(bytearray(result.tobytes()))


def convert_points(lut: Lut, values: Sequence[float], dt_out: DataType) -> np.ndarray:
    """Convert a short list of values, without a StorageBuffer."""
    return _cast(lut.apply(np.asarray(values, dtype=np.float64)), dt_out)
