from __future__ import annotations

"""
Tiled pyramid geometry.

A raster of `size` pixels cut in `page_size` tiles forms a pyramid whose
levels halve the tile grid until a single tile remains. Levels are stored
top-down: index 0 is the single-tile level, the last index is full
resolution. The top `skip` levels exist in the level table but are not part
of the logical (externally visible) level numbering.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from common.types import BoundingBox, DataType, Size, TileAddress
from convert.errors import InvalidGeometry


@dataclass(frozen=True, slots=True)
class Level:
    """One pyramid level: units per pixel and tile grid extent."""
    rx: float
    ry: float
    width: int   # tiles wide
    height: int  # tiles high


def level_count(width: int, height: int) -> int:
    """2 + floor(log2(max(w, h) - 1)) levels, 1 for a single-tile base."""
    m = max(width, height)
    if m <= 1:
        return 1
    return 1 + (m - 1).bit_length()


def build_levels(
    size: Size,
    page_size: Size,
    skip: int = 0,
    bbox: BoundingBox = BoundingBox(),
) -> Tuple[Level, ...]:
    """
    Compute the level table for a raster.

    Raises InvalidGeometry if page_size.z != 1, if the pyramid does not reduce
    to a single tile, or if skip leaves no visible level.
    """
    if page_size.z != 1:
        raise InvalidGeometry(f"page size z must be 1, got {page_size.z}")
    if skip < 0:
        raise InvalidGeometry(f"skipped levels must be >= 0, got {skip}")

    w = 1 + (size.x - 1) // page_size.x
    h = 1 + (size.y - 1) // page_size.y
    rx = bbox.width / size.x
    ry = bbox.height / size.y
    n = level_count(w, h)

    levels = []
    for _ in range(n):
        levels.append(Level(rx=rx, ry=ry, width=w, height=h))
        w = 1 + (w - 1) // 2
        h = 1 + (h - 1) // 2
        rx *= 2
        ry *= 2
    levels.reverse()

    if levels[0].width * levels[0].height != 1:
        raise InvalidGeometry(f"top level has {levels[0].width}x{levels[0].height} tiles")
    if skip >= n:
        raise InvalidGeometry(f"skipped levels ({skip}) must be fewer than the {n} levels")
    return tuple(levels)


@dataclass(frozen=True)
class RasterGeometry:
    """
    Shape of one tiled pyramid. Immutable, shared by all requests.

    Attributes:
        size: full resolution extent and channel count.
        page_size: tile extent, z must be 1.
        datatype: sample type of the raw pixels.
        skip: number of top levels hidden from the logical addressing.
        bbox, projection: georeferencing, informational except for resolution.
        levels: derived level table, index 0 is the single-tile level.
    """
    size: Size
    page_size: Size
    datatype: DataType = DataType.BYTE
    skip: int = 0
    bbox: BoundingBox = BoundingBox()
    projection: str = "WM"
    levels: Tuple[Level, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "levels", build_levels(self.size, self.page_size, self.skip, self.bbox))

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def visible_levels(self) -> int:
        return len(self.levels) - self.skip

    @property
    def channels(self) -> int:
        return self.page_size.c

    @property
    def line_stride(self) -> int:
        """Bytes in one tight row of a tile."""
        return self.page_size.x * self.page_size.c * self.datatype.itemsize

    @property
    def tile_bytes(self) -> int:
        """Bytes of one raw tile at tight stride."""
        return self.line_stride * self.page_size.y

    def level(self, logical_level: int) -> Optional[Level]:
        """Level entry for a logical level number, None if outside the pyramid."""
        idx = logical_level + self.skip
        if logical_level < 0 or idx >= len(self.levels):
            return None
        return self.levels[idx]

    def contains(self, address: TileAddress) -> bool:
        """True if the address names an existing tile of this pyramid."""
        lvl = self.level(address.level)
        if lvl is None:
            return False
        if not 0 <= address.extra < self.size.z:
            return False
        return 0 <= address.row < lvl.height and 0 <= address.column < lvl.width


def translate(address: TileAddress, src: RasterGeometry, dst: RasterGeometry) -> Optional[TileAddress]:
    """
    Map a logical address of `src` into the logical numbering of `dst`.

    The level shifts by the difference of the skip counts; row, column and
    extra axis carry over. Returns None when the result is outside `dst`.
    """
    moved = TileAddress(
        level=address.level + src.skip - dst.skip,
        row=address.row,
        column=address.column,
        extra=address.extra,
    )
    if not dst.contains(moved):
        return None
    return moved
