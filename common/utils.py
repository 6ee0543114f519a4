from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union

from common.types import BoundingBox, Size


# Largest file accepted as a missing-tile payload
MAX_READ_SIZE = 1024 * 1024

_B32_DIGITS = "0123456789abcdefghijklmnopqrstuv"
_MASK64 = (1 << 64) - 1


def b32_digit(ch: str) -> int:
    """Value of one base-32 digit, -1 if it is not one."""
    c = ch.lower()
    if "0" <= c <= "9":
        return ord(c) - ord("0")
    if "a" <= c <= "v":
        return ord(c) - ord("a") + 10
    return -1


def tobase32(value: int, flag: bool = False) -> str:
    """
    Render a 64 bit value as a 13 character base-32 token.

    The first character holds the low four bits of the value and the flag
    bit; the following twelve hold five bits each, least significant first.
    """
    value &= _MASK64
    out = [_B32_DIGITS[((value & 0xF) << 1) | (1 if flag else 0)]]
    value >>= 4
    for _ in range(12):
        out.append(_B32_DIGITS[value & 0x1F])
        value >>= 5
    return "".join(out)


def base32decode(token: str) -> Tuple[int, bool]:
    """
    Inverse of `tobase32`. Returns (value, flag).

    Leading quotes (as found in ETag headers) and a weak validator prefix are
    skipped; decoding stops at the first character that is not a digit.
    """
    s = token.strip()
    if s.startswith("W/"):
        s = s[2:]
    s = s.lstrip('"')
    if not s or b32_digit(s[0]) < 0:
        return 0, False
    first = b32_digit(s[0])
    flag = bool(first & 1)
    value = first >> 1
    shift = 4
    for ch in s[1:13]:
        v = b32_digit(ch)
        if v < 0:
            break
        value |= v << shift
        shift += 5
    return value & _MASK64, flag


def parse_size(text: Union[str, list, tuple], *, default_c: int = 3) -> Size:
    """
    Parse "x y", "x y z" or "x y z c" (whitespace or comma separated).
    Missing z defaults to 1, missing c to `default_c`.
    """
    if isinstance(text, (list, tuple)):
        parts = [str(p) for p in text]
    else:
        parts = str(text).replace(",", " ").split()
    if not 2 <= len(parts) <= 4:
        raise ValueError(f"expected 2 to 4 integers, got {text!r}")
    try:
        vals = [int(p, 0) for p in parts]
    except ValueError:
        raise ValueError(f"incorrect size format {text!r}") from None
    x, y = vals[0], vals[1]
    z = vals[2] if len(vals) > 2 else 1
    c = vals[3] if len(vals) > 3 else default_c
    return Size(x, y, z, c)


def parse_bbox(text: Union[str, list, tuple]) -> BoundingBox:
    """Four comma separated numbers, xmin,ymin,xmax,ymax."""
    parts = list(text) if isinstance(text, (list, tuple)) else str(text).split(",")
    if len(parts) != 4:
        raise ValueError(f"expecting four comma separated numbers, got {text!r}")
    try:
        xmin, ymin, xmax, ymax = (float(p) for p in parts)
    except ValueError:
        raise ValueError(f"expecting four comma separated numbers, got {text!r}") from None
    return BoundingBox(xmin, ymin, xmax, ymax)


def read_file(line: str, base_dir: Optional[Path] = None, max_size: int = MAX_READ_SIZE) -> bytes:
    """
    Read a file described by "[size [offset]] path".

    Without a size the whole file is read. The result may not exceed
    `max_size` bytes.
    """
    tokens = line.split()
    if not tokens:
        raise ValueError("empty file specification")
    *nums, name = tokens
    if len(nums) > 2:
        raise ValueError(f"expected '[size [offset]] path', got {line!r}")
    try:
        size = int(nums[0]) if nums else None
        offset = int(nums[1]) if len(nums) > 1 else 0
    except ValueError:
        raise ValueError(f"size and offset must be integers in {line!r}") from None

    path = Path(name)
    if base_dir is not None and not path.is_absolute():
        path = Path(base_dir) / path
    if size is None:
        size = path.stat().st_size - offset
    if size < 0 or offset < 0:
        raise ValueError(f"negative size or offset in {line!r}")
    if size > max_size:
        raise ValueError(f"{path} is larger than {max_size} bytes")

    with path.open("rb") as f:
        f.seek(offset)
        data = f.read(size)
    if len(data) != size:
        raise ValueError(f"short read from {path}: {len(data)} of {size} bytes")
    return data
