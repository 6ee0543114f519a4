from __future__ import annotations

"""
Content identity tags (ETags) for converted tiles.

A tag is a 64 bit value rendered with `common.utils.tobase32`. The output tag
is the upstream tag XORed with the configured seed; when that leaves the seed
unchanged (no usable upstream tag) a value is folded from sampled bytes of
the compressed tile instead. This is not a hash: equal inputs give equal tags,
nothing more.
"""

from typing import Optional, Union

from common.utils import b32_digit, base32decode, tobase32


# Bytes sampled from the tile when folding
FOLD_SAMPLES = 32
FOLD_ROTATE = 7

_MASK64 = (1 << 64) - 1


def fold_bytes(seed: int, data: Union[bytes, memoryview]) -> int:
    """
    Shift-XOR `FOLD_SAMPLES` evenly spaced bytes of `data` into `seed`.

    The word rotates by `FOLD_ROTATE` bits per sample, odd so that the 32
    samples start at distinct bit offsets.
    """
    value = seed & _MASK64
    n = len(data)
    if n == 0:
        return value
    for i in range(FOLD_SAMPLES):
        b = data[(i * n) // FOLD_SAMPLES]
        value = (((value << FOLD_ROTATE) | (value >> (64 - FOLD_ROTATE))) & _MASK64) ^ b
    return value


def compute_etag(seed: int, source_etag: Optional[str], data: Union[bytes, memoryview]) -> str:
    value = seed & _MASK64
    if source_etag:
        value ^= base32decode(source_etag)[0]
    if value == seed & _MASK64:
        value = fold_bytes(seed, data)
    return tobase32(value)


def is_missing_tag(source_etag: Optional[str], empty_etag: Optional[str]) -> bool:
    """
    True if the upstream tag names the canonical missing tile: either it equals
    the configured missing-tile tag or it carries the missing-tile flag bit.
    """
    if not source_etag:
        return False
    if empty_etag and source_etag == empty_etag:
        return True
    # Only tags in our own 13 digit form carry the flag
    token = source_etag.strip().strip('"')
    if len(token) != 13 or any(b32_digit(c) < 0 for c in token):
        return False
    return base32decode(token)[1]


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Evaluate an If-None-Match header value against `etag`."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate.strip('"') == etag:
            return True
    return False
