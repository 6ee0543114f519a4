from __future__ import annotations

"""
Upstream tile source over HTTP.

    svc = HttpTileSource("http://host/mrf/tiles", max_size=1 << 20)
    tile = svc.fetch(TileAddress(level=3, row=1, column=2), geometry)
    if tile:
        # tile.data -> compressed bytes
        # tile.etag -> upstream ETag without quotes, or None
        pass

Every failure (connection, timeout, non-200 status, oversize body) is logged
and reported as None, which the pipeline treats as an absent tile.
"""

from dataclasses import dataclass
from typing import Optional

import requests

from common.logging_setup import get_logger
from common.types import TileAddress
from common.utils import MAX_READ_SIZE
from convert.errors import UpstreamError
from convert.pyramid import RasterGeometry


log = get_logger("convert.source")

USER_AGENT = "tileconv"
CHUNK_SIZE = 64 * 1024


@dataclass
class SourceTile:
    data: bytes
    etag: Optional[str] = None


class HttpTileSource:
    def __init__(
        self,
        source: str,
        postfix: str = "",
        *,
        timeout: float = 5.0,
        max_size: int = MAX_READ_SIZE,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            source: URL prefix, the tile address is appended as /[M/]L/R/C
            postfix: appended after the tile address (e.g. a query string)
            timeout: seconds per request
            max_size: larger tiles are rejected
            session: optional requests.Session for connection reuse
        """
        self.source = source.rstrip("/")
        self.postfix = postfix
        self.timeout = timeout
        self.max_size = max_size
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT

    def build_url(self, address: TileAddress, geometry: RasterGeometry) -> str:
        """The extra axis is only part of the path for pyramids with z > 1."""
        parts = [str(address.level), str(address.row), str(address.column)]
        if geometry.size.z > 1:
            parts.insert(0, str(address.extra))
        return f"{self.source}/{'/'.join(parts)}{self.postfix}"

    def get(self, address: TileAddress, geometry: RasterGeometry) -> SourceTile:
        """Fetch a tile, raising UpstreamError on any failure."""
        url = self.build_url(address, geometry)
        try:
            r = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise UpstreamError(f"{url}: {e}") from e
        try:
            if r.status_code != 200:
                raise UpstreamError(f"{url}: HTTP {r.status_code}")
            data = self._read_body(url, r)
        finally:
            r.close()
        if not data:
            raise UpstreamError(f"{url}: empty body")
        etag = r.headers.get("ETag")
        if etag:
            etag = etag.strip()
            if etag.startswith("W/"):
                etag = etag[2:]
            etag = etag.strip('"') or None
        return SourceTile(data=data, etag=etag)

    def _read_body(self, url: str, r: requests.Response) -> bytes:
        """Read at most `max_size` bytes, giving up as soon as the body is longer."""
        too_big = UpstreamError(f"{url}: body exceeds the {self.max_size} byte limit")
        length = r.headers.get("Content-Length", "")
        if length.isdigit() and int(length) > self.max_size:
            raise too_big
        buf = bytearray()
        try:
            for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                buf += chunk
                if len(buf) > self.max_size:
                    raise too_big
        except requests.RequestException as e:
            raise UpstreamError(f"{url}: {e}") from e
        return bytes(buf)

    def fetch(self, address: TileAddress, geometry: RasterGeometry) -> Optional[SourceTile]:
        """Like `get`, but failures are logged and returned as None."""
        try:
            return self.get(address, geometry)
        except UpstreamError as e:
            log.warning("Upstream tile fetch failed: %s", e, extra={"extra": address.to_meta()})
            return None
