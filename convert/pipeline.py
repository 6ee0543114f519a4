from __future__ import annotations

"""
Tile pipeline: one request in, one TileResult out.

    address parse -> address check -> upstream fetch -> identity tag
      -> format sniff -> decode -> [data type conversion]
      -> conditional check -> [encode] -> result

Any address problem or upstream failure ends in the missing tile response.
Per-request errors never escape `handle`; they become one of the outcomes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from common.logging_setup import get_logger
from common.types import StorageBuffer, TileAddress
from convert.codec import CodecParams, CodecRegistry, JpegOptions, ImageFormat
from convert.config import ConvertConfig
from convert.errors import CodecError, ConversionError, InputError
from convert.etag import compute_etag, etag_matches, is_missing_tag
from convert.lut import convert
from convert.png import png_options
from convert.pyramid import RasterGeometry, translate
from convert.source import HttpTileSource, SourceTile


log = get_logger("convert.pipeline")


class Outcome(str, Enum):
    OK = "ok"
    MISSING = "missing"
    NOT_FOUND = "not_found"
    NOT_MODIFIED = "not_modified"
    SERVER_ERROR = "server_error"


@dataclass
class TileResult:
    outcome: Outcome
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    etag: Optional[str] = None


class TileSource(Protocol):
    def fetch(self, address: TileAddress, geometry: RasterGeometry) -> Optional[SourceTile]:
        ...


def parse_address(path: str, geometry: RasterGeometry) -> TileAddress:
    """
    Pull (level, row, column) and, for pyramids with z > 1, the extra axis
    from the tail of a request path: .../[M/]L/R/C. Raises InputError when a
    component is missing, non-numeric or negative.
    """
    parts = [p for p in path.split("?")[0].split("/") if p]
    want = 4 if geometry.size.z > 1 else 3
    if len(parts) < want:
        raise InputError(f"expected {want} address components in {path!r}")
    tail = parts[-want:]
    if not all(p.isascii() and p.isdigit() for p in tail):
        raise InputError(f"non-numeric or negative address component in {path!r}")
    vals = [int(p) for p in tail]
    if want == 4:
        extra, level, row, column = vals
    else:
        extra, (level, row, column) = 0, vals
    return TileAddress(level=level, row=row, column=column, extra=extra)


class TilePipeline:
    """
    Converts tiles of the input pyramid into tiles of the output pyramid.
    Holds only immutable configuration; safe to share between requests.
    """

    def __init__(
        self,
        config: ConvertConfig,
        source: Optional[TileSource] = None,
        codecs: Optional[CodecRegistry] = None,
    ):
        self.config = config
        self.codecs = codecs or CodecRegistry.default()
        self.source = source or HttpTileSource(
            config.source,
            config.postfix,
            timeout=config.timeout,
            max_size=config.max_input_size,
        )
        self.out_codec = self.codecs[config.format]

    # -------- public API --------

    def accepts(self, path: str) -> bool:
        """True if a guard pattern matches the path (always, with no patterns)."""
        if not self.config.patterns:
            return True
        return any(p.search(path) for p in self.config.patterns)

    def handle(self, path: str, if_none_match: Optional[str] = None) -> TileResult:
        try:
            address = parse_address(path, self.config.output)
        except InputError as e:
            log.debug("Unparseable tile address: %s", e)
            return self.missing(if_none_match)
        return self.handle_address(address, if_none_match)

    def handle_address(self, address: TileAddress, if_none_match: Optional[str] = None) -> TileResult:
        cfg = self.config
        if not cfg.output.contains(address):
            log.debug("Tile outside the output pyramid", extra={"extra": address.to_meta()})
            return self.missing(if_none_match)
        in_address = translate(address, cfg.output, cfg.input)
        if in_address is None:
            log.debug("Tile outside the input pyramid", extra={"extra": address.to_meta()})
            return self.missing(if_none_match)

        tile = self.source.fetch(in_address, cfg.input)
        if tile is None:
            return self.missing(if_none_match)
        if is_missing_tag(tile.etag, cfg.empty.etag if cfg.empty else None):
            return self.missing(if_none_match)
        etag = compute_etag(cfg.seed, tile.etag, tile.data)

        codec = self.codecs.sniff(tile.data)
        if codec is None:
            log.error(
                "Upstream tile has an unknown format",
                extra={"extra": {**address.to_meta(), "signature": tile.data[:4].hex()}},
            )
            return TileResult(Outcome.SERVER_ERROR)

        params = CodecParams(line_stride=cfg.input.line_stride)
        try:
            raw = codec.decode(params, cfg.input, StorageBuffer(tile.data))
        except CodecError:
            log.warning(
                "Tile decode failed",
                extra={"extra": {**address.to_meta(), "error": params.error_message}},
            )
            return TileResult(Outcome.NOT_FOUND)

        if cfg.input.datatype != cfg.output.datatype:
            try:
                raw = convert(cfg.lut, cfg.input.datatype, cfg.output.datatype, raw)
            except ConversionError as e:
                log.error("Data type conversion failed: %s", e, extra={"extra": address.to_meta()})
                return TileResult(Outcome.SERVER_ERROR)

        if etag_matches(if_none_match, etag):
            return TileResult(Outcome.NOT_MODIFIED, etag=etag)

        if self.is_passthrough(codec.format) and not params.modified:
            return TileResult(Outcome.OK, data=tile.data, mime_type=codec.mime_type, etag=etag)

        out_params = CodecParams(line_stride=cfg.output.line_stride, options=self._output_options())
        dst = StorageBuffer.allocate(2 * cfg.output.tile_bytes + 65536)
        try:
            out = self.out_codec.encode(out_params, cfg.output, raw, dst)
        except CodecError:
            log.error(
                "Tile encode failed",
                extra={"extra": {**address.to_meta(), "error": out_params.error_message}},
            )
            return TileResult(Outcome.SERVER_ERROR)
        return TileResult(Outcome.OK, data=out.tobytes(), mime_type=self.out_codec.mime_type, etag=etag)

    def missing(self, if_none_match: Optional[str] = None) -> TileResult:
        """The configured missing tile, or not found when there is none."""
        empty = self.config.empty
        if empty is None:
            return TileResult(Outcome.NOT_FOUND)
        if etag_matches(if_none_match, empty.etag):
            return TileResult(Outcome.NOT_MODIFIED, etag=empty.etag)
        return TileResult(Outcome.MISSING, data=empty.data, mime_type=empty.mime_type, etag=empty.etag)

    def is_passthrough(self, source_format: ImageFormat) -> bool:
        """Same format, same data type: the upstream bytes are the answer."""
        cfg = self.config
        return (
            source_format == cfg.format
            and cfg.input.datatype == cfg.output.datatype
            and cfg.nodata is None
        )

    # -------- internals --------

    def _output_options(self):
        cfg = self.config
        if cfg.format == ImageFormat.PNG:
            return png_options(cfg.output, cfg.quality, cfg.nodata)
        return JpegOptions(quality=int(cfg.quality))
