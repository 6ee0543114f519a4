from __future__ import annotations

"""
Configuration for one conversion endpoint.

Example (config/convert.yaml):

    logging:
      level: INFO
    convert:
      regexp: ["^/tiles/"]
      source: http://localhost:8080/mrf/tiles
      input:  {size: "8192 8192 1 1", page_size: "512 512 1 1", datatype: UInt16}
      output: {size: "8192 8192 1 1", page_size: "512 512 1 1", datatype: Byte}
      format: image/jpeg
      quality: 85
      lut: "0:0,4095:255"
      etag_seed: "0a1b2c3d4e5f6"
      empty_tile: data/empty.jpg

Everything is validated here, once; a config that loads is one the pipeline
can serve without data type or geometry surprises.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from common.types import DataType
from common.utils import MAX_READ_SIZE, base32decode, parse_bbox, parse_size, read_file, tobase32
from convert.codec import CodecRegistry, ImageFormat
from convert.errors import ConfigurationError
from convert.etag import fold_bytes
from convert.lut import Lut, check_conversion
from convert.png import supports_transparency
from convert.pyramid import RasterGeometry


@dataclass(frozen=True)
class EmptyTile:
    """The canned response for tiles that do not exist."""
    data: bytes
    etag: str
    mime_type: str


@dataclass(frozen=True)
class ConvertConfig:
    input: RasterGeometry
    output: RasterGeometry
    format: ImageFormat = ImageFormat.JPEG
    quality: float = 75
    lut: Optional[Lut] = None
    seed: int = 0
    empty: Optional[EmptyTile] = None
    source: str = ""
    postfix: str = ""
    timeout: float = 5.0
    max_input_size: int = MAX_READ_SIZE
    nodata: Optional[int] = None
    patterns: Tuple[re.Pattern, ...] = field(default_factory=tuple)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        validate(self)


def raster_from_dict(d: Dict[str, Any]) -> RasterGeometry:
    """Build a RasterGeometry from the input/output section of the config."""
    if "size" not in d:
        raise ConfigurationError("size is mandatory for a raster")
    try:
        size = parse_size(d["size"])
        if "page_size" in d:
            page_size = parse_size(d["page_size"], default_c=size.c)
        else:
            page_size = parse_size([512, 512, 1, size.c])
        datatype = DataType.from_name(d.get("datatype"))
        bbox = parse_bbox(d.get("bbox", "0,0,1,1"))
        skip = int(d.get("skipped_levels", 0))
    except ValueError as e:
        raise ConfigurationError(f"raster: {e}") from e
    return RasterGeometry(
        size=size,
        page_size=page_size,
        datatype=datatype,
        skip=skip,
        bbox=bbox,
        projection=str(d.get("projection", "WM")),
    )


def validate(cfg: ConvertConfig) -> None:
    """Setup time consistency checks between the two rasters, format and LUT."""
    if cfg.input.page_size != cfg.output.page_size:
        raise ConfigurationError(
            f"input and output page sizes differ: {cfg.input.page_size} vs {cfg.output.page_size}"
        )
    if cfg.input.datatype != cfg.output.datatype:
        if cfg.lut is None:
            raise ConfigurationError(
                f"a LUT is required to convert {cfg.input.datatype.name} to {cfg.output.datatype.name}"
            )
        check_conversion(cfg.input.datatype, cfg.output.datatype)
    if not CodecRegistry.default()[cfg.format].supports(cfg.output):
        raise ConfigurationError(
            f"{cfg.format.name} cannot encode {cfg.output.page_size.c} x {cfg.output.datatype.name} pixels"
        )
    if cfg.nodata is not None and cfg.format == ImageFormat.PNG:
        if not supports_transparency(cfg.output):
            raise ConfigurationError(
                f"PNG cannot mark nodata on {cfg.output.page_size.c} x {cfg.output.datatype.name} pixels"
            )
        if not 0 <= cfg.nodata < 1 << (8 * cfg.output.datatype.itemsize):
            raise ConfigurationError(f"nodata {cfg.nodata} does not fit {cfg.output.datatype.name}")
    if cfg.max_input_size <= 0:
        raise ConfigurationError("max_input_size must be positive")


def _empty_tile(spec: str, seed: int, etag: Optional[str], base_dir: Optional[Path], max_size: int) -> EmptyTile:
    try:
        data = read_file(spec, base_dir, max_size)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"empty_tile: {e}") from e
    codec = CodecRegistry.default().sniff(data)
    if codec is None:
        raise ConfigurationError("empty_tile: not a JPEG or PNG file")
    if not etag:
        # Derived from the payload, flagged as the missing tile
        etag = tobase32(fold_bytes(seed, data), flag=True)
    return EmptyTile(data=data, etag=etag, mime_type=codec.mime_type)


def _number(C: Dict[str, Any], key: str, kind, default):
    if C.get(key) is None:
        return default
    try:
        return kind(C[key])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key}: expected a number, got {C[key]!r}") from e


def config_from_dict(P: Dict[str, Any], base_dir: Optional[Path] = None) -> ConvertConfig:
    C = P.get("convert", P)
    if "input" not in C or "output" not in C:
        raise ConfigurationError("convert.input and convert.output are mandatory")
    inraster = raster_from_dict(C["input"])
    outraster = raster_from_dict(C["output"])

    try:
        fmt = CodecRegistry.format_from_name(C.get("format", "image/jpeg"))
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    lut = Lut.parse(C["lut"]) if C.get("lut") else None
    seed = base32decode(str(C["etag_seed"]))[0] if C.get("etag_seed") else 0
    quality = _number(C, "quality", float, 75)
    timeout = _number(C, "timeout", float, 5.0)
    max_input_size = _number(C, "max_input_size", int, MAX_READ_SIZE)
    nodata = _number(C, "nodata", int, None)

    empty = None
    if C.get("empty_tile"):
        empty = _empty_tile(str(C["empty_tile"]), seed, C.get("empty_etag"), base_dir, max_input_size)

    try:
        patterns = tuple(re.compile(p) for p in C.get("regexp", []) or [])
    except re.error as e:
        raise ConfigurationError(f"bad regular expression: {e}") from e

    return ConvertConfig(
        input=inraster,
        output=outraster,
        format=fmt,
        quality=quality,
        lut=lut,
        seed=seed,
        empty=empty,
        source=str(C.get("source", "")),
        postfix=str(C.get("postfix", "")),
        timeout=timeout,
        max_input_size=max_input_size,
        nodata=nodata,
        patterns=patterns,
        log_level=str(P.get("logging", {}).get("level", "INFO")),
    )


def load_config(path: str = "config/convert.yaml") -> ConvertConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"{path} not found")
    with p.open("r") as f:
        P = yaml.safe_load(f) or {}
    return config_from_dict(P, base_dir=p.parent)
