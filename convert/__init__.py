"""
Tile conversion core

This package provides:
- Tiled pyramid geometry with skipped top levels (pyramid)
- JPEG (8/12 bit) and PNG codecs behind one decode/encode contract (codec, jpeg, png)
- Piecewise linear LUT data type conversion (lut)
- The per-request tile pipeline: address check, upstream fetch, identity tag,
  decode, convert, re-encode (pipeline, source, etag)
- YAML configuration and a FastAPI front end (config, server)

Entry point:
    python -m convert.server --config config/convert.yaml
"""
from .pyramid import RasterGeometry, build_levels, translate
from .lut import Lut, convert
from .pipeline import Outcome, TilePipeline, TileResult

__all__ = ["RasterGeometry", "build_levels", "translate", "Lut", "convert", "Outcome", "TilePipeline", "TileResult"]
