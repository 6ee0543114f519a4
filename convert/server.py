"""
Tile conversion server

- Serves GET /{path} for any path matching the configured guard patterns;
  the path ends in [M/]L/R/C of the output pyramid
- Answers with the converted tile, the missing tile, 304 or an error
- /health reports both pyramids

    python -m convert.server --config config/convert.yaml --port 8000
"""
from __future__ import annotations

import argparse
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from common.logging_setup import get_logger, setup_logging
from convert.config import load_config
from convert.pipeline import Outcome, TilePipeline
from convert.pyramid import RasterGeometry


log = get_logger("convert.server")


def _raster_info(g: RasterGeometry) -> Dict:
    return {
        "size": [g.size.x, g.size.y, g.size.z, g.size.c],
        "page_size": [g.page_size.x, g.page_size.y, g.page_size.z, g.page_size.c],
        "datatype": g.datatype.name,
        "levels": g.n_levels,
        "skipped_levels": g.skip,
    }


def create_app(pipeline: TilePipeline) -> FastAPI:
    app = FastAPI(title="Tile Conversion API", version="1.0.0")
    app.state.pipeline = pipeline

    @app.get("/health")
    def health():
        cfg = pipeline.config
        return {
            "status": "ok",
            "input": _raster_info(cfg.input),
            "output": _raster_info(cfg.output),
            "format": cfg.format.mime_type,
            "empty_tile": cfg.empty is not None,
        }

    @app.get("/{path:path}")
    def tile(path: str, request: Request):
        path = "/" + path
        if not pipeline.accepts(path):
            return JSONResponse({"error": "not_handled"}, status_code=404)

        result = pipeline.handle(path, if_none_match=request.headers.get("if-none-match"))
        headers = {"ETag": f'"{result.etag}"'} if result.etag else {}

        if result.outcome in (Outcome.OK, Outcome.MISSING):
            return Response(content=result.data, media_type=result.mime_type, headers=headers)
        if result.outcome == Outcome.NOT_MODIFIED:
            return Response(status_code=304, headers=headers)
        if result.outcome == Outcome.NOT_FOUND:
            return JSONResponse({"error": "tile_not_found"}, status_code=404)
        return JSONResponse({"error": "conversion_failed"}, status_code=500)

    return app


def main(argv: Optional[list] = None) -> None:
    ap = argparse.ArgumentParser(description="Tile conversion server")
    ap.add_argument("--config", default="config/convert.yaml")
    ap.add_argument("--host", default="0.0.0.0")
    ap.add_argument("--port", type=int, default=8000)
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    setup_logging(cfg.log_level, force=True)
    log.info(
        "Tile conversion server starting",
        extra={"extra": {"source": cfg.source, "format": cfg.format.mime_type, "port": args.port}},
    )
    uvicorn.run(create_app(TilePipeline(cfg)), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
