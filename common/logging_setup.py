from __future__ import annotations

import logging
import os
import sys
import json
import time
from typing import Optional


class JsonFormatter(logging.Formatter):
    """
    JSON line formatter used by the tile server:
      { "t": 169, "lvl": "WARNING", "name": "convert.pipeline", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        # Tile context (level/row/column, codec diagnostic, ...) travels in record.extra
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(name)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Configure the root logger once with JSON formatting.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (e.g., DEBUG/INFO/WARNING/ERROR)
      - default INFO

    `force=True` re-applies the level, used when the config file is read
    after a module logger already configured the defaults.
    """
    root = logging.getLogger()
    if getattr(root, "_tileconv_configured", False):
        if force:
            root.setLevel(_resolve_level(level))
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level(level))
    root._tileconv_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
