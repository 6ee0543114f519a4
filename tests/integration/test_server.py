"""
Integration tests for the tile conversion API
"""

import dataclasses
import re

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from common.types import TileAddress
from convert.pipeline import TilePipeline
from convert.server import create_app
from convert.source import SourceTile
from tests.tiles import FakeSource, png_bytes


@pytest.fixture
def client(uint16_to_byte_config):
    cfg = dataclasses.replace(uint16_to_byte_config, patterns=(re.compile("^/tiles/"),))
    tiles = {
        TileAddress(0, 0, 0): SourceTile(png_bytes(np.full((256, 256), 4095, dtype=np.uint16)), etag="abc"),
        TileAddress(1, 0, 0): SourceTile(png_bytes(np.full((256, 256), 0, dtype=np.uint16)), etag="1000000000000"),
    }
    return TestClient(create_app(TilePipeline(cfg, FakeSource(tiles))))


class TestTileApi:
    """Test cases for GET /{path}"""

    def test_converted_tile(self, client):
        r = client.get("/tiles/0/0/0")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        etag = r.headers["etag"]
        assert etag.startswith('"') and etag.endswith('"')
        img = cv2.imdecode(np.frombuffer(r.content, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        assert (img == 255).all()

    def test_not_modified(self, client):
        etag = client.get("/tiles/0/0/0").headers["etag"]
        r = client.get("/tiles/0/0/0", headers={"If-None-Match": etag})
        assert r.status_code == 304
        assert r.content == b""

    def test_missing_tile(self, client, empty_tile):
        for path in ["/tiles/1/0/0", "/tiles/1/1/1", "/tiles/7/0/0"]:
            r = client.get(path)
            assert r.status_code == 200
            assert r.content == empty_tile.data
            assert r.headers["etag"] == f'"{empty_tile.etag}"'

    def test_unhandled_path(self, client):
        r = client.get("/other/0/0/0")
        assert r.status_code == 404
        assert r.json() == {"error": "not_handled"}

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert body["input"]["datatype"] == "UINT16"
        assert body["output"]["levels"] == 2
        assert body["format"] == "image/png"
        assert body["empty_tile"] is True
