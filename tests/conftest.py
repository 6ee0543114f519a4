"""
Shared fixtures for unit and integration tests.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from common.types import DataType
from convert.codec import ImageFormat
from convert.config import ConvertConfig, EmptyTile
from convert.lut import Lut
from tests.tiles import make_geometry, png_bytes


@pytest.fixture
def empty_tile() -> EmptyTile:
    data = png_bytes(np.zeros((256, 256), dtype=np.uint8))
    return EmptyTile(data=data, etag="1000000000000", mime_type="image/png")


@pytest.fixture
def uint16_to_byte_config(empty_tile) -> ConvertConfig:
    """16 bit single band input, 8 bit PNG output, 2x2 tiles at full resolution."""
    return ConvertConfig(
        input=make_geometry(datatype=DataType.UINT16),
        output=make_geometry(datatype=DataType.BYTE),
        format=ImageFormat.PNG,
        quality=6,
        lut=Lut.parse("0:0,4095:255"),
        seed=0x0123456789ABCDEF,
        empty=empty_tile,
    )
