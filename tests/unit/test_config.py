"""
Unit tests for configuration loading and validation
"""

from pathlib import Path

import numpy as np
import pytest
import yaml

from common.types import DataType
from common.utils import base32decode
from convert.codec import ImageFormat
from convert.config import config_from_dict, load_config
from convert.errors import ConfigurationError, InvalidGeometry
from convert.etag import is_missing_tag
from tests.tiles import png_bytes


SAMPLE = Path(__file__).resolve().parents[2] / "config" / "convert.yaml"


def base_dict(**convert):
    C = {
        "input": {"size": "1024 1024 1 1", "page_size": "256 256 1 1", "datatype": "UInt16"},
        "output": {"size": "1024 1024 1 1", "page_size": "256 256 1 1", "datatype": "Byte"},
        "format": "image/png",
        "lut": "0:0,4095:255",
    }
    C.update(convert)
    return {"convert": C}


def with_channels(P, c):
    for side in ("input", "output"):
        P["convert"][side]["size"] = f"1024 1024 1 {c}"
        P["convert"][side]["page_size"] = f"256 256 1 {c}"
    return P


class TestLoadConfig:
    """Test cases for YAML loading"""

    def test_load_yaml(self, tmp_path):
        (tmp_path / "empty.png").write_bytes(png_bytes(np.zeros((256, 256), dtype=np.uint8)))
        P = base_dict(regexp=["^/tiles/"], etag_seed="0a1b2c3d4e5f6", empty_tile="empty.png", quality=9)
        P["logging"] = {"level": "DEBUG"}
        path = tmp_path / "convert.yaml"
        path.write_text(yaml.safe_dump(P))

        cfg = load_config(str(path))
        assert cfg.input.datatype == DataType.UINT16
        assert cfg.output.datatype == DataType.BYTE
        assert cfg.output.n_levels == 3
        assert cfg.format == ImageFormat.PNG
        assert cfg.lut is not None and len(cfg.lut) == 2
        assert cfg.seed == base32decode("0a1b2c3d4e5f6")[0]
        assert cfg.patterns[0].search("/tiles/0/0/0")
        assert cfg.log_level == "DEBUG"
        assert cfg.empty is not None
        assert cfg.empty.mime_type == "image/png"
        # Derived tag carries the missing-tile flag
        assert is_missing_tag(cfg.empty.etag, None)

    def test_explicit_empty_etag(self, tmp_path):
        (tmp_path / "empty.png").write_bytes(png_bytes(np.zeros((256, 256), dtype=np.uint8)))
        cfg = config_from_dict(base_dict(empty_tile="empty.png", empty_etag="fixed"), tmp_path)
        assert cfg.empty.etag == "fixed"

    def test_sample_config_loads(self):
        cfg = load_config(str(SAMPLE))
        assert cfg.input.page_size == cfg.output.page_size
        assert cfg.format == ImageFormat.PNG

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "nope.yaml"))


class TestValidation:
    """Test cases for setup time rejection of bad configurations"""

    def test_missing_lut(self):
        with pytest.raises(ConfigurationError, match="LUT"):
            config_from_dict(base_dict(lut=None))

    def test_page_size_mismatch(self):
        P = base_dict()
        P["convert"]["output"]["page_size"] = "512 512 1 1"
        with pytest.raises(ConfigurationError):
            config_from_dict(P)

    def test_unknown_datatype(self):
        P = base_dict()
        P["convert"]["input"]["datatype"] = "Complex64"
        with pytest.raises(ConfigurationError):
            config_from_dict(P)

    def test_unsupported_conversion(self):
        P = base_dict()
        P["convert"]["input"]["datatype"] = "Float64"
        P["convert"]["output"]["datatype"] = "Int16"
        with pytest.raises(ConfigurationError):
            config_from_dict(P)

    def test_output_too_wide_for_format(self):
        P = base_dict()
        P["convert"]["output"]["datatype"] = "Float32"
        with pytest.raises(ConfigurationError):
            config_from_dict(P)

    def test_jpeg_channels(self):
        P = with_channels(base_dict(format="jpeg"), 4)
        with pytest.raises(ConfigurationError, match="JPEG"):
            config_from_dict(P)

    def test_two_channel_png(self):
        """Gray with alpha output cannot be encoded, caught at load time"""
        P = with_channels(base_dict(), 2)
        with pytest.raises(ConfigurationError, match="PNG cannot encode 2 x Byte"):
            config_from_dict(P)

    def test_nodata_on_sixteen_bit_rgb(self):
        P = with_channels(base_dict(lut=None, nodata=0), 3)
        P["convert"]["output"]["datatype"] = "UInt16"
        with pytest.raises(ConfigurationError, match="nodata"):
            config_from_dict(P)

    def test_nodata_on_eight_bit_rgb(self):
        P = with_channels(base_dict(nodata=0), 3)
        assert config_from_dict(P).nodata == 0

    def test_nodata_out_of_range(self):
        with pytest.raises(ConfigurationError, match="nodata 256"):
            config_from_dict(base_dict(nodata=256))

    @pytest.mark.parametrize("key,value", [
        ("quality", "high"),
        ("timeout", "soon"),
        ("max_input_size", "1MB"),
        ("nodata", "none"),
        ("nodata", 1.5j),
    ])
    def test_bad_number(self, key, value):
        with pytest.raises(ConfigurationError, match=key):
            config_from_dict(base_dict(**{key: value}))

    def test_bad_format(self):
        with pytest.raises(ConfigurationError):
            config_from_dict(base_dict(format="image/gif"))

    def test_bad_regexp(self):
        with pytest.raises(ConfigurationError):
            config_from_dict(base_dict(regexp=["("]))

    def test_bad_lut(self):
        with pytest.raises(ConfigurationError):
            config_from_dict(base_dict(lut="10:0,5:1"))

    def test_too_many_skipped_levels(self):
        P = base_dict()
        P["convert"]["output"]["skipped_levels"] = 3
        with pytest.raises(InvalidGeometry):
            config_from_dict(P)

    def test_empty_tile_must_be_an_image(self, tmp_path):
        (tmp_path / "empty.bin").write_bytes(b"not an image")
        with pytest.raises(ConfigurationError):
            config_from_dict(base_dict(empty_tile="empty.bin"), tmp_path)
