"""
Unit tests for the shared helpers: base-32 tags, size/bbox parsing, file reads
"""

import pytest

from common.types import BoundingBox, DataType, Size, StorageBuffer
from common.utils import base32decode, parse_bbox, parse_size, read_file, tobase32


class TestBase32:
    """Test cases for the 13 character tag encoding"""

    @pytest.mark.parametrize("value", [0, 1, 15, 16, 0x0123456789ABCDEF, (1 << 64) - 1])
    @pytest.mark.parametrize("flag", [False, True])
    def test_round_trip(self, value, flag):
        token = tobase32(value, flag)
        assert len(token) == 13
        assert base32decode(token) == (value, flag)

    def test_flag_lives_in_first_digit(self):
        """The flag changes only the lowest bit of the first digit"""
        assert tobase32(0) == "0000000000000"
        assert tobase32(0, flag=True) == "1000000000000"

    def test_decode_accepts_header_forms(self):
        """Quotes, weak prefix and upper case are all tolerated"""
        token = tobase32(123456789)
        assert base32decode(f'"{token}"') == (123456789, False)
        assert base32decode(f'W/"{token}"') == (123456789, False)
        assert base32decode(token.upper()) == (123456789, False)

    def test_decode_garbage(self):
        """Non digits give zero"""
        assert base32decode("") == (0, False)
        assert base32decode("zzz") == (0, False)


class TestParsing:
    """Test cases for size and bounding box parsing"""

    def test_parse_size_defaults(self):
        assert parse_size("512 256") == Size(512, 256, 1, 3)
        assert parse_size("512 256", default_c=1) == Size(512, 256, 1, 1)
        assert parse_size("512,256,4,1") == Size(512, 256, 4, 1)
        assert parse_size([512, 512, 1, 1]) == Size(512, 512, 1, 1)

    @pytest.mark.parametrize("text", ["512", "1 2 3 4 5", "a b", "0 512"])
    def test_parse_size_rejects(self, text):
        with pytest.raises(ValueError):
            parse_size(text)

    def test_parse_bbox(self):
        bbox = parse_bbox("-180,-90,180,90")
        assert bbox == BoundingBox(-180, -90, 180, 90)
        assert bbox.width == 360 and bbox.height == 180

    @pytest.mark.parametrize("text", ["1,2,3", "a,b,c,d"])
    def test_parse_bbox_rejects(self, text):
        with pytest.raises(ValueError):
            parse_bbox(text)


class TestTypes:
    """Test cases for data types and storage buffers"""

    def test_datatype_names(self):
        assert DataType.from_name(None) == DataType.BYTE
        assert DataType.from_name("uint16") == DataType.UINT16
        assert DataType.from_name("Int") == DataType.INT16
        assert DataType.from_name("Float") == DataType.FLOAT32
        assert DataType.FLOAT64.itemsize == 8
        with pytest.raises(ValueError):
            DataType.from_name("Complex")

    def test_storage_buffer_size_and_capacity(self):
        buf = StorageBuffer(bytearray(100), 10)
        assert len(buf) == 10 and buf.capacity == 100
        assert buf.writable
        assert not StorageBuffer(b"abc").writable
        with pytest.raises(ValueError):
            StorageBuffer(b"abc", 4)


class TestReadFile:
    """Test cases for "[size [offset]] path" file specifications"""

    def test_whole_file(self, tmp_path):
        (tmp_path / "f.bin").write_bytes(b"0123456789")
        assert read_file("f.bin", tmp_path) == b"0123456789"

    def test_size_and_offset(self, tmp_path):
        (tmp_path / "f.bin").write_bytes(b"0123456789")
        assert read_file("4 f.bin", tmp_path) == b"0123"
        assert read_file("3 5 f.bin", tmp_path) == b"567"

    def test_limits(self, tmp_path):
        (tmp_path / "f.bin").write_bytes(b"0123456789")
        with pytest.raises(ValueError):
            read_file("f.bin", tmp_path, max_size=5)
        with pytest.raises(ValueError):
            read_file("20 f.bin", tmp_path)
        with pytest.raises(ValueError):
            read_file("", tmp_path)
        with pytest.raises(OSError):
            read_file("missing.bin", tmp_path)
