"""
Unit tests for tile identity tags
"""

from common.utils import base32decode, tobase32
from convert.etag import compute_etag, etag_matches, fold_bytes, is_missing_tag


SEED = 0x0123456789ABCDEF


class TestComputeEtag:
    """Test cases for output tag derivation"""

    def test_source_tag_is_xored_with_seed(self):
        source = tobase32(0xFF)
        tag = compute_etag(SEED, source, b"ignored")
        assert base32decode(tag) == (SEED ^ 0xFF, False)

    def test_fold_without_source_tag(self):
        """No upstream tag: same bytes give the same tag, other bytes another"""
        data = bytes(range(256)) * 4
        assert compute_etag(SEED, None, data) == compute_etag(SEED, None, data)
        assert compute_etag(SEED, None, data) == tobase32(fold_bytes(SEED, data))
        assert compute_etag(SEED, None, data) != compute_etag(SEED, None, data[::-1])

    def test_fold_separates_repeating_content(self):
        """Samples repeating every 8 positions must not cancel each other"""
        assert fold_bytes(SEED, bytes(32)) != fold_bytes(SEED, b"\xff" * 32)
        assert fold_bytes(SEED, bytes(32)) != fold_bytes(SEED, b"\x01\x02" * 16)

    def test_single_sample_change(self):
        data = bytearray(range(32))
        other = bytearray(data)
        other[5] ^= 0x10
        assert fold_bytes(SEED, data) != fold_bytes(SEED, other)

    def test_zero_source_tag_falls_back_to_fold(self):
        data = b"\x01\x02\x03"
        assert compute_etag(SEED, "0000000000000", data) == tobase32(fold_bytes(SEED, data))

    def test_seed_changes_tag(self):
        source = tobase32(42)
        assert compute_etag(1, source, b"") != compute_etag(2, source, b"")

    def test_fold_empty(self):
        assert fold_bytes(SEED, b"") == SEED


class TestMissingTag:
    """Test cases for missing tile detection"""

    def test_equal_to_configured_tag(self):
        assert is_missing_tag("abc", "abc")
        assert not is_missing_tag("abc", "abd")

    def test_flag_bit(self):
        assert is_missing_tag(tobase32(12345, flag=True), None)
        assert not is_missing_tag(tobase32(12345), None)

    def test_foreign_tags_never_flagged(self):
        """Odd first digit alone is not enough outside the 13 digit form"""
        assert not is_missing_tag("1abc", None)
        assert not is_missing_tag("5f3e-1a2b-xyz", None)
        assert not is_missing_tag(None, "abc")
        assert not is_missing_tag("", None)


class TestEtagMatches:
    """Test cases for If-None-Match evaluation"""

    def test_forms(self):
        assert etag_matches('"abc"', "abc")
        assert etag_matches("abc", "abc")
        assert etag_matches('W/"abc"', "abc")
        assert etag_matches('"x", "abc"', "abc")
        assert etag_matches("*", "abc")

    def test_no_match(self):
        assert not etag_matches(None, "abc")
        assert not etag_matches("", "abc")
        assert not etag_matches('"abd"', "abc")
