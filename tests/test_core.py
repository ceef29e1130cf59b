"""Canonical bytes, hashing and base64 helpers."""

import math
from datetime import datetime, timezone

import pytest

from ocistatus.core import (
    b64_decode,
    b64_encode,
    canonical_json_bytes,
    sha256_bytes,
)


class TestCanonicalJson:
    """Tests for canonical JSON serialization."""

    def test_sorted_keys_no_whitespace(self):
        assert canonical_json_bytes({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_same_value_same_bytes(self):
        a = canonical_json_bytes({"x": {"z": 1, "y": 2}, "w": "v"})
        b = canonical_json_bytes({"w": "v", "x": {"y": 2, "z": 1}})
        assert a == b

    def test_unicode_is_not_escaped(self):
        assert canonical_json_bytes({"k": "é"}) == '{"k":"é"}'.encode("utf-8")

    def test_datetime_becomes_rfc3339(self):
        dt = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert canonical_json_bytes({"t": dt}) == b'{"t":"2024-01-02T03:04:05Z"}'

    def test_floats_allowed(self):
        assert canonical_json_bytes({"f": 0.5}) == b'{"f":0.5}'

    def test_non_finite_float_rejected(self):
        with pytest.raises(ValueError):
            canonical_json_bytes({"f": math.inf})
        with pytest.raises(ValueError):
            canonical_json_bytes({"f": float("nan")})

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError):
            canonical_json_bytes({"s": {1, 2}})


class TestEncodings:
    """Tests for hashing and base64 helpers."""

    def test_sha256_hex(self):
        assert sha256_bytes(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_b64_roundtrip(self):
        assert b64_decode(b64_encode(b"\x00\xffhello")) == b"\x00\xffhello"

    def test_b64_rejects_garbage(self):
        with pytest.raises(ValueError):
            b64_decode("not base64!!")
