"""Core primitives for ocistatus.

This module provides the foundational utilities used throughout the package:
- Cryptographic hashing (SHA-256)
- Canonical JSON serialization (sorted keys, no whitespace, UTF-8)
- Base64 helpers for stored bundles
- JSON loading with consistent encoding

Design principles:
- Pure functions where possible
- No global mutable state
- Explicit error handling
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import math
import pathlib
from datetime import date, datetime, timezone
from typing import Any, Dict

# Package root, computed once at module load
PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def _coerce_json_types(obj: Any, path: str = "$") -> Any:
    """Coerce Python objects into strict JSON types.

    - datetime/date objects become RFC3339 strings.
    - Non-finite floats are rejected; they have no JSON representation.
    - Tuples become lists, mapping keys become strings.
    """
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float not allowed in canonical JSON at {path}")
        return obj
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x, f"{path}[{i}]") for i, x in enumerate(obj)]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v, f"{path}.{k}")
        return out
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable at {path}")


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes.

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded

    The same value always produces the same bytes, which is what signatures
    and log entry hashes are computed over.
    """
    return json.dumps(
        _coerce_json_types(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def b64_encode(b: bytes) -> str:
    """Standard (padded) base64."""
    return base64.b64encode(b).decode("ascii")


def b64_decode(s: str) -> bytes:
    """Decode standard base64, rejecting non-alphabet characters."""
    try:
        return base64.b64decode(str(s).encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as ex:
        raise ValueError(f"invalid base64: {ex}") from ex
