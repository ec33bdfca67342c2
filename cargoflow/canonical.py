"""Canonical JSON bytes for signing and digests."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Dict


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - Enums are replaced by their value; bytes by lowercase hex.
    - Floats are rejected to avoid non-JCS number edge cases (use strings or integers).
    """
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return _coerce_json_types(obj.value)
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in JCS canonicalization. Use strings or integers.")
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def jcs_canonicalize(obj: Any) -> bytes:
    """Canonicalize JSON using a JCS-like subset (RFC 8785 compatible for objects without floats)."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha256_hex(obj: Any) -> str:
    return hashlib.sha256(jcs_canonicalize(obj)).hexdigest()
