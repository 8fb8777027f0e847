"""
Sessionware Sessions - Codec.

Serializes session records to a cookie-safe string and back:

    encode: dict -> JSON (UTF-8) -> URL-safe base64
    decode: the reverse; returns None on any malformed input

``fingerprint`` produces the canonical digest the dirty tracker compares.
It sorts keys, so reordering keys never counts as a change.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any, Mapping


def encode(data: Mapping[str, Any]) -> str:
    """
    Encode a session record into a transportable string.

    Args:
        data: JSON-representable mapping

    Returns:
        URL-safe base64 string

    Raises:
        TypeError: If a value is not JSON-representable
    """
    raw = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode(value: str) -> dict[str, Any] | None:
    """
    Decode a string produced by ``encode``.

    Returns None for anything that is not a well-formed encoded object
    (truncated, tampered, foreign or non-object payloads). Never raises.
    """
    if not isinstance(value, str) or not value:
        return None

    # Restore stripped padding
    padded = value + "=" * (-len(value) % 4)

    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError, RecursionError):
        return None

    if not isinstance(data, dict):
        return None

    return data


def fingerprint(data: Mapping[str, Any]) -> str:
    """
    Canonical digest of a session's data.

    Two mappings with equal content produce the same fingerprint
    regardless of key insertion order.
    """
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
