"""Computation of the Sec-WebSocket-Accept value."""

from __future__ import annotations

import base64
import hashlib

_GUID = b"258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
_KEY_LENGTH = 24


def generate(key: str | bytes) -> str:
    """Return the 28-character accept value for a 24-character Sec-WebSocket-Key."""
    raw = key.encode("latin-1") if isinstance(key, str) else bytes(key)
    if len(raw) != _KEY_LENGTH:
        raise ValueError(f"WebSocket key must be {_KEY_LENGTH} bytes, got {len(raw)}")
    digest = hashlib.sha1(raw + _GUID).digest()
    return base64.b64encode(digest).decode("ascii")