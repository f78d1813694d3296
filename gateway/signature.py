"""HMAC-SHA256 verification for inbound webhook callbacks."""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import Optional, Union

SIGNATURE_HEADER = "X-Signature-SHA256"
SIGNATURE_PREFIX = "sha256="

_DIGEST_BYTES = hashlib.sha256().digest_size
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def _secret_bytes(secret: Union[str, bytes]) -> bytes:
    if isinstance(secret, bytes):
        return secret
    return str(secret).encode("utf-8")


def compute_signature(payload: bytes, secret: Union[str, bytes]) -> str:
    """Lowercase hex HMAC-SHA256 of *payload*."""
    return hmac.new(_secret_bytes(secret), payload, hashlib.sha256).hexdigest()


def signature_header(payload: bytes, secret: Union[str, bytes]) -> str:
    return SIGNATURE_PREFIX + compute_signature(payload, secret)


def _decode_provided(value: Optional[str]) -> Optional[bytes]:
    text = (value or "").strip()
    if text.startswith(SIGNATURE_PREFIX):
        text = text[len(SIGNATURE_PREFIX):]
    if len(text) != _DIGEST_BYTES * 2 or not _HEX_RE.match(text):
        return None
    return bytes.fromhex(text)


def verify_signature(payload: bytes, provided: Optional[str], secret: Union[str, bytes]) -> bool:
    """Constant-time check of *provided* against the HMAC of *payload*.

    Absent, malformed or wrong-length signatures return ``False`` before any
    comparison is made. Never raises for bad input.
    """
    if not secret:
        return False
    provided_bytes = _decode_provided(provided)
    if provided_bytes is None:
        return False
    expected = hmac.new(_secret_bytes(secret), payload or b"", hashlib.sha256).digest()
    if len(expected) != len(provided_bytes):
        return False
    return hmac.compare_digest(expected, provided_bytes)
