# services/signature_service.py
"""
Miniflux webhook signature verification.

Miniflux signs every webhook with HMAC-SHA256 over the raw request body and
sends the lowercase hex digest in the X-Miniflux-Signature header. The digest
must be computed over the bytes exactly as received; re-serialized JSON would
not match.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from app.core.errors import InvalidSignature, MissingRawBody

SIGNATURE_HEADER = "X-Miniflux-Signature"


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, raw_body: Optional[bytes], signature: Optional[str]) -> bool:
    """
    Return True when `signature` is the HMAC-SHA256 of `raw_body` under `secret`.

    Raises MissingRawBody when the body was never captured: that is a server
    defect, not a bad signature.
    """
    if raw_body is None:
        raise MissingRawBody()
    if not signature:
        return False

    expected = compute_signature(secret, raw_body)
    provided = signature.strip().encode("ascii", errors="replace")
    return hmac.compare_digest(expected.encode("ascii"), provided)


def require_valid_signature(secret: str, raw_body: Optional[bytes], signature: Optional[str]) -> None:
    if not verify_signature(secret, raw_body, signature):
        raise InvalidSignature("signature mismatch" if signature else "signature missing")
