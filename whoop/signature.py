"""Whoop webhook signature verification.

Whoop signs each delivery with HMAC-SHA256 over ``timestamp + raw_body``
keyed by the app secret, base64-encoded, and sends it in the
X-WHOOP-Signature header alongside X-WHOOP-Signature-Timestamp.

Verification always uses the raw transport bytes captured before JSON
parsing. Re-serializing a parsed body is not byte-stable (key order,
whitespace, unicode escaping) and is never used here.
"""

import base64
import hashlib
import hmac

from whoop.domain.results import SignatureCheck


def compute_signature(timestamp: str, raw_body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of timestamp || raw_body."""
    digest = hmac.new(
        secret.encode("utf-8"), timestamp.encode("utf-8") + raw_body, hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def check_signature(
    signature: str | None, timestamp: str | None, raw_body: bytes, secret: str
) -> SignatureCheck:
    if not signature or not timestamp:
        return SignatureCheck.MISSING
    expected = compute_signature(timestamp, raw_body, secret)
    if hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        return SignatureCheck.VALID
    return SignatureCheck.INVALID


def verify_signature(
    signature: str | None, timestamp: str | None, raw_body: bytes, secret: str
) -> bool:
    return check_signature(signature, timestamp, raw_body, secret) is SignatureCheck.VALID
