"""LINE webhook signature (``X-Line-Signature``) computation and verification.

The signature is base64(HMAC-SHA256(channel secret, raw request body)). It
must be checked against the exact bytes received, before any JSON parsing.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

SIGNATURE_HEADER = "x-line-signature"


def compute_signature(channel_secret: str, body: bytes) -> str:
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(channel_secret: str | None, body: bytes, signature: str | None) -> bool:
    """Constant-time comparison of ``signature`` against the expected value.

    Missing secret or missing header never verifies.
    """
    if not channel_secret or not signature:
        return False
    expected = compute_signature(channel_secret, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "replace"))
