"""
Webhook signature verification.

GitHub signs every delivery with HMAC-SHA1 over the raw request body using the
shared webhook secret, sent as ``X-Hub-Signature: sha1=<40 hex chars>``.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha1="
SIGNATURE_LENGTH = 45


class SignatureError(ValueError):
    """The signature header is well-formed but its digest is not valid hex."""


def sign_body(secret: bytes, body: bytes) -> bytes:
    return hmac.new(secret, body, hashlib.sha1).digest()


def verify_signature(secret: bytes, signature: str | None, body: bytes) -> bool:
    """
    Check ``signature`` against the HMAC of ``body``.

    Headers of the wrong length or without the ``sha1=`` prefix are invalid,
    not errors, so other digest algorithms are rejected outright. Digests are
    compared in constant time.
    """
    if not signature or len(signature) != SIGNATURE_LENGTH:
        return False
    if not signature.startswith(SIGNATURE_PREFIX):
        return False

    try:
        actual = bytes.fromhex(signature[len(SIGNATURE_PREFIX):])
    except ValueError as exc:
        raise SignatureError(f"malformed signature digest: {exc}") from exc

    return hmac.compare_digest(sign_body(secret, body), actual)
