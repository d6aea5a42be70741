"""HMAC-SHA1 verification for analytics drain deliveries.

The sender signs the exact request body bytes. Depending on the relay the
signature arrives as a hex digest, a ``sha1=``-prefixed hex digest, or a
base64 encoding of the raw digest (optionally prefixed as well). Every
accepted encoding is computed up front and compared on its own with
``hmac.compare_digest``; the provided value is never normalized first.
"""

import base64
import hashlib
import hmac

SIGNATURE_PREFIX = "sha1="


def signature_candidates(secret: str, body: bytes) -> tuple[bytes, ...]:
    """Return every accepted encoding of HMAC-SHA1(secret, body)."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha1).digest()
    hex_digest = digest.hex()
    b64_digest = base64.b64encode(digest).decode("ascii")
    return tuple(
        candidate.encode("ascii")
        for candidate in (
            hex_digest,
            f"{SIGNATURE_PREFIX}{hex_digest}",
            b64_digest,
            f"{SIGNATURE_PREFIX}{b64_digest}",
        )
    )


def verify_signature(secret: str, body: bytes, provided: str) -> bool:
    """Check a sender-supplied signature against the raw body.

    All candidates are compared, even after a match, so the time taken does
    not depend on which encoding the sender used.
    """
    provided_bytes = provided.strip().encode("utf-8")
    if not provided_bytes:
        return False

    matched = False
    for candidate in signature_candidates(secret, body):
        matched |= hmac.compare_digest(candidate, provided_bytes)
    return matched
