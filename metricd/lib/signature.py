"""
metricd - Payload Signing

HMAC-SHA256 signatures carried in the HashSHA256 header.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "HashSHA256"


class SignatureMismatch(Exception):
    """Raised when a payload signature does not match the shared key."""


def sign(key: str, body: bytes) -> str:
    """Return the hex HMAC-SHA256 of `body` keyed with `key`."""
    return hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify(key: str, body: bytes, signature: str) -> bool:
    """Check `signature` against `body` in constant time."""
    return hmac.compare_digest(sign(key, body), signature.strip().lower())


def check(key: str, body: bytes, signature: str) -> None:
    if not verify(key, body, signature):
        raise SignatureMismatch("payload signature mismatch")
