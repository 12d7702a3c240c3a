"""
metricd - Shared helpers

Retry with fixed backoff, request signing, gzip framing and logging setup.
"""

from .retry import backoff, retry_async
from .signature import sign, verify, check, SignatureMismatch, SIGNATURE_HEADER

__all__ = ["backoff", "retry_async", "sign", "verify", "check", "SignatureMismatch", "SIGNATURE_HEADER"]
