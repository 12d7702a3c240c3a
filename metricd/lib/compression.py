"""
metricd - Gzip Framing
"""

import gzip
import zlib

# Errors gzip raises on corrupt or truncated input
DECOMPRESSION_ERRORS = (OSError, EOFError, zlib.error)


def compress(data: bytes) -> bytes:
    """Gzip `data` favouring speed over ratio."""
    return gzip.compress(data, compresslevel=1)


def decompress(data: bytes) -> bytes:
    return gzip.decompress(data)
