"""
Content fingerprinting.

A content fingerprint names a RawDocument: the SHA-256 digest of its
serialized bytes, prefixed with the algorithm so that a proof records how
the value was derived. Fingerprints are only meaningful over canonicalizer
output; hashing an upload directly would make the value depend on its
producer.
"""

import hashlib
import re
from typing import Union

FINGERPRINT_PREFIX = "SHA-256:"

_FINGERPRINT_RE = re.compile(r"^SHA-256:[0-9a-f]{64}$")


def compute_content_fingerprint(canonical_bytes: Union[bytes, bytearray]) -> str:
    """
    Fingerprint RawDocument bytes as ``SHA-256:<lowercase hex>``.

    The result is what ``RawDocument.content_fingerprint`` holds and what
    an issued claim attests. Comparison against a claim is done by the
    verifier, case-insensitively.

    Raises:
        TypeError:
            If ``canonical_bytes`` is not a bytes-like value.
    """
    if not isinstance(canonical_bytes, (bytes, bytearray)):
        raise TypeError(
            "compute_content_fingerprint expects RawDocument bytes, "
            f"got {type(canonical_bytes).__name__}"
        )

    return FINGERPRINT_PREFIX + hashlib.sha256(canonical_bytes).hexdigest()


def is_content_fingerprint(value: object) -> bool:
    """Return True if ``value`` has the shape of a content fingerprint."""
    return isinstance(value, str) and bool(_FINGERPRINT_RE.match(value))
