"""
Content hashing for backup integrity checks.

BLAKE3 hex digests of the original bytes are stored in the backup index and
re-checked on restore and on deep verification.
"""

import hmac

import blake3


def compute_bytes_hash(data: bytes) -> str:
    """Compute a BLAKE3 hex digest of raw bytes."""
    return blake3.blake3(data).hexdigest()


def hashes_match(hash_a: str, hash_b: str) -> bool:
    """Constant-time comparison of two hex-digest hashes."""
    if not hash_a or not hash_b:
        return False
    return hmac.compare_digest(hash_a, hash_b)
