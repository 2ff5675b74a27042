"""
Error taxonomy for Content Sentinel.

Probe errors never leave the verifier, item-level errors never leave the
scheduler, and tier errors only move the recovery chain along to its next
tier. Only a failure to read the due list aborts a scheduler tick.
"""

from typing import Optional


class SentinelError(Exception):
    """Base exception for all Content Sentinel errors."""


class ProbeError(SentinelError):
    """A single gateway probe failed (network error, refused connection)."""

    def __init__(self, gateway: str, message: str):
        self.gateway = gateway
        super().__init__(f"{gateway}: {message}")


class ProbeTimeout(ProbeError):
    """A single gateway probe exceeded its deadline."""


class VerificationError(SentinelError):
    """Verifying one content item failed; the item stays due for the next tick."""

    def __init__(self, content_id: str, message: str):
        self.content_id = content_id
        super().__init__(f"Verification of {content_id} failed: {message}")


class ContentFetchError(SentinelError):
    """No gateway served the bytes for a CID."""


class ContentTooLargeError(ContentFetchError):
    """The content exceeds the caller's size ceiling."""

    def __init__(self, cid: str, size: int, limit: int):
        self.cid = cid
        self.size = size
        self.limit = limit
        super().__init__(f"{cid} is at least {size} bytes (limit {limit})")


class RecoveryProviderError(SentinelError):
    """A recovery tier's backing service failed."""


class PinProviderError(RecoveryProviderError):
    """The pinning service returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(SentinelError):
    """A component was used without the configuration it needs."""


class PinProviderNotConfigured(ConfigurationError, RecoveryProviderError):
    """Pinning service credentials are missing."""


class BackupError(SentinelError):
    """A backup could not be created or restored."""


class BackupCorruptionError(BackupError):
    """A backup file failed its size or hash check."""


class RepositoryError(SentinelError):
    """The content repository could not be read or written."""
