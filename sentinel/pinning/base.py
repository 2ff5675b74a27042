"""
Core abstractions for pinning providers.

Defines the PinProviderProtocol the recovery chain uses to ask a remote
service to retain content, along with frozen result types. Pin and unpin
are idempotent: repeating them reports success with a flag instead of
failing.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import requests

from sentinel.exceptions import PinProviderError


@dataclass(frozen=True)
class PinFileResult:
    """Result of uploading and pinning raw bytes."""
    cid: str
    size: int = 0
    timestamp: Optional[str] = None  # ISO 8601, as reported by the service
    is_duplicate: bool = False


@dataclass(frozen=True)
class PinResult:
    """Result of pinning an existing CID."""
    success: bool
    cid: str
    already_pinned: bool = False
    status: Optional[str] = None


@dataclass(frozen=True)
class UnpinResult:
    """Result of removing a pin."""
    success: bool
    cid: str
    not_pinned: bool = False


@dataclass(frozen=True)
class PinList:
    """One page of pins as reported by the service."""
    count: int = 0
    pins: List[Dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class PinProviderProtocol(Protocol):
    """Protocol that all pinning services must implement."""

    def is_configured(self) -> bool:
        """Whether credentials are present; recovery skips the pin tier otherwise."""
        ...

    def pin_file(self, data: bytes, name: Optional[str] = None,
                 keyvalues: Optional[Dict[str, Any]] = None) -> PinFileResult:
        """Upload bytes and pin them. Returns the resulting CID."""
        ...

    def pin_by_hash(self, cid: str, name: Optional[str] = None,
                    keyvalues: Optional[Dict[str, Any]] = None) -> PinResult:
        """Ask the service to fetch and pin an existing CID."""
        ...

    def unpin(self, cid: str) -> UnpinResult:
        """Remove a pin."""
        ...

    def is_pinned(self, cid: str) -> bool:
        """Whether the service holds a pin for the CID. Errors report False."""
        ...

    def get_pin_status(self, cid: str) -> Optional[Dict[str, Any]]:
        """The service's pin record for the CID, or None."""
        ...

    def get_provider_name(self) -> str:
        """Return the human-readable provider name."""
        ...


@runtime_checkable
class ContentPublisherProtocol(Protocol):
    """Anything that can put restored bytes back on the network."""

    def is_configured(self) -> bool:
        ...

    def pin_file(self, data: bytes, name: Optional[str] = None,
                 keyvalues: Optional[Dict[str, Any]] = None) -> PinFileResult:
        ...

    def get_provider_name(self) -> str:
        ...


def should_retry_pin_error(exception: BaseException) -> bool:
    """
    Retry strategy:
    - Connection errors and timeouts: Yes
    - Server errors (5xx): Yes
    - Client errors (4xx), including 'already pinned': No
    """
    if isinstance(exception, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exception, PinProviderError) and exception.status_code is not None:
        return 500 <= exception.status_code < 600
    return False
