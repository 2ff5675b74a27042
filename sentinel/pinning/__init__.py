"""
Pinning provider abstraction layer for Content Sentinel.

Remote pinning services and IPFS nodes are reached through a Protocol-based interface
with frozen dataclass result types.
"""

from sentinel.pinning.base import (
    PinFileResult,
    PinResult,
    UnpinResult,
    PinList,
    PinProviderProtocol,
    ContentPublisherProtocol,
)

__all__ = [
    "PinFileResult",
    "PinResult",
    "UnpinResult",
    "PinList",
    "PinProviderProtocol",
    "ContentPublisherProtocol",
]
