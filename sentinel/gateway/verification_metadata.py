"""
Result structures for gateway verification.

A ProbeResult records what one gateway said about one CID; a
VerificationResult aggregates every probe for that CID.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single HEAD probe against one gateway."""
    gateway: str
    available: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @classmethod
    def failure(cls, gateway: str, error: str, elapsed_seconds: float = 0.0) -> 'ProbeResult':
        return cls(gateway=gateway, available=False, error=error, elapsed_seconds=elapsed_seconds)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'available': self.available}
        if self.status_code is not None:
            result['status_code'] = self.status_code
        if self.error is not None:
            result['error'] = self.error
        return result


@dataclass(frozen=True)
class VerificationResult:
    """Aggregated availability of a CID across all probed gateways."""
    cid: str
    available: bool
    gateway_results: Dict[str, ProbeResult] = field(default_factory=dict)
    checked_at: float = field(default_factory=time.time)

    @property
    def available_count(self) -> int:
        return sum(1 for result in self.gateway_results.values() if result.available)

    @property
    def total_gateways(self) -> int:
        return len(self.gateway_results)

    def to_dict(self) -> Dict[str, Any]:
        """Summary stored on the content record."""
        return {
            'cid': self.cid,
            'available': self.available,
            'available_count': self.available_count,
            'total_gateways': self.total_gateways,
            'checked_at': self.checked_at,
            'gateway_results': {
                gateway: result.to_dict() for gateway, result in self.gateway_results.items()
            },
        }
