"""
Gateway verification for Content Sentinel.

Probes public IPFS gateways with HEAD requests to decide whether a CID is
still resolvable, and fetches content bytes for backups.
"""

from sentinel.gateway.verification_metadata import ProbeResult, VerificationResult
from sentinel.gateway.probe import GatewayProbe, build_gateway_session
from sentinel.gateway.quorum import QuorumVerifier
from sentinel.gateway.fetcher import GatewayContentFetcher

__all__ = [
    "ProbeResult",
    "VerificationResult",
    "GatewayProbe",
    "build_gateway_session",
    "QuorumVerifier",
    "GatewayContentFetcher",
]
