"""
Content Sentinel: availability monitoring and recovery for content-addressed storage.

Periodically probes public IPFS gateways for every published content item,
and walks a recovery chain (pinning service, then local backup) when an
item stops resolving.
"""

__version__ = "1.0.0"
