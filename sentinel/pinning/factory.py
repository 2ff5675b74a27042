"""
Pinning provider factory.

Returns the configured pinning provider and IPFS node publisher. An
unconfigured provider is still returned so the recovery chain can report
its tier as skipped.
"""

import logging
from typing import Optional

from sentinel.config import IPFSNodeConfig, PinataConfig, load_sentinel_config
from sentinel.pinning.ipfs_node_provider import IPFSNodePublisher
from sentinel.pinning.pinata_provider import PinataProvider

logger = logging.getLogger(__name__)


def get_pin_provider(config: Optional[PinataConfig] = None) -> PinataProvider:
    """Factory: build the pinning provider from the [Pinata] settings."""
    if config is None:
        config = load_sentinel_config().pinata

    provider = PinataProvider(config)
    if not provider.is_configured():
        logger.warning("Pinning service credentials not set; pin-by-hash recovery is disabled")
    return provider


def get_ipfs_publisher(config: Optional[IPFSNodeConfig] = None) -> IPFSNodePublisher:
    """Factory: build the IPFS node publisher from the [IPFS] settings."""
    if config is None:
        config = load_sentinel_config().ipfs

    publisher = IPFSNodePublisher(config)
    if not publisher.is_configured():
        logger.info("IPFS node API not set; restored backups are re-published through the pinning service only")
    return publisher
