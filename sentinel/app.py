"""
Wires the Content Sentinel components together from a SentinelConfig.

Usage:
    from sentinel.app import build_sentinel
    from sentinel.config import load_sentinel_config

    app = build_sentinel(load_sentinel_config())
    app.scheduler.start()
    ...
    app.close()
"""

import logging
from dataclasses import dataclass

from sentinel.backup.backup_store import BackupStore
from sentinel.config import SentinelConfig
from sentinel.events import EventBus
from sentinel.gateway.fetcher import GatewayContentFetcher
from sentinel.gateway.probe import GatewayProbe
from sentinel.gateway.quorum import QuorumVerifier
from sentinel.pinning.factory import get_ipfs_publisher, get_pin_provider
from sentinel.pinning.ipfs_node_provider import IPFSNodePublisher
from sentinel.pinning.pinata_provider import PinataProvider
from sentinel.recovery.attempt_log import RecoveryAttemptLog
from sentinel.recovery.recovery_coordinator import RecoveryCoordinator
from sentinel.recovery.tiers import BackupRestoreTier, PinByHashTier
from sentinel.repository.sqlite_repository import SQLiteContentRepository
from sentinel.scheduler.verification_scheduler import VerificationScheduler
from sentinel.sqlite_manager import ThreadLocalSQLiteManager

logger = logging.getLogger(__name__)


@dataclass
class SentinelApp:
    """Every long-lived component, built once per process."""
    config: SentinelConfig
    sqlite_manager: ThreadLocalSQLiteManager
    repository: SQLiteContentRepository
    event_bus: EventBus
    probe: GatewayProbe
    verifier: QuorumVerifier
    fetcher: GatewayContentFetcher
    backup_store: BackupStore
    pin_provider: PinataProvider
    ipfs_publisher: IPFSNodePublisher
    attempt_log: RecoveryAttemptLog
    coordinator: RecoveryCoordinator
    scheduler: VerificationScheduler

    def close(self):
        self.scheduler.stop()
        self.probe.close()
        self.sqlite_manager.close_all()


def build_sentinel(config: SentinelConfig) -> SentinelApp:
    """
    Build the component graph.

    Recovery tiers run pin-by-hash first, then backup restore. Restored bytes
    are re-published through Pinata, or the IPFS node when Pinata is not set up.
    """
    sqlite_manager = ThreadLocalSQLiteManager(config.db_path)
    repository = SQLiteContentRepository(sqlite_manager)
    event_bus = EventBus()

    probe = GatewayProbe(timeout=config.gateways.probe_timeout)
    verifier = QuorumVerifier(probe, config.gateways.gateways)
    fetcher = GatewayContentFetcher(config.gateways.gateways, timeout=config.gateways.fetch_timeout)

    backup_store = BackupStore(config.backup, repository, fetcher, event_bus)
    pin_provider = get_pin_provider(config.pinata)
    ipfs_publisher = get_ipfs_publisher(config.ipfs)
    attempt_log = RecoveryAttemptLog(sqlite_manager)

    coordinator = RecoveryCoordinator(
        tiers=[
            PinByHashTier(pin_provider),
            BackupRestoreTier(backup_store, [pin_provider, ipfs_publisher]),
        ],
        event_bus=event_bus,
        max_attempts=config.scheduler.recovery_attempts,
        attempt_log=attempt_log,
    )
    scheduler = VerificationScheduler(
        config.scheduler, repository, verifier, coordinator, event_bus, backup_store=backup_store
    )

    logger.debug(f"Content Sentinel built with {len(config.gateways.gateways)} gateways, db {config.db_path}")
    return SentinelApp(
        config=config,
        sqlite_manager=sqlite_manager,
        repository=repository,
        event_bus=event_bus,
        probe=probe,
        verifier=verifier,
        fetcher=fetcher,
        backup_store=backup_store,
        pin_provider=pin_provider,
        ipfs_publisher=ipfs_publisher,
        attempt_log=attempt_log,
        coordinator=coordinator,
        scheduler=scheduler,
    )
