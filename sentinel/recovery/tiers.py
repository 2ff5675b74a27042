"""
Recovery tiers.

Each tier reports whether it can run for an item (is_available) and makes
one attempt (attempt). Known failures of the backing services come back as
failed TierResults so the coordinator can move on to the next tier.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

import requests

from sentinel.backup.backup_store import BackupStore
from sentinel.exceptions import BackupError, RecoveryProviderError
from sentinel.pinning.base import ContentPublisherProtocol, PinProviderProtocol
from sentinel.repository.base import ContentRecord
from sentinel.recovery.recovery_metadata import RecoveryTier, TierResult


def _pin_name(record: ContentRecord) -> str:
    return f"Recovered - {record.title or 'Untitled Content'}"


def _pin_keyvalues(record: ContentRecord, attempt_number: int) -> Dict[str, Any]:
    return {
        'contentId': record.content_id,
        'recoveryAttempt': str(attempt_number),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


class PinByHashTier:
    """Ask the pinning service to fetch the CID from the network and pin it."""

    tier = RecoveryTier.PIN_BY_HASH

    def __init__(self, provider: PinProviderProtocol):
        self.provider = provider
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def is_available(self, record: ContentRecord) -> bool:
        return self.provider.is_configured()

    def attempt(self, record: ContentRecord, attempt_number: int) -> TierResult:
        start_time = time.time()
        try:
            self.provider.pin_by_hash(
                record.cid, name=_pin_name(record), keyvalues=_pin_keyvalues(record, attempt_number)
            )
            pinned = self.provider.is_pinned(record.cid)
        except (RecoveryProviderError, requests.exceptions.RequestException) as e:
            return TierResult.failure_result(self.tier, f"Pin by hash failed: {e}", time.time() - start_time)

        if not pinned:
            return TierResult.failure_result(
                self.tier, "Pin request accepted but CID is not pinned", time.time() - start_time
            )

        self._logger.info(f"Recovered {record.content_id} ({record.cid}) with {self.provider.get_provider_name()}")
        return TierResult.success_result(self.tier, pinned=True, duration=time.time() - start_time)


class BackupRestoreTier:
    """
    Restore the bytes from the local backup and re-publish them.

    Publishers are tried in order, skipping any that are not configured, so
    an IPFS node can re-publish when the pinning service has no credentials.
    """

    tier = RecoveryTier.BACKUP_RESTORE

    def __init__(self, backup_store: BackupStore, publishers: Sequence[ContentPublisherProtocol]):
        self.backup_store = backup_store
        self.publishers = list(publishers)
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _configured_publishers(self) -> List[ContentPublisherProtocol]:
        return [publisher for publisher in self.publishers if publisher.is_configured()]

    def is_available(self, record: ContentRecord) -> bool:
        return bool(self._configured_publishers()) and self.backup_store.has_backup(record.content_id)

    def attempt(self, record: ContentRecord, attempt_number: int) -> TierResult:
        start_time = time.time()

        restored = self.backup_store.restore_from_backup(record.content_id)
        if not restored.success:
            return TierResult.failure_result(
                self.tier, f"Restore failed: {restored.error_message}", time.time() - start_time
            )

        errors = []
        for publisher in self._configured_publishers():
            provider_name = publisher.get_provider_name()
            try:
                published = publisher.pin_file(
                    restored.data, name=_pin_name(record), keyvalues=_pin_keyvalues(record, attempt_number)
                )
            except (RecoveryProviderError, BackupError, requests.exceptions.RequestException) as e:
                self._logger.warning(f"Re-publish of {record.content_id} through {provider_name} failed: {e}")
                errors.append(f"Re-publish failed ({provider_name}): {e}")
                continue

            if published.cid != record.cid:
                self._logger.warning(
                    f"Re-published {record.content_id} as {published.cid} through {provider_name}, "
                    f"expected {record.cid}"
                )
                errors.append(f"CID mismatch after re-publish ({provider_name}): {published.cid}")
                continue

            self._logger.info(f"Recovered {record.content_id} ({record.cid}) from local backup via {provider_name}")
            return TierResult.success_result(self.tier, pinned=True, duration=time.time() - start_time)

        return TierResult.failure_result(
            self.tier, "; ".join(errors) or "No publisher configured", time.time() - start_time
        )
