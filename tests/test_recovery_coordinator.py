"""
Tests for the recovery chain: tier ordering, attempt counting, the
unrecoverable cutoff and the events emitted along the way.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import Mock

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from sentinel.backup.backup_metadata import RestoreResult
from sentinel.events import (
    CONTENT_RECOVERED, CONTENT_RECOVERY_FAILED, CONTENT_UNRECOVERABLE, EventBus,
)
from sentinel.exceptions import PinProviderError
from sentinel.gateway import VerificationResult
from sentinel.pinning import PinFileResult, PinResult
from sentinel.recovery import (
    BackupRestoreTier, PinByHashTier, RecoveryAttemptLog, RecoveryCoordinator, RecoveryTier, TierResult,
)
from sentinel.repository import ContentRecord
from sentinel.sqlite_manager import ThreadLocalSQLiteManager


class MockTier:
    """Tier with a scripted outcome."""

    def __init__(self, tier, result=None, available=True, error=None):
        self.tier = tier
        self.result = result
        self.available = available
        self.error = error
        self.calls = []

    def is_available(self, record):
        return self.available

    def attempt(self, record, attempt_number):
        self.calls.append((record.content_id, attempt_number))
        if self.error is not None:
            raise self.error
        return self.result


def _record(**fields):
    fields.setdefault('content_id', "c1")
    fields.setdefault('cid', "QmX")
    fields.setdefault('title', "Intro")
    return ContentRecord(**fields)


class TestRecoveryCoordinator(unittest.TestCase):

    def setUp(self):
        self.event_bus = EventBus()
        self.events = []
        for event in (CONTENT_RECOVERED, CONTENT_RECOVERY_FAILED, CONTENT_UNRECOVERABLE):
            self.event_bus.subscribe(event, lambda payload, event=event: self.events.append((event, payload)))

    def _coordinator(self, *tiers, max_attempts=3, attempt_log=None):
        return RecoveryCoordinator(list(tiers), self.event_bus, max_attempts=max_attempts, attempt_log=attempt_log)

    def test_backup_tier_recovers_after_pin_fails(self):
        """attempts=2, max=3: pin fails, backup succeeds -> attempts 3, success, available."""
        pin = MockTier(RecoveryTier.PIN_BY_HASH, TierResult.failure_result(RecoveryTier.PIN_BY_HASH, "not found"))
        backup = MockTier(RecoveryTier.BACKUP_RESTORE, TierResult.success_result(RecoveryTier.BACKUP_RESTORE, pinned=True))
        coordinator = self._coordinator(pin, backup)

        outcome = coordinator.recover(_record(recovery_attempts=2))

        self.assertTrue(outcome.success)
        self.assertFalse(outcome.unrecoverable)
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(outcome.tier, RecoveryTier.BACKUP_RESTORE)
        self.assertEqual(pin.calls, [("c1", 3)])
        self.assertEqual(backup.calls, [("c1", 3)])

        patch = outcome.to_patch()
        self.assertEqual(patch['recovery_attempts'], 3)
        self.assertTrue(patch['available'])
        self.assertTrue(patch['pinned'])
        self.assertTrue(patch['recovery_success'])
        self.assertNotIn('unrecoverable', patch)

        self.assertEqual([e for e, _ in self.events], [CONTENT_RECOVERED])
        self.assertEqual(self.events[0][1]['tier'], RecoveryTier.BACKUP_RESTORE.value)

    def test_first_success_stops_the_chain(self):
        pin = MockTier(RecoveryTier.PIN_BY_HASH, TierResult.success_result(RecoveryTier.PIN_BY_HASH, pinned=True))
        backup = MockTier(RecoveryTier.BACKUP_RESTORE)
        coordinator = self._coordinator(pin, backup)

        outcome = coordinator.recover(_record())

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.tier, RecoveryTier.PIN_BY_HASH)
        self.assertEqual(backup.calls, [])

    def test_max_attempts_marks_unrecoverable(self):
        """attempts already at max: no tier runs, content becomes unrecoverable."""
        pin = MockTier(RecoveryTier.PIN_BY_HASH)
        coordinator = self._coordinator(pin)

        outcome = coordinator.recover(_record(recovery_attempts=3))

        self.assertTrue(outcome.unrecoverable)
        self.assertFalse(outcome.success)
        self.assertEqual(pin.calls, [])
        self.assertEqual(outcome.to_patch()['unrecoverable'], True)
        self.assertNotIn('available', outcome.to_patch())
        self.assertEqual([e for e, _ in self.events], [CONTENT_UNRECOVERABLE])
        self.assertEqual(self.events[0][1]['content_id'], "c1")

    def test_all_tiers_fail(self):
        pin = MockTier(RecoveryTier.PIN_BY_HASH, TierResult.failure_result(RecoveryTier.PIN_BY_HASH, "pin failed"))
        backup = MockTier(RecoveryTier.BACKUP_RESTORE, available=False)
        coordinator = self._coordinator(pin, backup)
        verification = VerificationResult(cid="QmX", available=False)

        outcome = coordinator.recover(_record(recovery_attempts=1), verification)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(outcome.to_patch()['recovery_success'], False)
        self.assertNotIn('available', outcome.to_patch())
        self.assertTrue(outcome.tier_results[1].skipped)

        event, payload = self.events[0]
        self.assertEqual(event, CONTENT_RECOVERY_FAILED)
        self.assertEqual(payload['errors'][0], "pin failed")
        self.assertEqual(payload['available_count'], 0)

    def test_attempt_counts_even_when_every_tier_is_skipped(self):
        coordinator = self._coordinator(MockTier(RecoveryTier.PIN_BY_HASH, available=False))

        outcome = coordinator.recover(_record())

        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(outcome.to_patch()['recovery_attempts'], 1)

    def test_tier_exception_moves_to_next_tier(self):
        pin = MockTier(RecoveryTier.PIN_BY_HASH, error=RuntimeError("boom"))
        backup = MockTier(RecoveryTier.BACKUP_RESTORE, TierResult.success_result(RecoveryTier.BACKUP_RESTORE))
        coordinator = self._coordinator(pin, backup)

        outcome = coordinator.recover(_record())

        self.assertTrue(outcome.success)
        self.assertIn("boom", outcome.tier_results[0].error_message)

    def test_attempts_are_logged(self):
        temp_dir = tempfile.mkdtemp()
        manager = ThreadLocalSQLiteManager(os.path.join(temp_dir, "attempts.db"))
        try:
            log = RecoveryAttemptLog(manager)
            pin = MockTier(RecoveryTier.PIN_BY_HASH, TierResult.failure_result(RecoveryTier.PIN_BY_HASH, "nope"))
            backup = MockTier(RecoveryTier.BACKUP_RESTORE, available=False)
            coordinator = self._coordinator(pin, backup, attempt_log=log)

            coordinator.recover(_record())

            attempts = log.get_attempts("c1")
            self.assertEqual([a.tier for a in attempts], ["pin_by_hash", "backup_restore"])
            self.assertFalse(attempts[0].success)
            self.assertTrue(attempts[1].skipped)

            stats = log.get_recovery_statistics()
            self.assertEqual(stats["pin_by_hash"]['total_attempts'], 1)
            self.assertEqual(stats["backup_restore"]['skipped'], 1)
        finally:
            manager.close_all()
            shutil.rmtree(temp_dir, ignore_errors=True)


class TestPinByHashTier(unittest.TestCase):

    def setUp(self):
        self.provider = Mock()
        self.provider.is_configured.return_value = True
        self.provider.get_provider_name.return_value = "Pinata"
        self.tier = PinByHashTier(self.provider)

    def test_pins_and_confirms(self):
        self.provider.pin_by_hash.return_value = PinResult(success=True, cid="QmX")
        self.provider.is_pinned.return_value = True

        result = self.tier.attempt(_record(), 2)

        self.assertTrue(result.success)
        self.assertTrue(result.pinned)
        kwargs = self.provider.pin_by_hash.call_args.kwargs
        self.assertEqual(kwargs['name'], "Recovered - Intro")
        self.assertEqual(kwargs['keyvalues']['contentId'], "c1")
        self.assertEqual(kwargs['keyvalues']['recoveryAttempt'], "2")

    def test_untitled_content_name(self):
        self.provider.pin_by_hash.return_value = PinResult(success=True, cid="QmX")
        self.provider.is_pinned.return_value = True

        self.tier.attempt(_record(title=""), 1)

        self.assertEqual(self.provider.pin_by_hash.call_args.kwargs['name'], "Recovered - Untitled Content")

    def test_not_pinned_after_request_is_failure(self):
        self.provider.pin_by_hash.return_value = PinResult(success=True, cid="QmX")
        self.provider.is_pinned.return_value = False

        self.assertFalse(self.tier.attempt(_record(), 1).success)

    def test_provider_error_is_failure(self):
        self.provider.pin_by_hash.side_effect = PinProviderError("server error", status_code=500)

        result = self.tier.attempt(_record(), 1)

        self.assertFalse(result.success)
        self.assertIn("server error", result.error_message)

    def test_unconfigured_provider_is_unavailable(self):
        self.provider.is_configured.return_value = False

        self.assertFalse(self.tier.is_available(_record()))


def _publisher(provider_name, configured=True):
    publisher = Mock()
    publisher.is_configured.return_value = configured
    publisher.get_provider_name.return_value = provider_name
    return publisher


class TestBackupRestoreTier(unittest.TestCase):

    def setUp(self):
        self.store = Mock()
        self.store.has_backup.return_value = True
        self.store.restore_from_backup.return_value = RestoreResult(
            success=True, content_id="c1", data=b"bytes", cid="QmX"
        )
        self.pinata = _publisher("Pinata")
        self.node = _publisher("IPFS node")
        self.tier = BackupRestoreTier(self.store, [self.pinata, self.node])

    def test_restores_and_republishes(self):
        self.pinata.pin_file.return_value = PinFileResult(cid="QmX", size=5)

        result = self.tier.attempt(_record(), 1)

        self.assertTrue(result.success)
        self.assertEqual(self.pinata.pin_file.call_args.args[0], b"bytes")
        self.node.pin_file.assert_not_called()

    def test_unconfigured_pinning_service_republishes_through_node(self):
        self.pinata.is_configured.return_value = False
        self.node.pin_file.return_value = PinFileResult(cid="QmX", size=5)

        self.assertTrue(self.tier.is_available(_record()))
        result = self.tier.attempt(_record(), 1)

        self.assertTrue(result.success)
        self.pinata.pin_file.assert_not_called()
        self.assertEqual(self.node.pin_file.call_args.args[0], b"bytes")

    def test_publisher_error_falls_through_to_next_publisher(self):
        self.pinata.pin_file.side_effect = PinProviderError("server error", status_code=500)
        self.node.pin_file.return_value = PinFileResult(cid="QmX", size=5)

        result = self.tier.attempt(_record(), 1)

        self.assertTrue(result.success)

    def test_cid_mismatch_is_failure(self):
        self.pinata.pin_file.return_value = PinFileResult(cid="QmOther", size=5)
        self.node.pin_file.return_value = PinFileResult(cid="QmOther", size=5)

        result = self.tier.attempt(_record(), 1)

        self.assertFalse(result.success)
        self.assertIn("CID mismatch", result.error_message)
        self.assertIn("IPFS node", result.error_message)

    def test_restore_failure(self):
        self.store.restore_from_backup.return_value = RestoreResult.failure_result("c1", "Backup file missing", True)

        result = self.tier.attempt(_record(), 1)

        self.assertFalse(result.success)
        self.pinata.pin_file.assert_not_called()
        self.node.pin_file.assert_not_called()

    def test_availability_requires_backup_and_a_configured_publisher(self):
        self.assertTrue(self.tier.is_available(_record()))

        self.store.has_backup.return_value = False
        self.assertFalse(self.tier.is_available(_record()))

        self.store.has_backup.return_value = True
        self.pinata.is_configured.return_value = False
        self.node.is_configured.return_value = False
        self.assertFalse(self.tier.is_available(_record()))

    def test_chain_recovers_from_backup_without_pinning_credentials(self):
        """No pinning credentials: pin tier is skipped and the backup is re-published."""
        self.pinata.is_configured.return_value = False
        self.node.pin_file.return_value = PinFileResult(cid="QmX", size=5)
        events = []
        event_bus = EventBus()
        event_bus.subscribe(CONTENT_RECOVERED, events.append)
        coordinator = RecoveryCoordinator(
            [PinByHashTier(self.pinata), self.tier], event_bus, max_attempts=3
        )

        outcome = coordinator.recover(_record())

        self.assertTrue(outcome.success)
        self.assertTrue(outcome.tier_results[0].skipped)
        self.assertEqual(outcome.tier, RecoveryTier.BACKUP_RESTORE)
        self.assertEqual(len(events), 1)


if __name__ == '__main__':
    unittest.main()
