"""
Tests for the verification scheduler: batch processing, bounded
concurrency, the in-flight guard, the out-of-band queue and lifecycle.

Gateways are replaced by a scripted verifier; content lives in a real
SQLite repository in a temporary directory.
"""

import os
import sys
import time
import shutil
import tempfile
import threading
import unittest
from unittest.mock import Mock

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from sentinel.backup.backup_metadata import BackupResult
from sentinel.config import SchedulerConfig
from sentinel.events import (
    BATCH_COMPLETED, BATCH_ERROR, BATCH_STARTED, CONTENT_UNAVAILABLE, CONTENT_UNRECOVERABLE,
    WORKER_STARTED, WORKER_STOPPED, EventBus,
)
from sentinel.exceptions import RepositoryError
from sentinel.gateway import ProbeResult, VerificationResult
from sentinel.recovery import RecoveryCoordinator, RecoveryTier, TierResult
from sentinel.repository import ContentRecord, SQLiteContentRepository
from sentinel.scheduler import VerificationScheduler
from sentinel.sqlite_manager import ThreadLocalSQLiteManager


class ScriptedVerifier:
    """Returns availability per CID and tracks concurrency."""

    def __init__(self, unavailable=(), delay=0.0):
        self.unavailable = set(unavailable)
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def verify(self, cid, gateways=None):
        with self._lock:
            self.calls.append(cid)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            available = cid not in self.unavailable
            return VerificationResult(cid=cid, available=available, gateway_results={
                'ipfs.io': ProbeResult(gateway='ipfs.io', available=available, status_code=200 if available else 404),
            })
        finally:
            with self._lock:
                self.active -= 1


class FailingTier:
    tier = RecoveryTier.PIN_BY_HASH

    def is_available(self, record):
        return True

    def attempt(self, record, attempt_number):
        return TierResult.failure_result(self.tier, "not retrievable")


def _wait_for(condition, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return False


class SchedulerTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.manager = ThreadLocalSQLiteManager(os.path.join(self.temp_dir, "content.db"))
        self.repository = SQLiteContentRepository(self.manager)
        self.event_bus = EventBus()
        self.events = []
        for event in (BATCH_STARTED, BATCH_COMPLETED, BATCH_ERROR, CONTENT_UNAVAILABLE,
                      CONTENT_UNRECOVERABLE, WORKER_STARTED, WORKER_STOPPED):
            self.event_bus.subscribe(event, lambda payload, event=event: self.events.append((event, payload)))
        self.config = SchedulerConfig(check_interval=3600, batch_size=50, concurrent_checks=5,
                                      recovery_attempts=3, backup_available_content=False)
        self.coordinator = RecoveryCoordinator([FailingTier()], self.event_bus, max_attempts=3)

    def tearDown(self):
        self.manager.close_all()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _scheduler(self, verifier, backup_store=None, repository=None):
        self.scheduler = VerificationScheduler(
            self.config, repository or self.repository, verifier, self.coordinator, self.event_bus,
            backup_store=backup_store,
        )
        self.addCleanup(self.scheduler.stop)
        return self.scheduler

    def _add(self, content_id, **fields):
        fields.setdefault('cid', f"Qm{content_id}")
        self.repository.upsert(ContentRecord(content_id=content_id, **fields))

    def _event_names(self):
        return [event for event, _ in self.events]


class TestProcessBatch(SchedulerTestCase):

    def test_available_content_is_recorded(self):
        self._add("a")
        scheduler = self._scheduler(ScriptedVerifier())

        summary = scheduler.process_batch()

        self.assertEqual(summary['count'], 1)
        record = self.repository.get_by_id("a")
        self.assertTrue(record.available)
        self.assertIsNotNone(record.last_verified)
        self.assertEqual(record.verification['available_count'], 1)
        self.assertEqual(record.recovery_attempts, 0)
        self.assertEqual(self._event_names(), [BATCH_STARTED, BATCH_COMPLETED])
        self.assertEqual(scheduler.get_status()['statistics']['total_available'], 1)

    def test_unavailable_content_counts_one_recovery_attempt(self):
        self._add("a", recovery_attempts=1)
        scheduler = self._scheduler(ScriptedVerifier(unavailable={"Qma"}))

        scheduler.process_batch()

        record = self.repository.get_by_id("a")
        self.assertFalse(record.available)
        self.assertEqual(record.recovery_attempts, 2)
        self.assertFalse(record.recovery_success)
        self.assertIsNotNone(record.last_recovery_attempt)
        self.assertIn(CONTENT_UNAVAILABLE, self._event_names())

        stats = scheduler.get_status()['statistics']
        self.assertEqual(stats['total_unavailable'], 1)
        self.assertEqual(stats['recovery_attempts'], 1)
        self.assertEqual(stats['recovery_success'], 0)

    def test_exhausted_content_becomes_unrecoverable_and_leaves_rotation(self):
        self._add("a", recovery_attempts=3)
        verifier = ScriptedVerifier(unavailable={"Qma"})
        scheduler = self._scheduler(verifier)

        scheduler.process_batch()

        record = self.repository.get_by_id("a")
        self.assertTrue(record.unrecoverable)
        self.assertIn(CONTENT_UNRECOVERABLE, self._event_names())

        self.repository.update_availability("a", {'last_verified': None})
        self.assertEqual(scheduler.process_batch()['count'], 0)
        self.assertEqual(verifier.calls, ["Qma"])

    def test_recently_verified_content_is_not_due(self):
        self._add("a", last_verified=time.time())
        verifier = ScriptedVerifier()
        scheduler = self._scheduler(verifier)

        self.assertEqual(scheduler.process_batch()['count'], 0)
        self.assertEqual(verifier.calls, [])
        self.assertNotIn(BATCH_STARTED, self._event_names())

    def test_batch_size_caps_items_per_tick(self):
        for i in range(7):
            self._add(f"item-{i}")
        self.config.batch_size = 4
        verifier = ScriptedVerifier()
        scheduler = self._scheduler(verifier)

        self.assertEqual(scheduler.process_batch()['count'], 4)
        self.assertEqual(scheduler.process_batch()['count'], 3)
        self.assertEqual(len(verifier.calls), 7)

    def test_concurrency_is_bounded(self):
        for i in range(6):
            self._add(f"item-{i}")
        self.config.concurrent_checks = 2
        verifier = ScriptedVerifier(delay=0.05)
        scheduler = self._scheduler(verifier)

        scheduler.process_batch()

        self.assertEqual(len(verifier.calls), 6)
        self.assertLessEqual(verifier.max_active, 2)

    def test_repository_failure_aborts_tick(self):
        repository = Mock()
        repository.get_due_for_verification.side_effect = RepositoryError("database is locked")
        scheduler = self._scheduler(ScriptedVerifier(), repository=repository)

        self.assertIsNone(scheduler.process_batch())
        self.assertEqual(self._event_names(), [BATCH_ERROR])
        self.assertIn("database is locked", self.events[0][1]['error'])

    def test_item_failure_leaves_item_due(self):
        self._add("a")
        self._add("b")
        verifier = ScriptedVerifier()
        original_verify = verifier.verify

        def flaky_verify(cid, gateways=None):
            if cid == "Qma":
                raise RuntimeError("network is down")
            return original_verify(cid, gateways)

        verifier.verify = flaky_verify
        scheduler = self._scheduler(verifier)

        summary = scheduler.process_batch()

        self.assertEqual(summary['count'], 2)
        self.assertIsNone(self.repository.get_by_id("a").last_verified)
        self.assertTrue(self.repository.get_by_id("b").available)
        self.assertIn(BATCH_COMPLETED, self._event_names())

    def test_overlapping_tick_is_skipped(self):
        self._add("a")
        verifier = ScriptedVerifier()
        scheduler = self._scheduler(verifier)

        scheduler._batch_lock.acquire()
        try:
            self.assertIsNone(scheduler.process_batch())
        finally:
            scheduler._batch_lock.release()
        self.assertEqual(verifier.calls, [])

    def test_available_content_is_backed_up(self):
        self._add("a")
        self.config.backup_available_content = True
        backup_store = Mock()
        backup_store.has_backup.return_value = False
        backup_store.create_backup.return_value = BackupResult(success=True, content_id="a")
        scheduler = self._scheduler(ScriptedVerifier(), backup_store=backup_store)

        scheduler.process_batch()

        backup_store.create_backup.assert_called_once_with("a")

    def test_existing_backup_is_not_recreated(self):
        self._add("a")
        self.config.backup_available_content = True
        backup_store = Mock()
        backup_store.has_backup.return_value = True
        scheduler = self._scheduler(ScriptedVerifier(), backup_store=backup_store)

        scheduler.process_batch()

        backup_store.create_backup.assert_not_called()


class TestInFlightGuard(SchedulerTestCase):

    def test_same_item_is_not_verified_twice_concurrently(self):
        self._add("a")
        release = threading.Event()
        entered = threading.Event()
        verifier = ScriptedVerifier()
        original_verify = verifier.verify

        def blocking_verify(cid, gateways=None):
            entered.set()
            release.wait(3)
            return original_verify(cid, gateways)

        verifier.verify = blocking_verify
        scheduler = self._scheduler(verifier)
        record = self.repository.get_by_id("a")

        worker = threading.Thread(target=scheduler.verify_content, args=(record,))
        worker.start()
        try:
            self.assertTrue(entered.wait(3))
            self.assertEqual(scheduler.currently_checking(), ["a"])
            self.assertIsNone(scheduler.verify_content(record))
        finally:
            release.set()
            worker.join(3)

        self.assertEqual(verifier.calls, ["Qma"])
        self.assertEqual(scheduler.currently_checking(), [])


class TestQueue(SchedulerTestCase):

    def test_queue_rejects_unknown_and_unverifiable_content(self):
        self._add("no-cid", cid=None)
        self._add("gone", unrecoverable=True)
        scheduler = self._scheduler(ScriptedVerifier())

        self.assertFalse(scheduler.queue_content_for_verification("missing"))
        self.assertFalse(scheduler.queue_content_for_verification("no-cid"))
        self.assertFalse(scheduler.queue_content_for_verification("gone"))
        self.assertEqual(scheduler.get_status()['queue_length'], 0)

    def test_queued_items_are_verified_in_order(self):
        self._add("a", last_verified=time.time())
        self._add("b", last_verified=time.time())
        verifier = ScriptedVerifier()
        scheduler = self._scheduler(verifier)

        self.assertTrue(scheduler.queue_content_for_verification("a"))
        self.assertTrue(scheduler.queue_content_for_verification("b"))

        self.assertTrue(_wait_for(lambda: len(verifier.calls) == 2))
        self.assertEqual(verifier.calls, ["Qma", "Qmb"])
        self.assertTrue(_wait_for(lambda: self.repository.get_by_id("b").verification is not None))
        self.assertEqual(scheduler.get_status()["queue_length"], 0)

    def test_queue_works_while_scheduler_is_stopped(self):
        self._add("a")
        verifier = ScriptedVerifier()
        scheduler = self._scheduler(verifier)

        self.assertFalse(scheduler.is_running)
        scheduler.queue_content_for_verification("a")

        self.assertTrue(_wait_for(lambda: self.repository.get_by_id("a").available is True))


class TestLifecycle(SchedulerTestCase):

    def test_start_and_stop_are_idempotent(self):
        scheduler = self._scheduler(ScriptedVerifier())

        self.assertTrue(scheduler.start())
        self.assertFalse(scheduler.start())
        self.assertTrue(scheduler.is_running)

        self.assertTrue(scheduler.stop())
        self.assertFalse(scheduler.stop())
        self.assertFalse(scheduler.is_running)

        self.assertEqual(self._event_names(), [WORKER_STARTED, WORKER_STOPPED])

    def test_run_immediately_processes_a_batch(self):
        self._add("a")
        verifier = ScriptedVerifier()
        scheduler = self._scheduler(verifier)

        scheduler.start(run_immediately=True)

        self.assertTrue(_wait_for(lambda: self.repository.get_by_id("a").available is True))
        self.assertEqual(verifier.calls, ["Qma"])
        self.assertIsNotNone(scheduler.get_status()["last_run"])

    def test_restart_during_batch_keeps_a_single_tick_chain(self):
        self._add("a")
        verifier = ScriptedVerifier(delay=0.3)
        scheduler = self._scheduler(verifier)

        scheduler.start(run_immediately=True)
        first_timer = scheduler._timer
        self.assertTrue(_wait_for(lambda: verifier.calls == ["Qma"]))

        scheduler.stop()
        scheduler.start()
        restarted_timer = scheduler._timer

        first_timer.join(timeout=3.0)
        self.assertFalse(first_timer.is_alive())
        self.assertIs(scheduler._timer, restarted_timer)

        scheduler.stop()
        self.assertTrue(restarted_timer.finished.is_set())

    def test_status_shape(self):
        scheduler = self._scheduler(ScriptedVerifier())

        status = scheduler.get_status()

        self.assertEqual(
            set(status), {'is_running', 'currently_checking', 'queue_length', 'statistics', 'config', 'last_run'}
        )
        self.assertEqual(status['config']['check_interval'], 3600)
        self.assertEqual(status['statistics']['total_checked'], 0)

    def test_reset_stats(self):
        self._add("a")
        scheduler = self._scheduler(ScriptedVerifier())
        scheduler.process_batch()
        self.assertEqual(scheduler.get_status()['statistics']['total_checked'], 1)

        scheduler.reset_stats()

        self.assertEqual(scheduler.get_status()['statistics']['total_checked'], 0)


if __name__ == '__main__':
    unittest.main()
