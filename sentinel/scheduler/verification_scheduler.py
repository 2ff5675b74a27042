"""
Periodic verification driver.

Each tick selects the items due for a check, verifies them in groups of
concurrent_checks (each group joined before the next starts), hands
unavailable items to the recovery coordinator, and writes one combined
availability patch per item. A separate FIFO queue takes out-of-band
verification requests and drains them one item at a time.
"""

import time
import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Dict, List, Optional

from sentinel.config import SchedulerConfig
from sentinel.constants import QUEUE_DRAIN_DELAY_SECONDS
from sentinel.events import (
    BATCH_COMPLETED, BATCH_ERROR, BATCH_STARTED, CONTENT_UNAVAILABLE,
    WORKER_STARTED, WORKER_STOPPED, EventBus,
)
from sentinel.exceptions import VerificationError
from sentinel.gateway.quorum import QuorumVerifier
from sentinel.gateway.verification_metadata import VerificationResult
from sentinel.repository.base import ContentRecord, ContentRepositoryProtocol, DueSelection
from sentinel.recovery.recovery_coordinator import RecoveryCoordinator
from sentinel.scheduler.worker_stats import WorkerStats


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class VerificationScheduler:
    """
    Drives verification and recovery on a timer.

    At most one verification per content id is in flight at any time, and
    ticks never overlap: a tick that fires while the previous batch is still
    running is skipped.
    """

    def __init__(self, config: SchedulerConfig, repository: ContentRepositoryProtocol,
                 verifier: QuorumVerifier, coordinator: RecoveryCoordinator, event_bus: EventBus,
                 backup_store=None):
        self.config = config
        self.repository = repository
        self.verifier = verifier
        self.coordinator = coordinator
        self.event_bus = event_bus
        self.backup_store = backup_store
        self.stats = WorkerStats()
        self.last_run: Optional[float] = None

        self._state = SchedulerState.STOPPED
        self._state_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._batch_lock = threading.Lock()

        self._checking: set = set()
        self._checking_lock = threading.Lock()

        self._queue: deque = deque()
        self._queue_lock = threading.Lock()
        self._draining = False
        self._drain_timer: Optional[threading.Timer] = None

        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    def start(self, run_immediately: bool = False) -> bool:
        """Start ticking every check_interval seconds. Returns False if already running."""
        with self._state_lock:
            if self._state == SchedulerState.RUNNING:
                return False
            self._state = SchedulerState.RUNNING
            self._generation += 1
            self._schedule_tick(0 if run_immediately else self.config.check_interval, self._generation)

        self._logger.info(f"Verification scheduler started (interval: {self.config.check_interval}s)")
        self.event_bus.emit(WORKER_STARTED, {'config': self._config_dict()})
        return True

    def stop(self) -> bool:
        """Cancel the next tick. A batch already running finishes on its own."""
        with self._state_lock:
            if self._state == SchedulerState.STOPPED:
                return False
            self._state = SchedulerState.STOPPED
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

        self._logger.info("Verification scheduler stopped")
        self.event_bus.emit(WORKER_STOPPED, {})
        return True

    def _schedule_tick(self, delay: float, generation: int):
        """Arm the next tick. Caller holds self._state_lock."""
        self._timer = threading.Timer(delay, self._tick, args=(generation,))
        self._timer.daemon = True
        self._timer.start()

    def _tick(self, generation: int):
        try:
            self.process_batch()
        finally:
            with self._state_lock:
                # a stop/start while this batch ran has already armed a newer chain
                if self._state == SchedulerState.RUNNING and generation == self._generation:
                    self._schedule_tick(self.config.check_interval, generation)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def process_batch(self) -> Optional[Dict[str, Any]]:
        """
        Run one verification pass over the due items.

        Returns a batch summary, or None when the pass was skipped or the
        due-item query failed.
        """
        if not self._batch_lock.acquire(blocking=False):
            self._logger.warning("Previous batch still running, skipping this tick")
            return None

        try:
            start_time = time.time()
            self.last_run = start_time

            selection = DueSelection(
                min_check_interval=self.config.min_check_interval,
                priority_check_interval=self.config.priority_check_interval,
                limit=self.config.batch_size,
                content_types=tuple(self.config.content_types),
                exclude_ids=frozenset(self.currently_checking()),
                now=start_time,
            )

            try:
                items = self.repository.get_due_for_verification(selection)
            except Exception as e:
                self._logger.error(f"Failed to load content due for verification: {e}")
                self.event_bus.emit(BATCH_ERROR, {'error': str(e)})
                return None

            if not items:
                self._logger.debug("No content due for verification")
                return {'count': 0, 'duration': time.time() - start_time}

            self._logger.info(f"Verifying batch of {len(items)} content item(s)")
            self.event_bus.emit(BATCH_STARTED, {'count': len(items)})

            group_size = max(1, self.config.concurrent_checks)
            for start in range(0, len(items), group_size):
                group = items[start:start + group_size]
                with ThreadPoolExecutor(max_workers=len(group), thread_name_prefix="verify") as executor:
                    list(executor.map(self.verify_content, group))

            summary = {
                'count': len(items),
                'duration': time.time() - start_time,
                'statistics': self.stats.snapshot(),
            }
            self._logger.info(f"Batch of {len(items)} completed in {summary['duration']:.2f}s")
            self.event_bus.emit(BATCH_COMPLETED, summary)
            return summary

        except Exception as e:
            self._logger.error(f"Error processing verification batch: {e}")
            self.event_bus.emit(BATCH_ERROR, {'error': str(e)})
            return None
        finally:
            self._batch_lock.release()

    def verify_content(self, record: ContentRecord) -> Optional[VerificationResult]:
        """
        Verify one item, recover it if unavailable, and persist the result.

        Returns None when the item was already being checked or the check
        failed; a failed item keeps its old last_verified and stays due.
        """
        with self._checking_lock:
            if record.content_id in self._checking:
                self._logger.debug(f"Content {record.content_id} is already being verified")
                return None
            self._checking.add(record.content_id)

        try:
            verification = self.verifier.verify(record.cid)
            patch: Dict[str, Any] = {
                'last_verified': verification.checked_at,
                'available': verification.available,
                'verification': verification.to_dict(),
            }

            self.stats.increment('total_checked')
            if verification.available:
                self.stats.increment('total_available')
            else:
                self.stats.increment('total_unavailable')
                self._logger.warning(
                    f"Content {record.content_id} ({record.cid}) is unavailable on all "
                    f"{verification.total_gateways} gateways"
                )
                self.event_bus.emit(CONTENT_UNAVAILABLE, {
                    'content_id': record.content_id,
                    'cid': record.cid,
                    'verification': verification.to_dict(),
                })

                outcome = self.coordinator.recover(record, verification)
                patch.update(outcome.to_patch())
                if not outcome.unrecoverable:
                    self.stats.increment('recovery_attempts')
                    if outcome.success:
                        self.stats.increment('recovery_success')

            self.repository.update_availability(record.content_id, patch)

            if verification.available:
                self._ensure_backup(record)

            return verification

        except Exception as e:
            self._logger.error(str(VerificationError(record.content_id, str(e))))
            return None
        finally:
            with self._checking_lock:
                self._checking.discard(record.content_id)

    def _ensure_backup(self, record: ContentRecord):
        if self.backup_store is None or not self.config.backup_available_content:
            return
        if self.backup_store.has_backup(record.content_id):
            return

        result = self.backup_store.create_backup(record.content_id)
        if not result.success:
            self._logger.warning(f"Could not back up {record.content_id}: {result.error_message}")

    # ------------------------------------------------------------------
    # Priority queue
    # ------------------------------------------------------------------

    def queue_content_for_verification(self, content_id: str) -> bool:
        """Queue an out-of-band check. Returns False for unknown or unverifiable content."""
        record = self.repository.get_by_id(content_id)
        if record is None:
            self._logger.warning(f"Cannot queue unknown content {content_id}")
            return False
        if not record.cid:
            self._logger.warning(f"Cannot queue content {content_id}: no CID")
            return False
        if record.unrecoverable:
            self._logger.warning(f"Cannot queue content {content_id}: marked unrecoverable")
            return False

        with self._queue_lock:
            if content_id not in self._queue:
                self._queue.append(content_id)
            start_drain = not self._draining
            if start_drain:
                self._draining = True
                self._schedule_drain()

        self._logger.info(f"Queued content {content_id} for verification")
        return True

    def _schedule_drain(self):
        """Arm the next drain step. Caller holds self._queue_lock."""
        self._drain_timer = threading.Timer(QUEUE_DRAIN_DELAY_SECONDS, self._drain_queue)
        self._drain_timer.daemon = True
        self._drain_timer.start()

    def _drain_queue(self):
        """Verify one queued item, then re-arm while items remain."""
        with self._queue_lock:
            if not self._queue:
                self._draining = False
                return
            content_id = self._queue.popleft()

        try:
            record = self.repository.get_by_id(content_id)
            if record is not None and record.cid and not record.unrecoverable:
                self.verify_content(record)
        except Exception as e:
            self._logger.error(f"Error processing queued content {content_id}: {e}")
        finally:
            with self._queue_lock:
                if self._queue:
                    self._schedule_drain()
                else:
                    self._draining = False

    # ------------------------------------------------------------------
    # Operator surface
    # ------------------------------------------------------------------

    def currently_checking(self) -> List[str]:
        with self._checking_lock:
            return sorted(self._checking)

    def get_status(self) -> Dict[str, Any]:
        with self._queue_lock:
            queue_length = len(self._queue)
        return {
            'is_running': self.is_running,
            'currently_checking': self.currently_checking(),
            'queue_length': queue_length,
            'statistics': self.stats.snapshot(),
            'config': self._config_dict(),
            'last_run': self.last_run,
        }

    def reset_stats(self):
        self.stats.reset()
        self._logger.info("Worker statistics reset")

    def _config_dict(self) -> Dict[str, Any]:
        return {
            'check_interval': self.config.check_interval,
            'batch_size': self.config.batch_size,
            'concurrent_checks': self.config.concurrent_checks,
            'min_check_interval': self.config.min_check_interval,
            'priority_check_interval': self.config.priority_check_interval,
            'recovery_attempts': self.config.recovery_attempts,
            'content_types': [t.value for t in self.config.content_types],
        }
