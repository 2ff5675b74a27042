"""
Recovery coordinator.

Walks the tier chain for an unavailable item and keeps the attempt
bookkeeping. Per item the states are:

    available -> unavailable -> recovery attempted (n) -> available | unrecoverable

Every cycle counts as an attempt, even when every tier is skipped. Once the
previous attempt count has reached max_attempts the item is marked
unrecoverable and no tier runs again.
"""

import time
import logging
from typing import List, Optional, Sequence

from sentinel.constants import DEFAULT_RECOVERY_ATTEMPTS
from sentinel.events import (
    CONTENT_RECOVERED, CONTENT_RECOVERY_FAILED, CONTENT_UNRECOVERABLE, EventBus,
)
from sentinel.gateway.verification_metadata import VerificationResult
from sentinel.repository.base import ContentRecord
from sentinel.recovery.attempt_log import RecoveryAttemptLog
from sentinel.recovery.recovery_metadata import RecoveryAttempt, RecoveryOutcome, TierResult


class RecoveryCoordinator:
    """Runs the ordered recovery chain for one item at a time."""

    def __init__(self, tiers: Sequence, event_bus: EventBus,
                 max_attempts: int = DEFAULT_RECOVERY_ATTEMPTS,
                 attempt_log: Optional[RecoveryAttemptLog] = None):
        self.tiers = list(tiers)
        self.event_bus = event_bus
        self.max_attempts = max_attempts
        self.attempt_log = attempt_log
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def recover(self, record: ContentRecord,
                verification: Optional[VerificationResult] = None) -> RecoveryOutcome:
        """
        Run one recovery cycle.

        The returned outcome's to_patch() carries the new attempt count and,
        on success, available=True; the caller persists it.
        """
        attempts = record.recovery_attempts + 1
        outcome = RecoveryOutcome(content_id=record.content_id, cid=record.cid, attempts=attempts)

        if record.recovery_attempts >= self.max_attempts:
            outcome.unrecoverable = True
            self._logger.error(
                f"Content {record.content_id} ({record.cid}) has exceeded {self.max_attempts} recovery attempts"
            )
            self.event_bus.emit(CONTENT_UNRECOVERABLE, {
                'content_id': record.content_id,
                'cid': record.cid,
                'attempts': attempts,
            })
            return outcome

        self._logger.info(f"Attempting to recover content {record.content_id} ({record.cid}), attempt {attempts}")
        outcome.tier_results = self._run_tiers(record, attempts)

        winner = next((result for result in outcome.tier_results if result.success), None)
        if winner is not None:
            outcome.success = True
            outcome.tier = winner.tier
            self.event_bus.emit(CONTENT_RECOVERED, {
                'content_id': record.content_id,
                'cid': record.cid,
                'attempts': attempts,
                'tier': winner.tier.value,
            })
        else:
            self._logger.warning(f"Recovery attempt {attempts} failed for content {record.content_id}")
            self.event_bus.emit(CONTENT_RECOVERY_FAILED, {
                'content_id': record.content_id,
                'cid': record.cid,
                'attempts': attempts,
                'errors': [r.error_message for r in outcome.tier_results if r.error_message],
                'available_count': verification.available_count if verification else 0,
            })

        return outcome

    def _run_tiers(self, record: ContentRecord, attempt_number: int) -> List[TierResult]:
        """Try tiers in order, stopping at the first success."""
        results = []
        for tier in self.tiers:
            if not tier.is_available(record):
                result = TierResult.skipped_result(tier.tier, "Tier not available for this content")
                self._logger.debug(f"Skipping {tier.tier.value} for {record.content_id}")
            else:
                try:
                    result = tier.attempt(record, attempt_number)
                except Exception as e:
                    self._logger.error(f"Tier {tier.tier.value} threw exception: {e}")
                    result = TierResult.failure_result(tier.tier, f"Unexpected error: {e}")

            results.append(result)
            self._record_attempt(record, result, attempt_number)

            if result.success:
                break
            if not result.skipped:
                self._logger.debug(f"{tier.tier.value} failed for {record.content_id}: {result.error_message}")

        return results

    def _record_attempt(self, record: ContentRecord, result: TierResult, attempt_number: int):
        if self.attempt_log is None:
            return
        self.attempt_log.record_attempt(RecoveryAttempt(
            content_id=record.content_id,
            cid=record.cid,
            tier=result.tier.value,
            attempt_number=attempt_number,
            attempted_at=time.time(),
            success=result.success,
            skipped=result.skipped,
            error_message=result.error_message,
            duration_seconds=result.duration_seconds,
        ))
