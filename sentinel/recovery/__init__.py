"""
Content recovery for Content Sentinel.

When a CID stops resolving on every gateway, the coordinator escalates
through an ordered chain of tiers:

1. Pin by hash: ask the pinning service to fetch and pin the CID
2. Backup restore: restore the bytes from the local backup and re-publish

Attempts are bounded; an item that exhausts them is marked unrecoverable.
"""

from sentinel.recovery.recovery_coordinator import RecoveryCoordinator
from sentinel.recovery.tiers import PinByHashTier, BackupRestoreTier
from sentinel.recovery.attempt_log import RecoveryAttemptLog
from sentinel.recovery.recovery_metadata import RecoveryOutcome, RecoveryTier, TierResult

__all__ = [
    "RecoveryCoordinator",
    "PinByHashTier",
    "BackupRestoreTier",
    "RecoveryAttemptLog",
    "RecoveryOutcome",
    "RecoveryTier",
    "TierResult",
]
