"""
Recovery metadata and result structures.

This module defines the data structures used to track recovery tiers,
per-tier results, the overall outcome of a recovery cycle, and the attempt
rows written to the recovery log.
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class RecoveryTier(Enum):
    """Escalation steps, in the order they are tried."""
    PIN_BY_HASH = "pin_by_hash"
    BACKUP_RESTORE = "backup_restore"


@dataclass
class TierResult:
    """Result of one tier for one content item."""
    tier: RecoveryTier
    success: bool
    skipped: bool = False
    pinned: bool = False
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def success_result(cls, tier: RecoveryTier, pinned: bool = False, duration: float = 0.0) -> 'TierResult':
        return cls(tier=tier, success=True, pinned=pinned, duration_seconds=duration)

    @classmethod
    def failure_result(cls, tier: RecoveryTier, error: str, duration: float = 0.0) -> 'TierResult':
        return cls(tier=tier, success=False, error_message=error, duration_seconds=duration)

    @classmethod
    def skipped_result(cls, tier: RecoveryTier, reason: str) -> 'TierResult':
        return cls(tier=tier, success=False, skipped=True, error_message=reason)


@dataclass
class RecoveryOutcome:
    """Result of one recovery cycle for one content item."""
    content_id: str
    cid: str
    attempts: int
    success: bool = False
    unrecoverable: bool = False
    tier: Optional[RecoveryTier] = None
    tier_results: List[TierResult] = field(default_factory=list)
    attempted_at: float = field(default_factory=time.time)

    @property
    def pinned(self) -> bool:
        return any(result.success and result.pinned for result in self.tier_results)

    def to_patch(self) -> Dict[str, Any]:
        """Availability fields this cycle changes on the content record."""
        patch: Dict[str, Any] = {
            'recovery_attempts': self.attempts,
            'last_recovery_attempt': self.attempted_at,
        }
        if self.unrecoverable:
            patch['unrecoverable'] = True
            return patch

        patch['recovery_success'] = self.success
        if self.success:
            patch['available'] = True
            if self.pinned:
                patch['pinned'] = True
        return patch

    def to_dict(self) -> Dict[str, Any]:
        return {
            'content_id': self.content_id,
            'cid': self.cid,
            'attempts': self.attempts,
            'success': self.success,
            'unrecoverable': self.unrecoverable,
            'tier': self.tier.value if self.tier else None,
            'tiers': [
                {
                    'tier': result.tier.value,
                    'success': result.success,
                    'skipped': result.skipped,
                    'error': result.error_message,
                }
                for result in self.tier_results
            ],
        }


@dataclass
class RecoveryAttempt:
    """Record of a tier attempt for database storage."""
    id: Optional[int] = None
    content_id: str = ""
    cid: str = ""
    tier: str = ""
    attempt_number: int = 0
    attempted_at: float = 0.0
    success: bool = False
    skipped: bool = False
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None

    def __post_init__(self):
        if self.attempted_at == 0.0:
            self.attempted_at = time.time()
