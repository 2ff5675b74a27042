"""
Verification scheduling for Content Sentinel.

Usage:
    from sentinel.scheduler import VerificationScheduler

    scheduler = VerificationScheduler(config.scheduler, repository, verifier, coordinator, event_bus)
    scheduler.start()
"""

from sentinel.scheduler.verification_scheduler import SchedulerState, VerificationScheduler
from sentinel.scheduler.worker_stats import WorkerStats

__all__ = [
    "SchedulerState",
    "VerificationScheduler",
    "WorkerStats",
]
