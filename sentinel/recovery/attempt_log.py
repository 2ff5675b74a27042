"""
SQLite log of recovery tier attempts.

Every tier the coordinator runs (or skips) is written here for analytics:
which tier recovers content, how often, and how long it takes. Failures to
write the log are logged and never interrupt recovery.
"""

import time
import sqlite3
import logging
from typing import Any, Dict, List

from sentinel.sqlite_manager import ThreadLocalSQLiteManager
from sentinel.recovery.recovery_metadata import RecoveryAttempt


class RecoveryAttemptLog:
    """Persists RecoveryAttempt rows and aggregates them per tier."""

    def __init__(self, sqlite_manager: ThreadLocalSQLiteManager):
        self.sqlite_manager = sqlite_manager
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._ensure_tables()

    def _ensure_tables(self):
        """Create the recovery_attempts table if it doesn't exist."""
        try:
            with self.sqlite_manager.get_connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS recovery_attempts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        content_id TEXT NOT NULL,
                        cid TEXT NOT NULL,
                        tier TEXT NOT NULL,
                        attempt_number INTEGER NOT NULL,
                        attempted_at REAL NOT NULL,
                        success INTEGER NOT NULL,
                        skipped INTEGER NOT NULL DEFAULT 0,
                        error_message TEXT,
                        duration_seconds REAL
                    )
                """)

                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_recovery_attempts_content
                    ON recovery_attempts(content_id)
                """)

                # Composite index for statistics queries
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_recovery_attempts_stats
                    ON recovery_attempts(tier, attempted_at, success)
                """)

                conn.commit()
                self._logger.debug("Recovery attempt table initialized")

        except sqlite3.Error as e:
            self._logger.error(f"Failed to initialize recovery attempt table: {e}")

    def record_attempt(self, attempt: RecoveryAttempt) -> bool:
        """Record a tier attempt for analytics."""
        try:
            with self.sqlite_manager.get_connection() as conn:
                conn.execute("""
                    INSERT INTO recovery_attempts
                    (content_id, cid, tier, attempt_number, attempted_at, success,
                     skipped, error_message, duration_seconds)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    attempt.content_id,
                    attempt.cid,
                    attempt.tier,
                    attempt.attempt_number,
                    attempt.attempted_at,
                    1 if attempt.success else 0,
                    1 if attempt.skipped else 0,
                    attempt.error_message,
                    attempt.duration_seconds
                ))
                conn.commit()

            self._logger.debug(f"Recorded {attempt.tier} attempt for {attempt.content_id}")
            return True

        except sqlite3.Error as e:
            self._logger.error(f"Failed to record recovery attempt: {e}")
            return False

    def get_attempts(self, content_id: str) -> List[RecoveryAttempt]:
        """All logged attempts for one content item, oldest first."""
        try:
            rows = self.sqlite_manager.fetch_all("""
                SELECT id, content_id, cid, tier, attempt_number, attempted_at, success,
                       skipped, error_message, duration_seconds
                FROM recovery_attempts
                WHERE content_id = ?
                ORDER BY attempted_at ASC, id ASC
            """, (content_id,))
        except sqlite3.Error as e:
            self._logger.error(f"Failed to load recovery attempts for {content_id}: {e}")
            return []

        return [
            RecoveryAttempt(
                id=row['id'],
                content_id=row['content_id'],
                cid=row['cid'],
                tier=row['tier'],
                attempt_number=row['attempt_number'],
                attempted_at=row['attempted_at'],
                success=bool(row['success']),
                skipped=bool(row['skipped']),
                error_message=row['error_message'],
                duration_seconds=row['duration_seconds'],
            )
            for row in rows
        ]

    def get_recovery_statistics(self, days: int = 30) -> Dict[str, Any]:
        """Per-tier attempt counts and success rates for the last N days."""
        try:
            cutoff_time = time.time() - (days * 24 * 3600)
            rows = self.sqlite_manager.fetch_all("""
                SELECT tier, COUNT(*), SUM(success), SUM(skipped), AVG(duration_seconds)
                FROM recovery_attempts
                WHERE attempted_at > ?
                GROUP BY tier
            """, (cutoff_time,))
        except sqlite3.Error as e:
            self._logger.error(f"Failed to get recovery statistics: {e}")
            return {}

        stats = {}
        for tier, total, successes, skipped, avg_duration in rows:
            tried = total - (skipped or 0)
            stats[tier] = {
                'total_attempts': total,
                'skipped': skipped or 0,
                'successful': successes or 0,
                'success_rate': (successes or 0) / tried if tried > 0 else 0,
                'average_duration': avg_duration or 0
            }
        return stats
