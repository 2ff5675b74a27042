"""
SQLite-backed content repository.

Lets the engine run standalone: content rows are registered with upsert()
(or the CLI `register` command) and the scheduler reads due items and
writes availability patches back through the ContentRepositoryProtocol.
"""

import json
import time
import sqlite3
import logging
from typing import Any, Dict, List, Optional

from sentinel.constants import PRIORITY_VIEW_THRESHOLD, HIGH_PRIORITY
from sentinel.exceptions import RepositoryError
from sentinel.sqlite_manager import ThreadLocalSQLiteManager
from sentinel.repository.base import (
    AVAILABILITY_FIELDS, ContentRecord, ContentStatus, ContentType, DueSelection,
)

_COLUMNS = (
    "content_id, cid, title, content_type, status, priority, views, metadata_json, "
    "available, pinned, last_verified, recovery_attempts, unrecoverable, "
    "last_recovery_attempt, recovery_success, verification_json"
)


def _to_optional_bool(value) -> Optional[bool]:
    return None if value is None else bool(value)


def _to_db_bool(value) -> Optional[int]:
    return None if value is None else (1 if value else 0)


class SQLiteContentRepository:
    """ContentRepositoryProtocol implementation on a single SQLite table."""

    def __init__(self, sqlite_manager: ThreadLocalSQLiteManager):
        self.sqlite_manager = sqlite_manager
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._ensure_tables()

    def _ensure_tables(self):
        """Create the content table and indexes if they don't exist."""
        try:
            with self.sqlite_manager.get_connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS content (
                        content_id TEXT PRIMARY KEY,
                        cid TEXT,
                        title TEXT NOT NULL DEFAULT '',
                        content_type TEXT NOT NULL,
                        status TEXT NOT NULL,
                        priority TEXT NOT NULL DEFAULT 'normal',
                        views INTEGER NOT NULL DEFAULT 0,
                        metadata_json TEXT,
                        available INTEGER,
                        pinned INTEGER NOT NULL DEFAULT 0,
                        last_verified REAL,
                        recovery_attempts INTEGER NOT NULL DEFAULT 0,
                        unrecoverable INTEGER NOT NULL DEFAULT 0,
                        last_recovery_attempt REAL,
                        recovery_success INTEGER,
                        verification_json TEXT,
                        updated_at REAL NOT NULL
                    )
                """)

                # Composite index for the due-selection query
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_content_due
                    ON content(status, content_type, unrecoverable, last_verified)
                """)

                conn.commit()
                self._logger.debug("Content tables initialized")

        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to initialize content tables: {e}") from e

    def _row_to_record(self, row: sqlite3.Row) -> ContentRecord:
        return ContentRecord(
            content_id=row['content_id'],
            cid=row['cid'],
            title=row['title'],
            content_type=ContentType(row['content_type']),
            status=ContentStatus(row['status']),
            priority=row['priority'],
            views=row['views'],
            metadata=json.loads(row['metadata_json']) if row['metadata_json'] else {},
            available=_to_optional_bool(row['available']),
            pinned=bool(row['pinned']),
            last_verified=row['last_verified'],
            recovery_attempts=row['recovery_attempts'],
            unrecoverable=bool(row['unrecoverable']),
            last_recovery_attempt=row['last_recovery_attempt'],
            recovery_success=_to_optional_bool(row['recovery_success']),
            verification=json.loads(row['verification_json']) if row['verification_json'] else None,
        )

    def upsert(self, record: ContentRecord) -> None:
        """Insert or replace a content row, including its availability state."""
        try:
            with self.sqlite_manager.get_connection() as conn:
                conn.execute(f"""
                    INSERT OR REPLACE INTO content ({_COLUMNS}, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.content_id,
                    record.cid,
                    record.title,
                    record.content_type.value,
                    record.status.value,
                    record.priority,
                    record.views,
                    json.dumps(record.metadata) if record.metadata else None,
                    _to_db_bool(record.available),
                    1 if record.pinned else 0,
                    record.last_verified,
                    record.recovery_attempts,
                    1 if record.unrecoverable else 0,
                    record.last_recovery_attempt,
                    _to_db_bool(record.recovery_success),
                    json.dumps(record.verification) if record.verification else None,
                    time.time(),
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to store content {record.content_id}: {e}") from e

    def get_by_id(self, content_id: str) -> Optional[ContentRecord]:
        try:
            row = self.sqlite_manager.fetch_one(
                f"SELECT {_COLUMNS} FROM content WHERE content_id = ?", (content_id,)
            )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to load content {content_id}: {e}") from e
        return self._row_to_record(row) if row else None

    def get_due_for_verification(self, selection: DueSelection) -> List[ContentRecord]:
        """
        Items due for a check, never-verified first, then the stalest.

        Mirrors DueSelection.is_due(): priority items (priority 'high' or
        views above the threshold) use the priority interval.
        """
        if selection.limit <= 0 or not selection.statuses or not selection.content_types:
            return []

        params: List[Any] = []
        status_marks = ", ".join("?" for _ in selection.statuses)
        params.extend(s.value for s in selection.statuses)
        type_marks = ", ".join("?" for _ in selection.content_types)
        params.extend(t.value for t in selection.content_types)

        exclude_clause = ""
        if selection.exclude_ids:
            exclude_clause = f"AND content_id NOT IN ({', '.join('?' for _ in selection.exclude_ids)})"
            params.extend(sorted(selection.exclude_ids))

        params.extend([
            selection.now,
            HIGH_PRIORITY,
            PRIORITY_VIEW_THRESHOLD,
            selection.priority_check_interval,
            selection.min_check_interval,
            selection.limit,
        ])

        query = f"""
            SELECT {_COLUMNS} FROM content
            WHERE status IN ({status_marks})
              AND content_type IN ({type_marks})
              AND unrecoverable = 0
              AND cid IS NOT NULL AND cid != ''
              {exclude_clause}
              AND (
                  last_verified IS NULL
                  OR ? - last_verified >= CASE
                      WHEN priority = ? OR views > ? THEN ?
                      ELSE ?
                  END
              )
            ORDER BY last_verified IS NOT NULL, last_verified ASC
            LIMIT ?
        """

        try:
            rows = self.sqlite_manager.fetch_all(query, tuple(params))
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to query due content: {e}") from e

        return [self._row_to_record(row) for row in rows]

    def update_availability(self, content_id: str, patch: Dict[str, Any]) -> bool:
        """
        Apply an availability patch in one UPDATE.

        recovery_attempts only moves forward and unrecoverable never clears,
        whatever the patch says.
        """
        unknown = set(patch) - AVAILABILITY_FIELDS
        if unknown:
            raise ValueError(f"Unsupported availability fields: {', '.join(sorted(unknown))}")
        if not patch:
            return self.get_by_id(content_id) is not None

        assignments = []
        params: List[Any] = []
        for key, value in patch.items():
            if key == 'recovery_attempts':
                assignments.append("recovery_attempts = MAX(recovery_attempts, ?)")
                params.append(int(value))
            elif key == 'unrecoverable':
                assignments.append("unrecoverable = MAX(unrecoverable, ?)")
                params.append(1 if value else 0)
            elif key == 'verification':
                assignments.append("verification_json = ?")
                params.append(json.dumps(value) if value is not None else None)
            elif key in ('available', 'pinned', 'recovery_success'):
                assignments.append(f"{key} = ?")
                params.append(_to_db_bool(value))
            else:
                assignments.append(f"{key} = ?")
                params.append(value)

        assignments.append("updated_at = ?")
        params.append(time.time())
        params.append(content_id)

        try:
            with self.sqlite_manager.get_connection() as conn:
                cursor = conn.execute(
                    f"UPDATE content SET {', '.join(assignments)} WHERE content_id = ?",
                    tuple(params)
                )
                conn.commit()
                updated = cursor.rowcount > 0
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to update availability for {content_id}: {e}") from e

        if not updated:
            self._logger.warning(f"Availability update for unknown content {content_id}")
        return updated

    def search(self, statuses: Optional[List[ContentStatus]] = None,
               content_types: Optional[List[ContentType]] = None) -> List[ContentRecord]:
        clauses = []
        params: List[Any] = []
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if content_types:
            clauses.append(f"content_type IN ({', '.join('?' for _ in content_types)})")
            params.extend(t.value for t in content_types)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            rows = self.sqlite_manager.fetch_all(
                f"SELECT {_COLUMNS} FROM content {where} ORDER BY content_id", tuple(params)
            )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to search content: {e}") from e

        return [self._row_to_record(row) for row in rows]

    def count_by_state(self) -> Dict[str, int]:
        """Availability breakdown for the status command."""
        try:
            row = self.sqlite_manager.fetch_one("""
                SELECT COUNT(*),
                       SUM(CASE WHEN available = 1 THEN 1 ELSE 0 END),
                       SUM(CASE WHEN available = 0 AND unrecoverable = 0 THEN 1 ELSE 0 END),
                       SUM(CASE WHEN available IS NULL THEN 1 ELSE 0 END),
                       SUM(unrecoverable)
                FROM content
            """)
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to count content: {e}") from e

        total, available, unavailable, unverified, unrecoverable = row
        return {
            'total': total or 0,
            'available': available or 0,
            'unavailable': unavailable or 0,
            'unverified': unverified or 0,
            'unrecoverable': unrecoverable or 0,
        }
