"""
Local content backups for Content Sentinel.

Usage:
    from sentinel.backup import BackupStore

    store = BackupStore(config.backup, repository, fetcher, event_bus)
    store.create_backup(content_id)
    report = store.verify_backups()
"""

from sentinel.backup.backup_store import BackupStore
from sentinel.backup.backup_metadata import (
    BackupRecord,
    BackupResult,
    RestoreResult,
    BackupVerificationReport,
    BulkBackupReport,
)

__all__ = [
    "BackupStore",
    "BackupRecord",
    "BackupResult",
    "RestoreResult",
    "BackupVerificationReport",
    "BulkBackupReport",
]
