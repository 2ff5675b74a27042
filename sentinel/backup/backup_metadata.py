"""
Backup index entries and operation results.

BackupRecord and MetadataBackupRecord are persisted in the JSON backup
index; the result types are returned by BackupStore operations.
"""

import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class BackupRecord:
    """Index entry for one full content backup."""
    content_id: str
    cid: str
    path: str
    size: int                       # bytes on disk, after compression/encryption
    original_size: int
    content_type: str
    content_hash: str               # BLAKE3 of the original bytes
    compressed: bool = False
    encrypted: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def backup_date(self) -> str:
        return datetime.fromtimestamp(self.timestamp).strftime('%Y-%m-%d %H:%M:%S')

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupRecord':
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class MetadataBackupRecord:
    """Index entry for a JSON snapshot of a content record."""
    content_id: str
    path: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetadataBackupRecord':
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class BackupResult:
    """Result of create_backup() / create_metadata_backup()."""
    success: bool
    content_id: str
    path: Optional[str] = None
    cid: Optional[str] = None
    size: int = 0
    already_exists: bool = False
    metadata_only: bool = False
    error_message: Optional[str] = None

    @classmethod
    def failure_result(cls, content_id: str, error: str) -> 'BackupResult':
        return cls(success=False, content_id=content_id, error_message=error)


@dataclass
class RestoreResult:
    """Result of restore_from_backup()."""
    success: bool
    content_id: str
    data: Optional[bytes] = None
    cid: Optional[str] = None
    index_pruned: bool = False
    error_message: Optional[str] = None

    @classmethod
    def failure_result(cls, content_id: str, error: str, index_pruned: bool = False) -> 'RestoreResult':
        return cls(success=False, content_id=content_id, error_message=error, index_pruned=index_pruned)


@dataclass
class BackupVerificationReport:
    """Outcome of verify_backups()."""
    verified: int = 0
    corrupted: int = 0
    missing: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_checked(self) -> int:
        return self.verified + self.corrupted + self.missing

    def summary(self) -> str:
        return f"{self.verified} verified, {self.corrupted} corrupted, {self.missing} missing"


@dataclass
class BulkBackupReport:
    """Outcome of backup_all_content()."""
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self) -> str:
        return f"{self.success} successful, {self.failed} failed, {self.skipped} skipped"
