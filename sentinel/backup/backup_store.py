"""
Local backup store for content bytes and metadata snapshots.

Backups are the last tier of the recovery chain: when no gateway serves a
CID and the pinning service cannot retrieve it either, the bytes are
restored from here and re-published.

Layout under backup_dir:
    {content_type}/{content_id}_{cid}.backup   gzip and/or Fernet-encrypted bytes
    metadata/{content_id}_metadata.json        JSON snapshot of the content record
    backup-index.json                          index of both, plus running stats

The index is held in memory and every change is written back with an
atomic replace. An index entry is only trusted after the file behind it is
re-checked (exists, size matches); stale entries are pruned.
"""

import os
import gzip
import json
import time
import logging
import tempfile
import threading
from typing import Any, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from sentinel.config import BackupConfig
from sentinel.constants import (
    BACKUP_ALL_BATCH_SIZE, BACKUP_FILE_SUFFIX, METADATA_DIRNAME, VERIFY_BACKUPS_BATCH_SIZE,
)
from sentinel.content_hash import compute_bytes_hash, hashes_match
from sentinel.events import BACKUP_CREATED, EventBus
from sentinel.exceptions import BackupCorruptionError, ContentFetchError, ContentTooLargeError
from sentinel.gateway.fetcher import GatewayContentFetcher
from sentinel.repository.base import ContentRepositoryProtocol, ContentStatus, ContentType
from sentinel.backup.backup_metadata import (
    BackupRecord, BackupResult, BackupVerificationReport, BulkBackupReport,
    MetadataBackupRecord, RestoreResult,
)


def _empty_index() -> Dict[str, Any]:
    return {
        'backups': {},
        'metadata_backups': {},
        'stats': {
            'total_backups': 0,
            'total_size': 0,
            'last_backup': None,
            'last_verification': None,
        },
    }


def _atomic_write(path: str, data: bytes) -> None:
    """Write to a temp file in the same directory, then rename over the target."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class BackupStore:
    """Creates, verifies and restores local content backups."""

    def __init__(self, config: BackupConfig, repository: ContentRepositoryProtocol,
                 fetcher: GatewayContentFetcher, event_bus: Optional[EventBus] = None):
        self.config = config
        self.repository = repository
        self.fetcher = fetcher
        self.event_bus = event_bus
        self._lock = threading.RLock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._fernet = Fernet(config.encryption_key.encode()) if config.encryption_active else None

        if self.config.enabled:
            os.makedirs(os.path.join(self.config.backup_dir, METADATA_DIRNAME), exist_ok=True)
        self._index = self._load_index()

    # ------------------------------------------------------------------
    # Index handling
    # ------------------------------------------------------------------

    def _load_index(self) -> Dict[str, Any]:
        index = _empty_index()
        if not os.path.exists(self.config.index_path):
            return index

        try:
            with open(self.config.index_path, "r") as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            self._logger.error(f"Failed to load backup index, starting fresh: {e}")
            return index

        index['backups'].update(stored.get('backups', {}))
        index['metadata_backups'].update(stored.get('metadata_backups', {}))
        index['stats'].update(stored.get('stats', {}))
        self._logger.info(f"Loaded backup index with {len(index['backups'])} backup(s)")
        return index

    def _save_index(self) -> None:
        """Persist the index. Caller holds self._lock."""
        backups = self._index['backups'].values()
        self._index['stats']['total_backups'] = len(self._index['backups'])
        self._index['stats']['total_size'] = sum(entry['size'] for entry in backups)
        _atomic_write(self.config.index_path, json.dumps(self._index, indent=2).encode("utf-8"))

    def _get_record(self, content_id: str) -> Optional[BackupRecord]:
        with self._lock:
            entry = self._index['backups'].get(content_id)
        return BackupRecord.from_dict(entry) if entry else None

    def _drop_record(self, content_id: str) -> None:
        with self._lock:
            if self._index['backups'].pop(content_id, None) is not None:
                self._save_index()

    def _remove_superseded(self, record: BackupRecord) -> None:
        """Delete the file of an index entry that has just been replaced."""
        try:
            os.remove(record.path)
            self._logger.info(f"Removed superseded backup {record.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self._logger.warning(f"Could not remove superseded backup {record.path}: {e}")

    def _check_file(self, record: BackupRecord) -> Optional[str]:
        """Return 'missing' or 'corrupted' if the file doesn't back the record."""
        if not os.path.exists(record.path):
            return 'missing'
        if os.path.getsize(record.path) != record.size:
            return 'corrupted'
        return None

    # ------------------------------------------------------------------
    # Byte processing
    # ------------------------------------------------------------------

    def _process_for_backup(self, data: bytes) -> bytes:
        if self.config.compression_enabled:
            data = gzip.compress(data)
        if self._fernet is not None:
            data = self._fernet.encrypt(data)
        return data

    def _restore_processed(self, data: bytes, record: BackupRecord) -> bytes:
        if record.encrypted:
            if self._fernet is None:
                raise BackupCorruptionError(
                    f"Backup of {record.content_id} is encrypted but no encryption key is configured"
                )
            try:
                data = self._fernet.decrypt(data)
            except InvalidToken as e:
                raise BackupCorruptionError(f"Backup of {record.content_id} failed to decrypt") from e

        if record.compressed:
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError) as e:
                raise BackupCorruptionError(f"Backup of {record.content_id} failed to decompress: {e}") from e

        if not hashes_match(compute_bytes_hash(data), record.content_hash):
            raise BackupCorruptionError(f"Backup of {record.content_id} failed its hash check")
        return data

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create_backup(self, content_id: str, force: bool = False) -> BackupResult:
        """
        Back up the content behind a record.

        Idempotent: a valid existing backup is returned unchanged unless
        force is set. Content larger than max_backup_size gets a metadata
        snapshot instead.
        """
        if not self.config.enabled:
            return BackupResult.failure_result(content_id, "Backup system disabled")

        record = self.repository.get_by_id(content_id)
        if record is None:
            return BackupResult.failure_result(content_id, "Content not found")
        if not record.cid:
            return BackupResult.failure_result(content_id, "Content has no CID")

        existing = self._get_record(content_id)
        if existing and not force:
            problem = self._check_file(existing)
            if problem is None and existing.cid == record.cid:
                return BackupResult(
                    success=True, content_id=content_id, path=existing.path,
                    cid=existing.cid, size=existing.size, already_exists=True
                )
            self._logger.info(f"Existing backup for {content_id} is stale ({problem or 'cid changed'}), re-creating")

        try:
            data = self.fetcher.fetch(record.cid, max_bytes=self.config.max_backup_size)
        except ContentTooLargeError as e:
            self._logger.warning(f"Content {content_id} exceeds max backup size ({e.size} bytes), backing up metadata only")
            return self.create_metadata_backup(content_id)
        except ContentFetchError as e:
            return BackupResult.failure_result(content_id, f"Failed to retrieve content: {e}")

        if not data:
            return BackupResult.failure_result(content_id, "Retrieved content was empty")

        processed = self._process_for_backup(data)
        path = os.path.join(
            self.config.backup_dir, record.content_type.value, f"{content_id}_{record.cid}{BACKUP_FILE_SUFFIX}"
        )

        try:
            _atomic_write(path, processed)
        except OSError as e:
            self._logger.error(f"Failed to write backup for {content_id}: {e}")
            return BackupResult.failure_result(content_id, f"Failed to write backup: {e}")

        backup_record = BackupRecord(
            content_id=content_id,
            cid=record.cid,
            path=path,
            size=len(processed),
            original_size=len(data),
            content_type=record.content_type.value,
            content_hash=compute_bytes_hash(data),
            compressed=self.config.compression_enabled,
            encrypted=self._fernet is not None,
        )

        with self._lock:
            self._index['backups'][content_id] = backup_record.to_dict()
            self._index['stats']['last_backup'] = backup_record.timestamp
            self._save_index()

        if existing is not None and existing.path != path:
            self._remove_superseded(existing)

        if self.config.metadata_enabled:
            self.create_metadata_backup(content_id)

        self._logger.info(f"Backup created for content {content_id} at {path}")
        if self.event_bus is not None:
            self.event_bus.emit(BACKUP_CREATED, {
                'content_id': content_id,
                'cid': record.cid,
                'path': path,
                'size': len(processed),
            })

        return BackupResult(success=True, content_id=content_id, path=path, cid=record.cid, size=len(processed))

    def create_metadata_backup(self, content_id: str) -> BackupResult:
        """Write a JSON snapshot of the content record."""
        if not self.config.metadata_enabled:
            return BackupResult.failure_result(content_id, "Metadata backup disabled")

        record = self.repository.get_by_id(content_id)
        if record is None:
            return BackupResult.failure_result(content_id, "Content not found")

        path = os.path.join(self.config.backup_dir, METADATA_DIRNAME, f"{content_id}_metadata.json")
        snapshot = json.dumps(record.to_dict(), indent=2, default=str).encode("utf-8")

        try:
            _atomic_write(path, snapshot)
        except OSError as e:
            self._logger.error(f"Failed to write metadata backup for {content_id}: {e}")
            return BackupResult.failure_result(content_id, f"Failed to write metadata backup: {e}")

        with self._lock:
            self._index['metadata_backups'][content_id] = MetadataBackupRecord(content_id, path).to_dict()
            self._save_index()

        self._logger.debug(f"Metadata backup created for content {content_id}")
        return BackupResult(
            success=True, content_id=content_id, path=path, cid=record.cid,
            size=len(snapshot), metadata_only=True
        )

    def restore_from_backup(self, content_id: str) -> RestoreResult:
        """
        Read a backup back into the original bytes.

        A missing backup file removes its index entry. Decrypt, decompress
        and hash failures are reported as failures without touching the index.
        """
        backup = self._get_record(content_id)
        if backup is None:
            return RestoreResult.failure_result(content_id, "No backup found")

        if not os.path.exists(backup.path):
            self._logger.warning(f"Backup file missing for content {content_id}, removing index entry")
            self._drop_record(content_id)
            return RestoreResult.failure_result(content_id, "Backup file missing", index_pruned=True)

        try:
            with open(backup.path, "rb") as f:
                raw = f.read()
            data = self._restore_processed(raw, backup)
        except (OSError, BackupCorruptionError) as e:
            self._logger.error(f"Failed to restore backup for {content_id}: {e}")
            return RestoreResult.failure_result(content_id, str(e))

        self._logger.info(f"Restored {len(data)} bytes for content {content_id}")
        return RestoreResult(success=True, content_id=content_id, data=data, cid=backup.cid)

    def verify_backups(self, batch_size: int = VERIFY_BACKUPS_BATCH_SIZE, deep: bool = False) -> BackupVerificationReport:
        """
        Check every indexed backup against its file.

        Missing and corrupted entries are removed from the index so the next
        backup pass re-creates them. With deep=True each file is also
        decoded and hash-checked.
        """
        report = BackupVerificationReport()
        with self._lock:
            content_ids = list(self._index['backups'])

        self._logger.info(f"Verifying {len(content_ids)} backups")
        batch_size = max(1, batch_size)

        for start in range(0, len(content_ids), batch_size):
            for content_id in content_ids[start:start + batch_size]:
                backup = self._get_record(content_id)
                if backup is None:
                    continue

                try:
                    status = self._check_file(backup)
                    reason = "Size mismatch" if status == 'corrupted' else None
                    if status is None and deep:
                        with open(backup.path, "rb") as f:
                            self._restore_processed(f.read(), backup)
                except (OSError, BackupCorruptionError) as e:
                    status, reason = 'corrupted', str(e)

                detail = {'content_id': content_id, 'path': backup.path, 'status': status or 'verified'}
                if status == 'missing':
                    self._logger.warning(f"Backup file missing for content {content_id}")
                    report.missing += 1
                    self._drop_record(content_id)
                elif status == 'corrupted':
                    self._logger.warning(f"Backup corrupted for content {content_id}: {reason}")
                    detail['reason'] = reason
                    report.corrupted += 1
                    self._drop_record(content_id)
                else:
                    report.verified += 1
                report.details.append(detail)

            done = min(start + batch_size, len(content_ids))
            self._logger.debug(f"Verification progress: {done}/{len(content_ids)}")

        with self._lock:
            self._index['stats']['last_verification'] = time.time()
            self._save_index()

        self._logger.info(f"Backup verification completed: {report.summary()}")
        return report

    def backup_all_content(self, content_types: Optional[List[ContentType]] = None, force: bool = False,
                           batch_size: int = BACKUP_ALL_BATCH_SIZE) -> BulkBackupReport:
        """Back up every published item, skipping ones with a valid backup."""
        items = self.repository.search(statuses=[ContentStatus.PUBLISHED], content_types=content_types)
        report = BulkBackupReport(total=len(items))
        self._logger.info(f"Starting backup of {len(items)} content items")
        batch_size = max(1, batch_size)

        for start in range(0, len(items), batch_size):
            for item in items[start:start + batch_size]:
                if not force and self.has_backup(item.content_id):
                    report.skipped += 1
                    continue

                result = self.create_backup(item.content_id, force=force)
                if result.success:
                    report.success += 1
                    report.details.append({'content_id': item.content_id, 'success': True, 'path': result.path})
                else:
                    report.failed += 1
                    report.details.append({
                        'content_id': item.content_id, 'success': False, 'reason': result.error_message
                    })

            self._logger.info(f"Backup progress: {min(start + batch_size, len(items))}/{len(items)}")

        self._logger.info(f"Backup process completed: {report.summary()}")
        return report

    def has_backup(self, content_id: str) -> bool:
        """Whether a full backup exists and its file still matches the index."""
        backup = self._get_record(content_id)
        return backup is not None and self._check_file(backup) is None

    def has_metadata_backup(self, content_id: str) -> bool:
        with self._lock:
            return content_id in self._index['metadata_backups']

    def get_backup_info(self, content_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            backup = self._index['backups'].get(content_id)
            metadata_backup = self._index['metadata_backups'].get(content_id)

        if not backup and not metadata_backup:
            return None

        full_backup: Dict[str, Any] = {'exists': False}
        if backup:
            full_backup = {'exists': True}
            full_backup.update({key: backup[key] for key in (
                'path', 'size', 'original_size', 'timestamp', 'encrypted', 'compressed', 'cid'
            )})

        return {
            'content_id': content_id,
            'full_backup': full_backup,
            'metadata_backup': (
                {'exists': True, 'path': metadata_backup['path'], 'timestamp': metadata_backup['timestamp']}
                if metadata_backup else {'exists': False}
            ),
        }

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._index['stats'])
            stats['total_metadata_backups'] = len(self._index['metadata_backups'])

        stats['config'] = {
            'enabled': self.config.enabled,
            'metadata_enabled': self.config.metadata_enabled,
            'compression_enabled': self.config.compression_enabled,
            'encryption_enabled': self._fernet is not None,
            'backup_dir': self.config.backup_dir,
            'max_backup_size': self.config.max_backup_size,
        }
        return stats
