"""
Configuration loading for Content Sentinel.

Reads settings.ini from the project root (or an explicit path) into
dataclasses. Environment variables override the ini file, and values of
None, "" or "None" are treated as unset.
"""

import os
import configparser
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sentinel.constants import (
    DEFAULT_CHECK_INTERVAL, DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENT_CHECKS,
    DEFAULT_MIN_CHECK_INTERVAL, DEFAULT_PRIORITY_CHECK_INTERVAL,
    DEFAULT_RECOVERY_ATTEMPTS, DEFAULT_GATEWAYS, DEFAULT_PROBE_TIMEOUT,
    DEFAULT_FETCH_TIMEOUT, DEFAULT_BACKUP_DIR, BACKUP_INDEX_FILENAME,
    DEFAULT_MAX_BACKUP_SIZE, PINATA_API_URL, PINATA_REQUESTS_PER_MINUTE,
    PINATA_TIMEOUT_SECONDS, IPFS_NODE_API_URL, IPFS_NODE_TIMEOUT_SECONDS,
    DEFAULT_DB_PATH, DEFAULT_LOG_LEVEL,
)
from sentinel.repository.base import ContentType

_INVALID = (None, "", "None")

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CONFIG_PATH = os.path.join(BASE_DIR, "settings.ini")


@dataclass
class SchedulerConfig:
    """Timing and batching for the verification scheduler (seconds)."""
    check_interval: float = DEFAULT_CHECK_INTERVAL
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrent_checks: int = DEFAULT_CONCURRENT_CHECKS
    min_check_interval: float = DEFAULT_MIN_CHECK_INTERVAL
    priority_check_interval: float = DEFAULT_PRIORITY_CHECK_INTERVAL
    recovery_attempts: int = DEFAULT_RECOVERY_ATTEMPTS
    content_types: List[ContentType] = field(default_factory=lambda: list(ContentType))
    backup_available_content: bool = True


@dataclass
class GatewayConfig:
    """Public gateways used for probing and fetching."""
    gateways: List[str] = field(default_factory=lambda: list(DEFAULT_GATEWAYS))
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT


@dataclass
class BackupConfig:
    """Local backup store settings."""
    backup_dir: str = DEFAULT_BACKUP_DIR
    index_path: Optional[str] = None
    enabled: bool = True
    metadata_enabled: bool = True
    max_backup_size: int = DEFAULT_MAX_BACKUP_SIZE
    compression_enabled: bool = True
    encryption_enabled: bool = False
    encryption_key: Optional[str] = None

    def __post_init__(self):
        if self.index_path in _INVALID:
            self.index_path = os.path.join(self.backup_dir, BACKUP_INDEX_FILENAME)

    @property
    def encryption_active(self) -> bool:
        return self.encryption_enabled and bool(self.encryption_key)


@dataclass
class PinataConfig:
    """Pinning service credentials and limits."""
    api_url: str = PINATA_API_URL
    api_key: Optional[str] = None
    secret_api_key: Optional[str] = None
    requests_per_minute: int = PINATA_REQUESTS_PER_MINUTE
    timeout: float = PINATA_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.secret_api_key)


@dataclass
class IPFSNodeConfig:
    """HTTP API of the IPFS node that re-publishes restored backups."""
    api_url: Optional[str] = IPFS_NODE_API_URL
    project_id: Optional[str] = None
    project_secret: Optional[str] = None
    timeout: float = IPFS_NODE_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url)


@dataclass
class SentinelConfig:
    """All Content Sentinel configuration."""
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    gateways: GatewayConfig = field(default_factory=GatewayConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    pinata: PinataConfig = field(default_factory=PinataConfig)
    ipfs: IPFSNodeConfig = field(default_factory=IPFSNodeConfig)
    db_path: str = DEFAULT_DB_PATH
    log_level: str = DEFAULT_LOG_LEVEL

    def to_dict(self) -> Dict[str, Any]:
        """Operator-facing view of the configuration, without secrets."""
        return {
            'check_interval': self.scheduler.check_interval,
            'batch_size': self.scheduler.batch_size,
            'concurrent_checks': self.scheduler.concurrent_checks,
            'min_check_interval': self.scheduler.min_check_interval,
            'priority_check_interval': self.scheduler.priority_check_interval,
            'recovery_attempts': self.scheduler.recovery_attempts,
            'content_types': [t.value for t in self.scheduler.content_types],
            'gateways': list(self.gateways.gateways),
            'probe_timeout': self.gateways.probe_timeout,
            'backup_enabled': self.backup.enabled,
            'backup_dir': self.backup.backup_dir,
            'encryption_active': self.backup.encryption_active,
            'pinning_configured': self.pinata.is_configured,
            'ipfs_node_configured': self.ipfs.is_configured,
            'db_path': self.db_path,
        }


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_content_types(values: List[str]) -> List[ContentType]:
    content_types = []
    for value in values:
        try:
            content_types.append(ContentType(value.lower()))
        except ValueError:
            raise ValueError(
                f"Invalid content type '{value}'. "
                f"Must be one of: {', '.join(t.value for t in ContentType)}"
            )
    return content_types


def load_sentinel_config(config_path: Optional[str] = None) -> SentinelConfig:
    """Load configuration from settings.ini with env var overrides."""
    parser = configparser.ConfigParser()
    parser.read(config_path or DEFAULT_CONFIG_PATH)

    def _get(section: str, key: str, fallback: Optional[str] = None) -> Optional[str]:
        val = parser.get(section, key, fallback=fallback)
        return val if val not in _INVALID else fallback

    def _getint(section: str, key: str, fallback: int) -> int:
        return int(_get(section, key, str(fallback)))

    def _getfloat(section: str, key: str, fallback: float) -> float:
        return float(_get(section, key, str(fallback)))

    def _getbool(section: str, key: str, fallback: bool) -> bool:
        if _get(section, key) is None:
            return fallback
        return parser.getboolean(section, key)

    # Scheduler
    content_types = _split_list(_get("Scheduler", "content_types"))
    scheduler = SchedulerConfig(
        check_interval=_getfloat("Scheduler", "check_interval", DEFAULT_CHECK_INTERVAL),
        batch_size=_getint("Scheduler", "batch_size", DEFAULT_BATCH_SIZE),
        concurrent_checks=_getint("Scheduler", "concurrent_checks", DEFAULT_CONCURRENT_CHECKS),
        min_check_interval=_getfloat("Scheduler", "min_check_interval", DEFAULT_MIN_CHECK_INTERVAL),
        priority_check_interval=_getfloat(
            "Scheduler", "priority_check_interval", DEFAULT_PRIORITY_CHECK_INTERVAL
        ),
        recovery_attempts=_getint("Scheduler", "recovery_attempts", DEFAULT_RECOVERY_ATTEMPTS),
        content_types=_parse_content_types(content_types) if content_types else list(ContentType),
        backup_available_content=_getbool("Scheduler", "backup_available_content", True),
    )

    # Gateways: env var > settings.ini
    gateway_list = _split_list(os.getenv("SENTINEL_GATEWAYS") or _get("Gateways", "gateways"))
    gateways = GatewayConfig(
        gateways=gateway_list or list(DEFAULT_GATEWAYS),
        probe_timeout=_getfloat("Gateways", "probe_timeout", DEFAULT_PROBE_TIMEOUT),
        fetch_timeout=_getfloat("Gateways", "fetch_timeout", DEFAULT_FETCH_TIMEOUT),
    )

    # Backups; encryption defaults on only when a key is present
    encryption_key = os.getenv("BACKUP_ENCRYPTION_KEY") or _get("Backup", "encryption_key")
    backup_dir = os.getenv("SENTINEL_BACKUP_DIR") or _get("Backup", "backup_dir", DEFAULT_BACKUP_DIR)
    backup = BackupConfig(
        backup_dir=backup_dir,
        index_path=_get("Backup", "index_path"),
        enabled=_getbool("Backup", "enabled", True),
        metadata_enabled=_getbool("Backup", "metadata_enabled", True),
        max_backup_size=_getint("Backup", "max_backup_size", DEFAULT_MAX_BACKUP_SIZE),
        compression_enabled=_getbool("Backup", "compression_enabled", True),
        encryption_enabled=_getbool("Backup", "encryption_enabled", bool(encryption_key)),
        encryption_key=encryption_key,
    )

    pinata = PinataConfig(
        api_url=_get("Pinata", "api_url", PINATA_API_URL),
        api_key=os.getenv("PINATA_API_KEY") or _get("Pinata", "api_key"),
        secret_api_key=os.getenv("PINATA_SECRET_API_KEY") or _get("Pinata", "secret_api_key"),
        requests_per_minute=_getint("Pinata", "requests_per_minute", PINATA_REQUESTS_PER_MINUTE),
        timeout=_getfloat("Pinata", "timeout", PINATA_TIMEOUT_SECONDS),
    )

    # IPFS node; an explicit api_url = None disables re-publishing through a node
    ipfs_api_url = os.getenv("IPFS_API_URL") or _get("IPFS", "api_url")
    if ipfs_api_url is None and not parser.has_option("IPFS", "api_url"):
        ipfs_api_url = IPFS_NODE_API_URL
    ipfs = IPFSNodeConfig(
        api_url=ipfs_api_url,
        project_id=os.getenv("IPFS_PROJECT_ID") or _get("IPFS", "project_id"),
        project_secret=os.getenv("IPFS_PROJECT_SECRET") or _get("IPFS", "project_secret"),
        timeout=_getfloat("IPFS", "timeout", IPFS_NODE_TIMEOUT_SECONDS),
    )

    return SentinelConfig(
        scheduler=scheduler,
        gateways=gateways,
        backup=backup,
        pinata=pinata,
        ipfs=ipfs,
        db_path=os.getenv("SENTINEL_DB_PATH") or _get("Database", "path", DEFAULT_DB_PATH),
        log_level=(os.getenv("SENTINEL_LOG_LEVEL") or _get("Logging", "level", DEFAULT_LOG_LEVEL)).upper(),
    )
