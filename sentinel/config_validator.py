"""
Configuration validator for Content Sentinel.

Checks a loaded SentinelConfig for values the engine cannot run with and
for combinations that work but are probably not what the operator meant.
"""

import os
from typing import List, Optional, Dict, Any

from cryptography.fernet import Fernet

from sentinel.config import SentinelConfig, load_sentinel_config


class ConfigValidationError(Exception):
    """Custom exception for configuration validation errors."""

    def __init__(self, message: str, suggestions: Optional[List[str]] = None):
        self.message = message
        self.suggestions = suggestions or []
        super().__init__(self.message)

    def __str__(self):
        result = f"Configuration Error: {self.message}"
        if self.suggestions:
            result += "\n\nSuggestions:"
            for suggestion in self.suggestions:
                result += f"\n  • {suggestion}"
        return result


class ConfigValidator:
    """Validates scheduler, gateway, backup and pinning settings."""

    def __init__(self, config: SentinelConfig):
        self.config = config
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_scheduler_section(self):
        """Validate the [Scheduler] section."""
        scheduler = self.config.scheduler

        for name in ('check_interval', 'min_check_interval', 'priority_check_interval'):
            if getattr(scheduler, name) <= 0:
                self.errors.append(f"{name} must be greater than 0")

        if scheduler.batch_size < 1:
            self.errors.append("batch_size must be at least 1")
        if scheduler.concurrent_checks < 1:
            self.errors.append("concurrent_checks must be at least 1")
        if scheduler.recovery_attempts < 0:
            self.errors.append("recovery_attempts cannot be negative")

        if scheduler.priority_check_interval > scheduler.min_check_interval:
            self.warnings.append(
                "priority_check_interval is longer than min_check_interval - "
                "priority content will be checked less often than normal content"
            )
        if scheduler.concurrent_checks > scheduler.batch_size:
            self.warnings.append("concurrent_checks exceeds batch_size - extra workers will sit idle")
        if not scheduler.content_types:
            self.errors.append("content_types cannot be empty")

    def validate_gateways_section(self):
        """Validate the [Gateways] section."""
        gateways = self.config.gateways

        if not gateways.gateways:
            self.errors.append("At least one gateway must be configured")
        elif len(gateways.gateways) == 1:
            self.warnings.append("Only one gateway configured - a single outage will trigger recovery")

        for gateway in gateways.gateways:
            if "://" in gateway or "/" in gateway:
                self.errors.append(f"Gateway '{gateway}' must be a bare host name (e.g. ipfs.io)")

        if gateways.probe_timeout <= 0:
            self.errors.append("probe_timeout must be greater than 0")
        if gateways.fetch_timeout <= 0:
            self.errors.append("fetch_timeout must be greater than 0")

    def validate_backup_section(self):
        """Validate the [Backup] section."""
        backup = self.config.backup
        if not backup.enabled:
            self.warnings.append("Backups are disabled - recovery can only use the pinning service")
            return

        if backup.max_backup_size <= 0:
            self.errors.append("max_backup_size must be greater than 0")

        if backup.encryption_enabled and not backup.encryption_key:
            self.errors.append("encryption_enabled is true but BACKUP_ENCRYPTION_KEY is not set")
        elif backup.encryption_key:
            try:
                Fernet(backup.encryption_key.encode())
            except (ValueError, TypeError):
                self.errors.append("BACKUP_ENCRYPTION_KEY is not a valid Fernet key")

        parent_dir = os.path.dirname(os.path.abspath(backup.backup_dir))
        if parent_dir and not os.path.exists(parent_dir):
            self.warnings.append(f"Parent directory for backup_dir does not exist: {parent_dir}")
        elif parent_dir and not os.access(parent_dir, os.W_OK):
            self.errors.append(f"No write permission for backup_dir parent: {parent_dir}")

    def validate_pinata_section(self):
        """Validate the [Pinata] section."""
        pinata = self.config.pinata
        if not pinata.is_configured:
            self.warnings.append(
                "Pinning service credentials not set - the pin-by-hash recovery tier will be skipped"
            )
        if pinata.requests_per_minute < 1:
            self.errors.append("requests_per_minute must be at least 1")

    def validate_ipfs_section(self):
        """Validate the [IPFS] section."""
        ipfs = self.config.ipfs
        if ipfs.is_configured and not ipfs.api_url.startswith(("http://", "https://")):
            self.errors.append(f"IPFS api_url must be an http(s) URL: {ipfs.api_url}")
        if not ipfs.is_configured and not self.config.pinata.is_configured:
            self.warnings.append(
                "Neither an IPFS node nor a pinning service is configured - restored backups cannot be re-published"
            )
        if ipfs.timeout <= 0:
            self.errors.append("IPFS timeout must be greater than 0")

    def validate_all(self) -> Dict[str, Any]:
        """
        Perform comprehensive validation of all configuration.

        Returns:
            Dict with validation results including errors, warnings, and summary.
        """
        self.errors = []
        self.warnings = []

        self.validate_scheduler_section()
        self.validate_gateways_section()
        self.validate_backup_section()
        self.validate_pinata_section()
        self.validate_ipfs_section()

        return {
            'valid': len(self.errors) == 0,
            'errors': self.errors,
            'warnings': self.warnings,
            'error_count': len(self.errors),
            'warning_count': len(self.warnings)
        }


def validate_configuration(config: Optional[SentinelConfig] = None) -> Dict[str, Any]:
    """
    Convenience function to validate configuration.

    Raises:
        ConfigValidationError: If critical configuration errors are found.
    """
    validator = ConfigValidator(config or load_sentinel_config())
    result = validator.validate_all()

    if not result['valid']:
        error_msg = f"Found {result['error_count']} configuration error(s):\n"
        error_msg += "\n".join(f"  • {error}" for error in result['errors'])

        suggestions = [
            "Check your settings.ini file for out-of-range values",
            "Generate an encryption key with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'",
            "Check file and directory permissions"
        ]

        raise ConfigValidationError(error_msg, suggestions)

    return result
