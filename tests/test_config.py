"""
Tests for settings.ini loading, environment overrides and validation.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import patch

from cryptography.fernet import Fernet

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from sentinel.config import SentinelConfig, load_sentinel_config
from sentinel.config_validator import ConfigValidationError, ConfigValidator, validate_configuration
from sentinel.constants import DEFAULT_GATEWAYS, IPFS_NODE_API_URL
from sentinel.repository import ContentType

ENV_KEYS = (
    "SENTINEL_GATEWAYS", "SENTINEL_BACKUP_DIR", "SENTINEL_DB_PATH", "SENTINEL_LOG_LEVEL",
    "PINATA_API_KEY", "PINATA_SECRET_API_KEY", "BACKUP_ENCRYPTION_KEY",
    "IPFS_API_URL", "IPFS_PROJECT_ID", "IPFS_PROJECT_SECRET",
)


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.ini_path = os.path.join(self.temp_dir, "settings.ini")
        self.env = patch.dict(os.environ, {}, clear=False)
        self.env.start()
        for key in ENV_KEYS:
            os.environ.pop(key, None)

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_ini(self, text):
        with open(self.ini_path, "w") as f:
            f.write(text)

    def test_defaults_when_file_missing(self):
        config = load_sentinel_config(os.path.join(self.temp_dir, "missing.ini"))

        self.assertEqual(config.scheduler.check_interval, 3600)
        self.assertEqual(config.scheduler.batch_size, 50)
        self.assertEqual(config.scheduler.concurrent_checks, 5)
        self.assertEqual(config.scheduler.min_check_interval, 86400)
        self.assertEqual(config.scheduler.priority_check_interval, 3600)
        self.assertEqual(config.scheduler.recovery_attempts, 3)
        self.assertEqual(config.scheduler.content_types, list(ContentType))
        self.assertEqual(config.gateways.gateways, list(DEFAULT_GATEWAYS))
        self.assertTrue(config.backup.enabled)
        self.assertFalse(config.backup.encryption_active)
        self.assertFalse(config.pinata.is_configured)
        self.assertEqual(config.log_level, "INFO")
        self.assertEqual(config.ipfs.api_url, IPFS_NODE_API_URL)
        self.assertTrue(config.ipfs.is_configured)

    def test_reads_ini_values(self):
        self._write_ini(
            "[Scheduler]\n"
            "check_interval = 600\n"
            "batch_size = 10\n"
            "content_types = video, image\n"
            "backup_available_content = false\n"
            "[Gateways]\n"
            "gateways = ipfs.io, dweb.link\n"
            "probe_timeout = 3\n"
            "[Backup]\n"
            "backup_dir = /tmp/sentinel-backups\n"
            "compression_enabled = no\n"
            "[Database]\n"
            "path = /tmp/sentinel.db\n"
        )

        config = load_sentinel_config(self.ini_path)

        self.assertEqual(config.scheduler.check_interval, 600)
        self.assertEqual(config.scheduler.batch_size, 10)
        self.assertEqual(config.scheduler.content_types, [ContentType.VIDEO, ContentType.IMAGE])
        self.assertFalse(config.scheduler.backup_available_content)
        self.assertEqual(config.gateways.gateways, ["ipfs.io", "dweb.link"])
        self.assertEqual(config.gateways.probe_timeout, 3)
        self.assertEqual(config.backup.backup_dir, "/tmp/sentinel-backups")
        self.assertEqual(config.backup.index_path, os.path.join("/tmp/sentinel-backups", "backup-index.json"))
        self.assertFalse(config.backup.compression_enabled)
        self.assertEqual(config.db_path, "/tmp/sentinel.db")

    def test_none_values_are_unset(self):
        self._write_ini("[Pinata]\napi_key = None\nsecret_api_key =\n[Backup]\nencryption_enabled = None\n")

        config = load_sentinel_config(self.ini_path)

        self.assertIsNone(config.pinata.api_key)
        self.assertIsNone(config.pinata.secret_api_key)
        self.assertFalse(config.backup.encryption_enabled)

    def test_environment_overrides_ini(self):
        self._write_ini("[Gateways]\ngateways = ipfs.io\n[Pinata]\napi_key = from-ini\nsecret_api_key = s\n")
        os.environ.update({
            "SENTINEL_GATEWAYS": "dweb.link,gateway.pinata.cloud",
            "SENTINEL_BACKUP_DIR": "/data/backups",
            "SENTINEL_DB_PATH": "/data/sentinel.db",
            "SENTINEL_LOG_LEVEL": "debug",
            "PINATA_API_KEY": "from-env",
        })

        config = load_sentinel_config(self.ini_path)

        self.assertEqual(config.gateways.gateways, ["dweb.link", "gateway.pinata.cloud"])
        self.assertEqual(config.backup.backup_dir, "/data/backups")
        self.assertEqual(config.db_path, "/data/sentinel.db")
        self.assertEqual(config.log_level, "DEBUG")
        self.assertEqual(config.pinata.api_key, "from-env")
        self.assertTrue(config.pinata.is_configured)

    def test_ipfs_node_can_be_disabled_or_overridden(self):
        self._write_ini("[IPFS]\napi_url = None\n")
        self.assertFalse(load_sentinel_config(self.ini_path).ipfs.is_configured)

        os.environ["IPFS_API_URL"] = "https://ipfs.example:5001/api/v0"
        os.environ["IPFS_PROJECT_ID"] = "project"
        config = load_sentinel_config(self.ini_path)

        self.assertEqual(config.ipfs.api_url, "https://ipfs.example:5001/api/v0")
        self.assertEqual(config.ipfs.project_id, "project")

    def test_encryption_key_enables_encryption(self):
        os.environ["BACKUP_ENCRYPTION_KEY"] = Fernet.generate_key().decode()

        config = load_sentinel_config(os.path.join(self.temp_dir, "missing.ini"))

        self.assertTrue(config.backup.encryption_active)

    def test_invalid_content_type(self):
        self._write_ini("[Scheduler]\ncontent_types = video, podcast\n")

        with self.assertRaises(ValueError) as ctx:
            load_sentinel_config(self.ini_path)
        self.assertIn("podcast", str(ctx.exception))

    def test_to_dict_hides_secrets(self):
        config = SentinelConfig()
        config.pinata.api_key = "key"
        config.pinata.secret_api_key = "secret"

        data = config.to_dict()

        self.assertTrue(data['pinning_configured'])
        self.assertNotIn("secret", str(data.values()))


class TestConfigValidator(unittest.TestCase):

    def _config(self):
        config = SentinelConfig()
        config.backup.backup_dir = os.path.join(tempfile.gettempdir(), "sentinel-backups")
        return config

    def test_default_config_is_valid_with_pinning_warning(self):
        result = ConfigValidator(self._config()).validate_all()

        self.assertTrue(result['valid'])
        self.assertTrue(any("Pinata" in w or "pinning" in w.lower() for w in result['warnings']))

    def test_range_errors(self):
        config = self._config()
        config.scheduler.check_interval = 0
        config.scheduler.concurrent_checks = 0
        config.gateways.gateways = []

        result = ConfigValidator(config).validate_all()

        self.assertFalse(result["valid"])
        errors = "\n".join(result["errors"])
        self.assertIn("check_interval must be greater than 0", errors)
        self.assertIn("concurrent_checks must be at least 1", errors)
        self.assertIn("At least one gateway must be configured", errors)

    def test_priority_interval_longer_than_normal_warns(self):
        config = self._config()
        config.scheduler.priority_check_interval = 2 * config.scheduler.min_check_interval

        result = ConfigValidator(config).validate_all()

        self.assertTrue(result['valid'])
        self.assertTrue(any("priority_check_interval" in w for w in result['warnings']))

    def test_encryption_without_key_is_an_error(self):
        config = self._config()
        config.backup.encryption_enabled = True

        result = ConfigValidator(config).validate_all()

        self.assertFalse(result['valid'])

    def test_no_publisher_warns(self):
        config = self._config()
        config.ipfs.api_url = None

        result = ConfigValidator(config).validate_all()

        self.assertTrue(result['valid'])
        self.assertTrue(any("re-published" in w for w in result['warnings']))

    def test_validate_configuration_raises_with_suggestions(self):
        config = self._config()
        config.scheduler.batch_size = 0

        with self.assertRaises(ConfigValidationError) as ctx:
            validate_configuration(config)

        self.assertIn("batch_size", str(ctx.exception))
        self.assertTrue(ctx.exception.suggestions)


if __name__ == '__main__':
    unittest.main()
