"""
Centralized constants for Content Sentinel.

Defaults for scheduling, gateway probing, pinning and backups live here so
the config loader, the validator and the components agree on them.
"""

# Scheduler defaults (seconds)
DEFAULT_CHECK_INTERVAL = 3600            # 1 hour between ticks
DEFAULT_BATCH_SIZE = 50
DEFAULT_CONCURRENT_CHECKS = 5
DEFAULT_MIN_CHECK_INTERVAL = 86400       # re-check normal items once a day
DEFAULT_PRIORITY_CHECK_INTERVAL = 3600   # re-check priority items every hour
DEFAULT_RECOVERY_ATTEMPTS = 3
QUEUE_DRAIN_DELAY_SECONDS = 0.1

# Priority classification
PRIORITY_VIEW_THRESHOLD = 1000
HIGH_PRIORITY = "high"
NORMAL_PRIORITY = "normal"

# Gateway probing
DEFAULT_GATEWAYS = (
    "ipfs.io",
    "dweb.link",
    "cloudflare-ipfs.com",
    "gateway.pinata.cloud",
)
DEFAULT_PROBE_TIMEOUT = 10.0
PROBE_DEADLINE_GRACE = 2.0               # extra wait before pending probes count as timeouts
DEFAULT_FETCH_TIMEOUT = 60.0
PROBE_TIMEOUT_ERROR = "Timeout"

# Pinning service
PINATA_API_URL = "https://api.pinata.cloud"
PINATA_REQUESTS_PER_MINUTE = 60
PINATA_TIMEOUT_SECONDS = 30.0
PIN_LIST_PAGE_LIMIT = 10

# IPFS node HTTP API, used to re-publish restored backups
IPFS_NODE_API_URL = "http://127.0.0.1:5001/api/v0"
IPFS_NODE_TIMEOUT_SECONDS = 60.0

# Backups
DEFAULT_BACKUP_DIR = "./content-backups"
BACKUP_INDEX_FILENAME = "backup-index.json"
METADATA_DIRNAME = "metadata"
BACKUP_FILE_SUFFIX = ".backup"
DEFAULT_MAX_BACKUP_SIZE = 100 * 1024 * 1024  # 100MB
BACKUP_ALL_BATCH_SIZE = 10
VERIFY_BACKUPS_BATCH_SIZE = 20

# Database
DEFAULT_DB_PATH = "content_sentinel.db"
SQLITE_TIMEOUT_SECONDS = 30

# Retry configuration
DEFAULT_MAX_RETRIES = 3
EXPONENTIAL_BACKOFF_MULTIPLIER = 1
EXPONENTIAL_BACKOFF_MIN_SECONDS = 1
EXPONENTIAL_BACKOFF_MAX_SECONDS = 10

# Connection pooling
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 20
RETRY_BACKOFF_FACTOR = 0.3
DOWNLOAD_CHUNK_SIZE = 65536

# Logging
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# User Agent
DEFAULT_USER_AGENT = "Content Sentinel/1.0"
