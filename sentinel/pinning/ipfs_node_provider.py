"""
IPFS node publisher.

Adds bytes to an IPFS node through its HTTP API (/api/v0/add) with pinning
on. Backup restore uses it to put content back on the network when no
pinning service is configured. Hosted nodes that need a project id and
secret get them as HTTP basic auth.
"""

import logging
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log
)

from sentinel.config import IPFSNodeConfig
from sentinel.constants import (
    DEFAULT_MAX_RETRIES, DEFAULT_USER_AGENT, EXPONENTIAL_BACKOFF_MULTIPLIER,
    EXPONENTIAL_BACKOFF_MIN_SECONDS, EXPONENTIAL_BACKOFF_MAX_SECONDS,
)
from sentinel.exceptions import PinProviderError, PinProviderNotConfigured
from sentinel.pinning.base import PinFileResult, should_retry_pin_error

logger = logging.getLogger(__name__)

ADD_ENDPOINT = "/add"

ipfs_node_retry = retry(
    retry=retry_if_exception(should_retry_pin_error),
    stop=stop_after_attempt(DEFAULT_MAX_RETRIES),
    wait=wait_exponential(
        multiplier=EXPONENTIAL_BACKOFF_MULTIPLIER,
        min=EXPONENTIAL_BACKOFF_MIN_SECONDS,
        max=EXPONENTIAL_BACKOFF_MAX_SECONDS
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class IPFSNodePublisher:
    """Publishes bytes through an IPFS node's HTTP API."""

    def __init__(self, config: IPFSNodeConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': DEFAULT_USER_AGENT})
        if config.project_id and config.project_secret:
            self.session.auth = (config.project_id, config.project_secret)
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def is_configured(self) -> bool:
        return self.config.is_configured

    def get_provider_name(self) -> str:
        return "IPFS node"

    def pin_file(self, data: bytes, name: Optional[str] = None,
                 keyvalues: Optional[Dict[str, Any]] = None) -> PinFileResult:
        """Add bytes to the node and pin them. keyvalues are not stored by the node."""
        response = self._add(data, name or "content")
        body = response.json()
        result = PinFileResult(cid=body['Hash'], size=int(body.get('Size', 0)))
        self._logger.info(f"Added {len(data)} bytes to IPFS node as {result.cid}")
        return result

    @ipfs_node_retry
    def _add(self, data: bytes, filename: str) -> requests.Response:
        if not self.is_configured():
            raise PinProviderNotConfigured("IPFS node API URL missing. Set IPFS_API_URL or [IPFS] api_url.")

        url = f"{self.config.api_url.rstrip('/')}{ADD_ENDPOINT}"
        response = self.session.post(
            url,
            params={'pin': 'true', 'cid-version': 0},
            files={'file': (filename, data)},
            timeout=self.config.timeout,
        )

        if not response.ok:
            try:
                message = response.json().get('Message') or f"HTTP {response.status_code}"
            except ValueError:
                message = response.text or f"HTTP {response.status_code}"
            self._logger.debug(f"IPFS node add failed ({response.status_code}): {message}")
            raise PinProviderError(message, status_code=response.status_code)

        return response
