"""
Fetches the bytes behind a CID from public gateways.

Used by the backup store. Gateways are tried in configured order; transient
network errors are retried per gateway before moving on to the next one.
"""

import logging
from typing import List, Optional

import requests
from tenacity import (
    retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log
)

from sentinel.constants import (
    DEFAULT_FETCH_TIMEOUT, DEFAULT_GATEWAYS, DEFAULT_MAX_RETRIES, DOWNLOAD_CHUNK_SIZE,
    EXPONENTIAL_BACKOFF_MULTIPLIER, EXPONENTIAL_BACKOFF_MIN_SECONDS, EXPONENTIAL_BACKOFF_MAX_SECONDS,
)
from sentinel.exceptions import ContentFetchError, ContentTooLargeError
from sentinel.gateway.probe import build_gateway_session, gateway_url

logger = logging.getLogger(__name__)


class GatewayContentFetcher:
    """Streams content from the first gateway that serves it."""

    def __init__(self, gateways: Optional[List[str]] = None, timeout: float = DEFAULT_FETCH_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.gateways = list(gateways or DEFAULT_GATEWAYS)
        self.timeout = timeout
        self.session = session or build_gateway_session(retries=1)
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def fetch(self, cid: str, max_bytes: Optional[int] = None) -> bytes:
        """
        Download the content for a CID.

        Raises:
            ContentTooLargeError: The content is larger than max_bytes
            ContentFetchError: No gateway returned the content
        """
        errors = []
        for gateway in self.gateways:
            try:
                data = self._fetch_from_gateway(cid, gateway, max_bytes)
                self._logger.debug(f"Fetched {len(data)} bytes of {cid} from {gateway}")
                return data
            except ContentTooLargeError:
                raise
            except requests.exceptions.RequestException as e:
                self._logger.debug(f"Fetch of {cid} from {gateway} failed: {e}")
                errors.append(f"{gateway}: {e}")

        raise ContentFetchError(f"No gateway served {cid} ({'; '.join(errors)})")

    @retry(
        retry=retry_if_exception_type((requests.exceptions.ConnectionError, requests.exceptions.Timeout)),
        stop=stop_after_attempt(DEFAULT_MAX_RETRIES),
        wait=wait_exponential(
            multiplier=EXPONENTIAL_BACKOFF_MULTIPLIER,
            min=EXPONENTIAL_BACKOFF_MIN_SECONDS,
            max=EXPONENTIAL_BACKOFF_MAX_SECONDS
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _fetch_from_gateway(self, cid: str, gateway: str, max_bytes: Optional[int]) -> bytes:
        with self.session.get(gateway_url(gateway, cid), timeout=self.timeout, stream=True) as response:
            response.raise_for_status()

            declared = response.headers.get('Content-Length')
            if max_bytes is not None and declared and declared.isdigit() and int(declared) > max_bytes:
                raise ContentTooLargeError(cid, int(declared), max_bytes)

            chunks = []
            received = 0
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                received += len(chunk)
                if max_bytes is not None and received > max_bytes:
                    raise ContentTooLargeError(cid, received, max_bytes)
                chunks.append(chunk)

            return b"".join(chunks)
