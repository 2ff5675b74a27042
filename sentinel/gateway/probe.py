"""
Single gateway existence check.

A probe is an HTTP HEAD against https://{gateway}/ipfs/{cid}: a 2xx answer
means the gateway could resolve the content, anything else (including a
timeout) means it could not. Probes never raise; failures are folded into
the ProbeResult.
"""

import time
import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from sentinel.constants import (
    DEFAULT_PROBE_TIMEOUT, DEFAULT_USER_AGENT, HTTP_POOL_CONNECTIONS,
    HTTP_POOL_MAXSIZE, PROBE_TIMEOUT_ERROR, RETRY_BACKOFF_FACTOR,
)
from sentinel.exceptions import ProbeError, ProbeTimeout
from sentinel.gateway.verification_metadata import ProbeResult


def gateway_url(gateway: str, cid: str) -> str:
    return f"https://{gateway}/ipfs/{cid}"


def build_gateway_session(retries: int = 0, pool_maxsize: int = HTTP_POOL_MAXSIZE) -> requests.Session:
    """Pooled session for gateway traffic; retries apply to connection errors only."""
    session = requests.Session()

    retry_strategy = Retry(
        total=retries,
        connect=retries,
        read=0,
        backoff_factor=RETRY_BACKOFF_FACTOR,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"HEAD", "GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(
        max_retries=retry_strategy,
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=pool_maxsize
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({'User-Agent': DEFAULT_USER_AGENT})
    return session


class GatewayProbe:
    """Issues bounded-timeout HEAD requests against public gateways."""

    def __init__(self, timeout: float = DEFAULT_PROBE_TIMEOUT, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or build_gateway_session()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def probe(self, cid: str, gateway: str, timeout: Optional[float] = None) -> ProbeResult:
        """Check whether one gateway can serve the CID."""
        start_time = time.time()
        try:
            return self._head(cid, gateway, timeout or self.timeout, start_time)
        except ProbeTimeout:
            self._logger.debug(f"Probe of {cid} on {gateway} timed out")
            return ProbeResult.failure(gateway, PROBE_TIMEOUT_ERROR, time.time() - start_time)
        except ProbeError as e:
            self._logger.debug(f"Probe of {cid} failed: {e}")
            return ProbeResult.failure(gateway, str(e.__cause__ or e), time.time() - start_time)

    def _head(self, cid: str, gateway: str, timeout: float, start_time: float) -> ProbeResult:
        try:
            response = self.session.head(gateway_url(gateway, cid), timeout=timeout, allow_redirects=True)
        except requests.exceptions.Timeout as e:
            raise ProbeTimeout(gateway, PROBE_TIMEOUT_ERROR) from e
        except requests.exceptions.RequestException as e:
            raise ProbeError(gateway, str(e)) from e

        available = 200 <= response.status_code < 300
        self._logger.debug(f"{gateway} answered {response.status_code} for {cid}")
        return ProbeResult(
            gateway=gateway,
            available=available,
            status_code=response.status_code,
            elapsed_seconds=time.time() - start_time,
        )

    def close(self):
        self.session.close()
