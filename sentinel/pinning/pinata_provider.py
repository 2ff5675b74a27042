"""
Pinata pinning service provider implementing PinProviderProtocol.

Talks to the Pinata REST API with API key / secret headers. Requests are
rate limited with a token bucket and transient failures (connection errors,
timeouts, 5xx) are retried with exponential backoff.
"""

import json
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log
)

from sentinel.config import PinataConfig
from sentinel.constants import (
    DEFAULT_MAX_RETRIES, DEFAULT_USER_AGENT, EXPONENTIAL_BACKOFF_MULTIPLIER,
    EXPONENTIAL_BACKOFF_MIN_SECONDS, EXPONENTIAL_BACKOFF_MAX_SECONDS, PIN_LIST_PAGE_LIMIT,
)
from sentinel.exceptions import PinProviderError, PinProviderNotConfigured
from sentinel.pinning.base import (
    PinFileResult, PinList, PinResult, UnpinResult, should_retry_pin_error,
)
from sentinel.rate_limiter import RateLimitConfig, TokenBucketRateLimiter

logger = logging.getLogger(__name__)

PIN_FILE_ENDPOINT = "/pinning/pinFileToIPFS"
PIN_BY_HASH_ENDPOINT = "/pinning/pinByHash"
UNPIN_ENDPOINT = "/pinning/unpin"
PIN_LIST_ENDPOINT = "/pinning/pinList"

RATE_LIMIT_TIMEOUT_SECONDS = 60


pinata_retry = retry(
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


def _error_message(response: requests.Response) -> str:
    """Pull the service's error text out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    error = body.get('error') if isinstance(body, dict) else None
    if isinstance(error, dict):
        return " ".join(str(error[key]) for key in ('reason', 'details') if error.get(key))
    if error:
        return str(error)
    return f"HTTP {response.status_code}"


class PinataProvider:
    """Pinata implementation of PinProviderProtocol."""

    def __init__(self, config: PinataConfig, session: Optional[requests.Session] = None,
                 rate_limiter: Optional[TokenBucketRateLimiter] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': DEFAULT_USER_AGENT})
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(
            RateLimitConfig(max_requests_per_minute=config.requests_per_minute)
        )
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # ------------------------------------------------------------------
    # Protocol methods
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        return self.config.is_configured

    def get_provider_name(self) -> str:
        return "Pinata"

    def pin_file(self, data: bytes, name: Optional[str] = None,
                 keyvalues: Optional[Dict[str, Any]] = None) -> PinFileResult:
        """Upload bytes to Pinata and pin them."""
        metadata = {'name': name or "Content Sentinel upload", 'keyvalues': keyvalues or {}}
        response = self._request(
            "POST",
            PIN_FILE_ENDPOINT,
            files={'file': (name or "content", data)},
            data={'pinataMetadata': json.dumps(metadata)},
        )
        body = response.json()
        result = PinFileResult(
            cid=body['IpfsHash'],
            size=int(body.get('PinSize', 0)),
            timestamp=body.get('Timestamp'),
            is_duplicate=bool(body.get('isDuplicate', False)),
        )
        self._logger.info(f"Pinned {result.size} bytes as {result.cid}")
        return result

    def pin_by_hash(self, cid: str, name: Optional[str] = None,
                    keyvalues: Optional[Dict[str, Any]] = None) -> PinResult:
        """Pin an existing CID; an 'already pinned' answer is a success."""
        payload = {
            'hashToPin': cid,
            'pinataMetadata': {
                'name': name or f"Pinned Content {cid}",
                'keyvalues': keyvalues or {},
            },
        }
        try:
            response = self._request("POST", PIN_BY_HASH_ENDPOINT, json=payload)
        except PinProviderError as e:
            if 'already pinned' in str(e).lower():
                self._logger.debug(f"{cid} is already pinned")
                return PinResult(success=True, cid=cid, already_pinned=True)
            raise

        body = response.json()
        self._logger.info(f"Pin by hash queued for {cid}")
        return PinResult(success=True, cid=cid, status=body.get('status'))

    def unpin(self, cid: str) -> UnpinResult:
        """Remove a pin; a 'not pinned' answer is a success."""
        try:
            self._request("DELETE", f"{UNPIN_ENDPOINT}/{cid}")
        except PinProviderError as e:
            if 'not pinned' in str(e).lower():
                self._logger.debug(f"{cid} was not pinned")
                return UnpinResult(success=True, cid=cid, not_pinned=True)
            raise

        self._logger.info(f"Unpinned {cid}")
        return UnpinResult(success=True, cid=cid)

    def list_pins(self, hash_contains: Optional[str] = None, status: Optional[str] = None,
                  page_limit: Optional[int] = None, page_offset: Optional[int] = None,
                  pin_start: Optional[str] = None, pin_end: Optional[str] = None) -> PinList:
        """List pins matching the filters."""
        params = {
            'hashContains': hash_contains,
            'status': status,
            'pageLimit': page_limit,
            'pageOffset': page_offset,
            'pinStart': pin_start,
            'pinEnd': pin_end,
        }
        response = self._request(
            "GET", PIN_LIST_ENDPOINT, params={k: v for k, v in params.items() if v is not None}
        )
        body = response.json()
        return PinList(count=int(body.get('count', 0)), pins=list(body.get('rows', [])))

    def is_pinned(self, cid: str) -> bool:
        try:
            result = self.list_pins(hash_contains=cid, page_limit=1)
        except (PinProviderError, requests.exceptions.RequestException) as e:
            self._logger.warning(f"Error checking pinned status of {cid}: {e}")
            return False
        return result.count > 0 and any(pin.get('ipfs_pin_hash') == cid for pin in result.pins)

    def get_pin_status(self, cid: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.list_pins(hash_contains=cid, page_limit=PIN_LIST_PAGE_LIMIT)
        except (PinProviderError, requests.exceptions.RequestException) as e:
            self._logger.warning(f"Error getting pin status for {cid}: {e}")
            return None
        return next((pin for pin in result.pins if pin.get('ipfs_pin_hash') == cid), None)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        if not self.is_configured():
            raise PinProviderNotConfigured(
                "Pinata credentials missing. Set PINATA_API_KEY and PINATA_SECRET_API_KEY."
            )
        return {
            'pinata_api_key': self.config.api_key,
            'pinata_secret_api_key': self.config.secret_api_key,
        }

    @pinata_retry
    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        headers = self._headers()
        if not self.rate_limiter.acquire(timeout=RATE_LIMIT_TIMEOUT_SECONDS):
            raise PinProviderError("Rate limit timeout for pinning service")

        url = f"{self.config.api_url.rstrip('/')}{endpoint}"
        response = self.session.request(method, url, headers=headers, timeout=self.config.timeout, **kwargs)

        retry_after = response.headers.get('Retry-After')
        self.rate_limiter.report_response(
            response.status_code, int(retry_after) if retry_after and retry_after.isdigit() else None
        )

        if not response.ok:
            message = _error_message(response)
            self._logger.debug(f"Pinata {method} {endpoint} failed ({response.status_code}): {message}")
            raise PinProviderError(message, status_code=response.status_code)

        return response
