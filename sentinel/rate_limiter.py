"""
Token bucket rate limiting for the pinning service API.

Pinning services enforce per-account request quotas, and the recovery chain
can fire many pin requests in one batch. The limiter smooths those bursts
and backs off when the service answers 429.
"""

import time
import random
import threading
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for rate limiting behavior."""
    max_requests_per_minute: int
    burst_capacity: int = 5
    window_size_seconds: int = 60
    retry_after_seconds: int = 60
    backoff_multiplier: float = 1.5
    max_backoff_seconds: int = 300


@dataclass
class RateLimitState:
    """Mutable limiter state, guarded by its own lock."""
    tokens: float = 0.0
    last_refill: float = field(default_factory=time.time)
    request_times: deque = field(default_factory=deque)
    consecutive_failures: int = 0
    blocked_until: Optional[float] = None
    lock: threading.RLock = field(default_factory=threading.RLock)


class TokenBucketRateLimiter:
    """
    Token bucket rate limiter with sliding window validation.

    Tokens refill at max_requests_per_minute / 60 per second up to
    burst_capacity; the sliding window caps requests per minute regardless
    of how many tokens are available.
    """

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self.state = RateLimitState(tokens=float(config.burst_capacity))
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for permission to make a request.

        Args:
            timeout: Maximum time to wait (None = wait indefinitely)

        Returns:
            True if permission granted, False if timed out
        """
        start_time = time.time()

        while True:
            with self.state.lock:
                now = time.time()
                self._refill_tokens(now)
                self._cleanup_old_requests(now)

                if self._can_proceed(now):
                    self.state.tokens -= 1.0
                    self.state.request_times.append(now)
                    return True

                if timeout is not None and (now - start_time) >= timeout:
                    self._logger.warning("Rate limiter acquisition timed out")
                    return False

                wait_time = self._calculate_wait_time(now)

            # Sleep outside the lock so other threads can refill/check
            time.sleep(min(max(wait_time, 0.05), 1.0))

    def report_response(self, status_code: int, retry_after: Optional[int] = None) -> None:
        """Adapt to the service's response (429 blocks, 2xx resets backoff)."""
        with self.state.lock:
            if status_code == 429:
                self.state.consecutive_failures += 1
                if retry_after:
                    backoff = float(retry_after)
                else:
                    backoff = min(
                        self.config.retry_after_seconds
                        * (self.config.backoff_multiplier ** self.state.consecutive_failures),
                        self.config.max_backoff_seconds
                    )
                self.state.blocked_until = time.time() + backoff
                self._logger.warning(f"Rate limited by pinning service, backing off {backoff:.0f}s")
            elif 200 <= status_code < 300:
                self.state.consecutive_failures = 0
                self.state.blocked_until = None

    def get_status(self) -> Dict[str, Any]:
        """Get current rate limiter status for monitoring."""
        with self.state.lock:
            return {
                'tokens_available': self.state.tokens,
                'max_tokens': self.config.burst_capacity,
                'requests_in_window': len(self.state.request_times),
                'max_requests_per_minute': self.config.max_requests_per_minute,
                'is_rate_limited': self.state.blocked_until is not None,
                'consecutive_failures': self.state.consecutive_failures,
            }

    def _can_proceed(self, now: float) -> bool:
        if self.state.blocked_until is not None:
            if now < self.state.blocked_until:
                return False
            self.state.blocked_until = None
            self._logger.info("Rate limit period expired, resuming normal operation")

        return (
            self.state.tokens >= 1.0 and
            len(self.state.request_times) < self.config.max_requests_per_minute
        )

    def _refill_tokens(self, now: float) -> None:
        elapsed = now - self.state.last_refill
        if elapsed > 0:
            tokens_per_second = self.config.max_requests_per_minute / 60.0
            self.state.tokens = min(
                self.state.tokens + elapsed * tokens_per_second,
                float(self.config.burst_capacity)
            )
            self.state.last_refill = now

    def _cleanup_old_requests(self, now: float) -> None:
        cutoff_time = now - self.config.window_size_seconds
        while self.state.request_times and self.state.request_times[0] < cutoff_time:
            self.state.request_times.popleft()

    def _calculate_wait_time(self, now: float) -> float:
        """How long to sleep before retrying, with ±25% jitter."""
        wait_times = []

        if self.state.blocked_until is not None:
            wait_times.append(self.state.blocked_until - now)

        if self.state.tokens < 1.0:
            tokens_per_second = self.config.max_requests_per_minute / 60.0
            wait_times.append((1.0 - self.state.tokens) / tokens_per_second)

        if len(self.state.request_times) >= self.config.max_requests_per_minute:
            wait_times.append(self.state.request_times[0] + self.config.window_size_seconds - now)

        base_wait = max(wait_times) if wait_times else 0.0
        if base_wait > 0:
            return base_wait * random.uniform(0.75, 1.25)
        return base_wait
