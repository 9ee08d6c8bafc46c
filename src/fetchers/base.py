"""
Base HTTP client for market data APIs.

Features:
- Circuit breaker so a dead API is not hammered on every trade event
- Exponential backoff with full jitter on transient errors
- Separate connect/read timeouts
- Request ID tracking for log correlation
"""
import asyncio
import random
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()

# Coin payloads are small; anything bigger is not what we asked for
MAX_RESPONSE_SIZE = 2 * 1024 * 1024


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    """
    Opens after `failure_threshold` consecutive failures and rejects calls
    for `recovery_timeout` seconds, then lets a few test calls through.

    Only used from the event loop thread, so no locking.
    """
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 3

    state: CircuitState = field(default=CircuitState.CLOSED)
    failure_count: int = field(default=0)
    success_count: int = field(default=0)
    last_failure_time: Optional[float] = field(default=None)
    half_open_calls: int = field(default=0)

    def can_execute(self) -> bool:
        """Check if request should be allowed."""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.last_failure_time is not None:
                elapsed = time.monotonic() - self.last_failure_time
                if elapsed >= self.recovery_timeout:
                    self.state = CircuitState.HALF_OPEN
                    # This call is the first trial
                    self.half_open_calls = 1
                    self.success_count = 0
                    logger.info("Circuit breaker half-open, testing recovery")
                    return True
            return False

        if self.half_open_calls < self.half_open_max_calls:
            self.half_open_calls += 1
            return True
        return False

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.half_open_max_calls:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                logger.info("Circuit breaker closed, service recovered")
        else:
            self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            self.success_count = 0
            logger.warning("Circuit breaker re-opened after failed recovery test")
        elif self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
            )


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open."""
    pass


def is_retryable_error(error: Exception) -> bool:
    """
    Transient errors worth retrying: connection problems, timeouts,
    429 and 5xx. Client errors (4xx) are not retried.
    """
    if isinstance(error, (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500

    return False


def is_client_error(error: Exception) -> bool:
    """4xx other than 429."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return 400 <= status < 500 and status != 429
    return False


def calculate_backoff(attempt: int, base: float = 0.5, max_delay: float = 10.0) -> float:
    """Full-jitter exponential backoff: random(0, min(cap, base * 2^attempt))."""
    exp_backoff = min(max_delay, base * (2 ** attempt))
    return random.uniform(0, exp_backoff)


class RateLimiter:
    """Token bucket rate limiter for async operations."""

    def __init__(self, rate: float):
        """
        Initialize rate limiter.

        Args:
            rate: Maximum requests per second
        """
        self.rate = rate
        self.tokens = rate
        self.last_update = time.monotonic()
        self.lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self.lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                logger.debug("Rate limited, waiting", wait_seconds=round(wait_time, 2))
                await asyncio.sleep(wait_time)
                self.tokens = 0
            else:
                self.tokens -= 1


class BaseClient:
    """Rate-limited JSON GET client with retries and a circuit breaker."""

    def __init__(
        self,
        base_url: str,
        rate_limit: float,
        connect_timeout: float = 5.0,
        read_timeout: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the HTTP client.

        Args:
            base_url: Base URL for all requests
            rate_limit: Maximum requests per second
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            headers: Additional headers to include in requests
            max_retries: Maximum attempts for transient errors
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url
        self.rate_limiter = RateLimiter(rate_limit)
        self.max_retries = max_retries
        self.circuit_breaker = CircuitBreaker()

        default_headers = {
            "Accept": "application/json",
            "User-Agent": "LaunchpadStream/1.0",
        }
        if headers:
            default_headers.update(headers)

        timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=connect_timeout,
        )

        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=default_headers,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            transport=transport,
        )
        self._closed = False

    async def get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Any:
        """
        Make a rate-limited GET request with automatic retries.

        Raises:
            httpx.HTTPStatusError: On non-2xx response after retries
            CircuitOpenError: If circuit breaker is open
        """
        request_id = request_id or str(uuid.uuid4())[:8]

        if not self.circuit_breaker.can_execute():
            logger.warning("Request rejected by circuit breaker", path=path, request_id=request_id)
            raise CircuitOpenError(f"Circuit breaker open for {self.base_url}")

        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                await self.rate_limiter.acquire()

                logger.debug("HTTP GET", path=path, attempt=attempt + 1, request_id=request_id)
                response = await self.client.get(path, params=params)

                content_length = response.headers.get("content-length")
                if content_length and int(content_length) > MAX_RESPONSE_SIZE:
                    raise ValueError(f"Response too large: {content_length} bytes")

                response.raise_for_status()

                try:
                    data = response.json()
                except Exception as e:
                    logger.error("Invalid JSON response", path=path, error=str(e), request_id=request_id)
                    raise ValueError(f"Invalid JSON response: {e}")

                self.circuit_breaker.record_success()
                return data

            except Exception as e:
                last_error = e
                logger.warning(
                    "Request failed",
                    path=path,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    error=str(e),
                    error_type=type(e).__name__,
                    request_id=request_id,
                )

                if not is_retryable_error(e) or attempt >= self.max_retries - 1:
                    # Unknown coins answer 404; that says nothing about API health
                    if not is_client_error(e):
                        self.circuit_breaker.record_failure()
                    raise

                backoff = calculate_backoff(attempt)
                logger.debug("Retrying after backoff", wait_seconds=round(backoff, 2), request_id=request_id)
                await asyncio.sleep(backoff)

        self.circuit_breaker.record_failure()
        raise last_error or Exception("Request failed with no error details")

    async def close(self) -> None:
        """Close the HTTP client."""
        if not self._closed:
            await self.client.aclose()
            self._closed = True

    async def __aenter__(self) -> "BaseClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
