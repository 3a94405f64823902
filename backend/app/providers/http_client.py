"""
backend/app/providers/http_client.py

Purpose:
    httpx.AsyncClient wrapper used by upstream providers: retries with
    exponential backoff on transient failures, plus a circuit breaker that
    stops hammering a failing upstream.

Dependencies:
    - httpx
"""

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from app.errors import UpstreamError

logger = logging.getLogger("fortunabet.http_client")

_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
_MAX_BACKOFF_SECONDS = 60.0


class CircuitBreaker:
    """Opens after `failure_threshold` consecutive failures.

    While open, calls are refused until `recovery_timeout` seconds have
    passed since the last failure (half-open: one attempt is let through).
    """

    def __init__(self, failure_threshold: int = 3, recovery_timeout: int = 300):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.is_open = False

    def record_success(self) -> None:
        if self.is_open:
            logger.info("Circuit breaker closed")
        self.failure_count = 0
        self.is_open = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold and not self.is_open:
            self.is_open = True
            logger.warning("Circuit breaker OPEN after %d failures", self.failure_count)

    def can_attempt(self) -> bool:
        if not self.is_open:
            return True
        if self.last_failure_time and (time.time() - self.last_failure_time > self.recovery_timeout):
            logger.info("Circuit breaker half-open, allowing retry")
            return True
        return False

    @property
    def state(self) -> str:
        if not self.is_open:
            return "closed"
        return "half_open" if self.can_attempt() else "open"


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Wait time from Retry-After or X-RateLimit-Retry-After headers."""
    for header in ("retry-after", "x-ratelimit-retry-after"):
        value = response.headers.get(header)
        if value is None:
            continue
        try:
            return float(value)
        except (ValueError, TypeError):
            continue
    return None


def _safe_url(url: str) -> str:
    """Strip query params (they carry the API key) for logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient wrapper with retry, backoff and a circuit breaker."""

    def __init__(
        self,
        name: str,
        timeout: float = 15.0,
        max_retries: int = 2,
        base_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._name = name
        self._max_retries = max_retries
        self._base_delay = base_delay
        self.circuit = CircuitBreaker()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute a request, retrying 429/5xx and network errors."""
        last_exc: Optional[Exception] = None
        last_resp: Optional[httpx.Response] = None
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            try:
                resp = await self._client.request(method, url, **kwargs)
                if resp.status_code not in _RETRYABLE_STATUSES:
                    return resp

                last_resp = resp
                logger.warning(
                    "[%s] HTTP %d on %s %s (attempt %d/%d)",
                    self._name, resp.status_code, method, _safe_url(url), attempt + 1, attempts,
                )
                if attempt < self._max_retries:
                    delay = _parse_retry_after(resp)
                    if delay is None:
                        delay = self._base_delay * (2 ** attempt)
                    await asyncio.sleep(min(delay, _MAX_BACKOFF_SECONDS))

            except (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError) as exc:
                last_exc = exc
                logger.warning(
                    "[%s] Network error on %s %s (attempt %d/%d): %s",
                    self._name, method, _safe_url(url), attempt + 1, attempts, exc,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._base_delay * (2 ** attempt))

        if last_resp is not None:
            logger.error(
                "[%s] All %d attempts failed for %s %s (last status: %d)",
                self._name, attempts, method, _safe_url(url), last_resp.status_code,
            )
            return last_resp

        logger.error(
            "[%s] All %d attempts failed for %s %s: %s",
            self._name, attempts, method, _safe_url(url), last_exc,
        )
        raise UpstreamError(f"{self._name} unreachable.") from last_exc

    async def get_json(self, url: str, **kwargs) -> Any:
        """GET and decode JSON, feeding the circuit breaker.

        Raises UpstreamError when the circuit is open, on network failure
        or on a non-2xx response.
        """
        if not self.circuit.can_attempt():
            raise UpstreamError(f"{self._name} circuit open.")
        try:
            resp = await self.request("GET", url, **kwargs)
            resp.raise_for_status()
            data = resp.json()
        except (UpstreamError, httpx.HTTPError, ValueError) as exc:
            self.circuit.record_failure()
            if isinstance(exc, UpstreamError):
                raise
            raise UpstreamError(f"{self._name} request failed: {exc}") from exc
        self.circuit.record_success()
        return data

    async def aclose(self) -> None:
        await self._client.aclose()
