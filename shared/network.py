"""
Harald Async HTTP Client
=========================

:class:`HaraldHTTP` fetches JSON documents over **httpx** for the CVE
corpus refresh. Transient failures (transport errors, 429 and 5xx) are
retried with exponential backoff and full jitter; after repeated failed
requests a circuit breaker rejects further calls until a cool-down has
passed, so a dead NVD endpoint costs one error instead of a retry storm
per page.

References:
    - Nygard, M. T. (2018). Release It! 2nd ed. Chapter 5: Stability
      Patterns (Circuit Breaker).
    - AWS Architecture Blog (2015). Exponential Backoff and Jitter.
"""

from __future__ import annotations

import asyncio
import random
import time
from enum import Enum
from typing import Any

import httpx

from shared.logger import HaraldLogger

logger = HaraldLogger("shared.network")

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class HaraldHTTPError(Exception):
    """A request failed for good: retries exhausted, a non-retryable
    status, an undecodable body or an open circuit."""


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Opens after *threshold* consecutive failed requests; after
    *cooldown* seconds one trial request is let through (HALF_OPEN)."""

    def __init__(self, threshold: int = 5, cooldown: float = 30.0) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self.state = CircuitState.CLOSED
        self.failures = 0
        self._opened_at = 0.0

    def allow(self) -> bool:
        if self.state is CircuitState.OPEN:
            if time.monotonic() - self._opened_at < self.cooldown:
                return False
            self.state = CircuitState.HALF_OPEN
            logger.info("Circuit half-open, sending a trial request")
        return True

    def succeeded(self) -> None:
        self.failures = 0
        self.state = CircuitState.CLOSED

    def failed(self) -> None:
        self.failures += 1
        if self.state is CircuitState.HALF_OPEN or self.failures >= self.threshold:
            self.state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            logger.warning("Circuit open after %d failed requests", self.failures)


class HaraldHTTP:
    """Async JSON client with retry and a circuit breaker.

    Usage::

        async with HaraldHTTP(timeout=30.0) as http:
            data = await http.fetch_json(NVD_API_BASE, params={"keywordSearch": "bluetooth"})

    Args:
        timeout: Per-request timeout in seconds.
        max_retries: Extra attempts after a transient failure.
        backoff_base: First backoff ceiling in seconds; doubles per attempt.
        backoff_max: Upper bound for the backoff ceiling.
        headers: Headers sent with every request (e.g. the NVD ``apiKey``).
        transport: httpx transport override (tests pass
            :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._breaker = CircuitBreaker()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": "Harald/1.0", **(headers or {})},
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> HaraldHTTP:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_json(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        """GET *url* and decode its JSON body.

        Raises:
            HaraldHTTPError: The request could not be completed.
        """
        if not self._breaker.allow():
            raise HaraldHTTPError(f"Circuit open, not requesting {url}")
        try:
            response = await self._get_with_retry(url, params)
        except HaraldHTTPError:
            self._breaker.failed()
            raise
        self._breaker.succeeded()
        try:
            return response.json()
        except ValueError as exc:
            raise HaraldHTTPError(f"Invalid JSON from {url}") from exc

    async def _get_with_retry(self, url: str, params: dict[str, Any] | None) -> httpx.Response:
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(url, params=params)
            except httpx.TransportError as exc:
                problem = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code not in RETRYABLE_STATUS:
                    if response.is_error:
                        raise HaraldHTTPError(f"HTTP {response.status_code} from {url}")
                    return response
                problem = f"HTTP {response.status_code}"

            logger.warning("GET %s failed (%s), attempt %d/%d", url, problem, attempt, attempts)
            if attempt < attempts:
                await self._backoff(attempt)
        raise HaraldHTTPError(f"GET {url} failed after {attempts} attempts: {problem}")

    async def _backoff(self, attempt: int) -> None:
        ceiling = min(self._backoff_max, self._backoff_base * 2 ** (attempt - 1))
        await asyncio.sleep(random.uniform(0, ceiling))
