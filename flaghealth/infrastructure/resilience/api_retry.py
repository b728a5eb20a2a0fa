"""Service for executing HTTP calls with throttle avoidance and retries.

Implements exponential backoff for transient failures such as rate limits
(429), temporary server issues (5xx) and connection-level errors.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, Optional

import httpx

from flaghealth.domain.errors import TransportError
from flaghealth.domain.events.api_events import (
    ApiCallFailed,
    ApiCallSucceeded,
    RetryScheduled,
    dispatch_event,
)
from flaghealth.infrastructure.resilience.rate_limiter import (
    RETRY_AFTER_HEADERS,
    RateLimitTracker,
    first_header,
    parse_int_header,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})


class RetryingRequestExecutor:
    """Performs one logical call through the quota tracker with bounded retries.

    A response is always returned once the server has answered, even when
    it is a failure status after retries are exhausted; the caller decides
    what a failure means. Only connection-level failures raise.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        tracker: RateLimitTracker,
        max_retries: int = 3,
        initial_delay_s: float = 1.0,
        backoff_factor: float = 2.0,
        max_delay_s: float = 30.0,
        retryable_statuses: Iterable[int] = RETRYABLE_STATUSES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the executor.

        Args:
            client: The HTTP client used to issue calls.
            tracker: Shared quota tracker, consulted before every attempt.
            max_retries: Retries after the first attempt.
            initial_delay_s: Delay before the first retry.
            backoff_factor: Multiplier applied per further retry.
            max_delay_s: Upper bound for any single delay.
            retryable_statuses: Statuses that trigger a retry.
            sleep: Coroutine used to wait between attempts.
        """
        self.client = client
        self.tracker = tracker
        self.max_retries = max_retries
        self.initial_delay_s = initial_delay_s
        self.backoff_factor = backoff_factor
        self.max_delay_s = max_delay_s
        self.retryable_statuses = frozenset(retryable_statuses)
        self._sleep = sleep

        logger.debug(
            f"RetryingRequestExecutor initialized: max_retries={max_retries}, "
            f"initial_delay={initial_delay_s}s, factor={backoff_factor}, max_delay={max_delay_s}s"
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given zero-based attempt."""
        return min(self.initial_delay_s * (self.backoff_factor ** attempt), self.max_delay_s)

    def _retry_delay(self, attempt: int, response: Optional[httpx.Response]) -> float:
        if response is not None:
            retry_after = parse_int_header(first_header(response.headers, RETRY_AFTER_HEADERS))
            if retry_after is not None and retry_after >= 0:
                return min(float(retry_after), self.max_delay_s)
        return self.backoff_delay(attempt)

    async def execute(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issues the call, retrying retryable statuses and transport errors.

        Args:
            method: HTTP method.
            url: Absolute URL, or a path relative to the client's base URL.
            **kwargs: Passed through to ``httpx.AsyncClient.request``.

        Returns:
            The first success response, the first non-retryable response, or
            the last retryable response once retries are exhausted.

        Raises:
            TransportError: If connection-level failures exhaust the retries.
        """
        for attempt in range(self.max_retries + 1):
            await self.tracker.delay_if_throttled()

            start_time = time.perf_counter()
            try:
                response = await self.client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt < self.max_retries:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        f"Connection error calling {method} {url} on attempt {attempt + 1}/{self.max_retries + 1}: "
                        f"{type(e).__name__}. Waiting {delay:.2f}s..."
                    )
                    dispatch_event(RetryScheduled(method=method, url=url, attempt_number=attempt + 1, delay_seconds=delay, cause=type(e).__name__))
                    await self._sleep(delay)
                    continue
                logger.error(f"Max retries ({self.max_retries}) reached for {method} {url}. Last error: {e}")
                dispatch_event(ApiCallFailed(method=method, url=url, error_type=type(e).__name__, error_message=str(e)))
                raise TransportError(detail=str(e) or type(e).__name__) from e

            latency_ms = (time.perf_counter() - start_time) * 1000
            self.tracker.observe(response.headers)

            if response.is_success:
                dispatch_event(ApiCallSucceeded(method=method, url=url, status_code=response.status_code, latency_ms=latency_ms, attempts=attempt + 1))
                return response

            if response.status_code not in self.retryable_statuses:
                logger.debug(f"Non-retryable status {response.status_code} from {method} {url}")
                dispatch_event(ApiCallFailed(method=method, url=url, error_type="HTTPStatus", error_message=response.reason_phrase, status_code=response.status_code))
                return response

            if attempt == self.max_retries:
                logger.error(f"Max retries ({self.max_retries}) reached for {method} {url}. Last status: {response.status_code}")
                dispatch_event(ApiCallFailed(method=method, url=url, error_type="HTTPStatus", error_message=response.reason_phrase, status_code=response.status_code))
                return response

            delay = self._retry_delay(attempt, response)
            logger.warning(
                f"Retry attempt {attempt + 1}/{self.max_retries} after {delay:.2f}s "
                f"for status {response.status_code} from {method} {url}"
            )
            dispatch_event(RetryScheduled(method=method, url=url, attempt_number=attempt + 1, delay_seconds=delay, cause=str(response.status_code)))
            await response.aclose()
            await self._sleep(delay)

        # Unreachable: every loop path returns, continues or raises.
        raise RuntimeError("Retry loop exited without a result")
