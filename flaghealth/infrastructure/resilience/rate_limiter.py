"""Tracker for the upstream service's advertised rate-limit quota.

Unlike a client-side sliding window, the quota here is learned from the
response headers of previous calls. The last observation always wins.
"""

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from flaghealth.domain.events.api_events import ApiCallDeferred, dispatch_event
from flaghealth.domain.models.quota import (
    LEVEL_DANGER,
    LEVEL_GOOD,
    LEVEL_WARNING,
    QuotaState,
    QuotaStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_THRESHOLD = 10
DEFAULT_MAX_WAIT_SECONDS = 15.0
RESET_BUFFER_MS = 100
DANGER_BELOW = 20
WARNING_BELOW = 50

# Candidate header names, tried in order; the first non-empty value wins.
GLOBAL_REMAINING_HEADERS = (
    "X-Ratelimit-Global-Remaining",
    "X-RateLimit-Global-Remaining",
    "RateLimit-Global-Remaining",
)
ROUTE_REMAINING_HEADERS = (
    "X-Ratelimit-Route-Remaining",
    "X-RateLimit-Route-Remaining",
    "RateLimit-Route-Remaining",
)
RESET_HEADERS = (
    "X-Ratelimit-Reset",
    "X-RateLimit-Reset",
    "RateLimit-Reset",
)
RETRY_AFTER_HEADERS = ("Retry-After",)

_LEADING_INT = re.compile(r"^\s*(-?\d+)")


def parse_int_header(value: Optional[str]) -> Optional[int]:
    """Parses the leading integer of a header value, or None."""
    if not value:
        return None
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


def first_header(headers: Mapping[str, str], names: Sequence[str]) -> Optional[str]:
    """Returns the first non-empty value among candidate names, ignoring case."""
    lowered = {str(k).lower(): v for k, v in headers.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value:
            return value
    return None


class RateLimitTracker:
    """Single source of truth for remaining quota and when it resets.

    One instance is shared by every call of a check. ``observe`` has no
    await points, so concurrent tasks on one event loop never interleave
    inside it.
    """

    def __init__(
        self,
        threshold: int = DEFAULT_THROTTLE_THRESHOLD,
        max_wait_s: float = DEFAULT_MAX_WAIT_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the tracker.

        Args:
            threshold: Remaining count below which calls are throttled.
            max_wait_s: Longest a throttled caller is ever held back.
            clock: Returns wall-clock seconds; reset times are epoch based.
            sleep: Coroutine used to wait.
        """
        self.threshold = threshold
        self.max_wait_s = max_wait_s
        self._clock = clock
        self._sleep = sleep
        self.state = QuotaState()

    def observe(self, headers: Mapping[str, str]) -> None:
        """Overwrites the quota state from a response's headers."""
        self.state = QuotaState(
            global_remaining=parse_int_header(first_header(headers, GLOBAL_REMAINING_HEADERS)),
            route_remaining=parse_int_header(first_header(headers, ROUTE_REMAINING_HEADERS)),
            reset_at_ms=parse_int_header(first_header(headers, RESET_HEADERS)),
            retry_after_s=parse_int_header(first_header(headers, RETRY_AFTER_HEADERS)),
        )

    def is_throttled(self, threshold: Optional[int] = None) -> bool:
        """True iff the lowest known remaining count is below the threshold."""
        lowest = self.state.lowest_remaining
        limit = self.threshold if threshold is None else threshold
        return lowest is not None and lowest < limit

    def throttle_wait_seconds(self) -> float:
        """Seconds a throttled caller should wait, 0 when not throttled.

        Retry-After is preferred over the reset time. A wait longer than
        ``max_wait_s`` is skipped entirely; the caller proceeds and relies
        on retries if the service answers 429.
        """
        if not self.is_throttled():
            return 0.0
        state = self.state
        wait_ms = 0.0
        if state.retry_after_s is not None:
            wait_ms = state.retry_after_s * 1000.0
        elif state.reset_at_ms is not None:
            now_ms = self._clock() * 1000.0
            wait_ms = max(0.0, state.reset_at_ms - now_ms + RESET_BUFFER_MS)
        if wait_ms <= 0 or wait_ms >= self.max_wait_s * 1000.0:
            return 0.0
        return wait_ms / 1000.0

    async def delay_if_throttled(self) -> float:
        """Suspends the caller while quota is low. Returns the seconds waited."""
        wait_s = self.throttle_wait_seconds()
        if wait_s > 0:
            logger.info(f"Rate limit low ({self.state.lowest_remaining} remaining). Waiting {wait_s:.2f}s.")
            dispatch_event(ApiCallDeferred(wait_time_seconds=wait_s, remaining=self.state.lowest_remaining))
            await self._sleep(wait_s)
        elif self.is_throttled():
            logger.debug("Rate limit low but reset is too far out; proceeding without waiting.")
        return wait_s

    def status_for_display(self) -> QuotaStatus:
        """Maps the lowest remaining count to a good/warning/danger tier."""
        lowest = self.state.lowest_remaining
        if lowest is None:
            return QuotaStatus(level=LEVEL_GOOD, message="Rate limit information not available")

        seconds_until_reset = 0
        if self.state.reset_at_ms:
            seconds_until_reset = max(0, int((self.state.reset_at_ms - self._clock() * 1000.0) // 1000))

        if lowest < DANGER_BELOW:
            level, prefix = LEVEL_DANGER, "Critical: "
        elif lowest < WARNING_BELOW:
            level, prefix = LEVEL_WARNING, "Warning: "
        else:
            level, prefix = LEVEL_GOOD, ""
        return QuotaStatus(
            level=level,
            message=f"{prefix}{lowest} requests remaining. Resets in {seconds_until_reset}s",
            remaining=lowest,
        )
