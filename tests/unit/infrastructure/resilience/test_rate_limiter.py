import asyncio

import pytest

from flaghealth.domain.models.quota import LEVEL_DANGER, LEVEL_GOOD, LEVEL_WARNING
from flaghealth.infrastructure.resilience.rate_limiter import (
    RateLimitTracker,
    first_header,
    parse_int_header,
)

NOW_S = 1_000.0
NOW_MS = 1_000_000


@pytest.fixture
def tracker(no_sleep):
    return RateLimitTracker(clock=lambda: NOW_S, sleep=no_sleep)


@pytest.mark.parametrize("value, expected", [
    ("42", 42),
    (" 7 ", 7),
    ("12, 30", 12),
    ("1700000000000", 1_700_000_000_000),
    ("", None),
    (None, None),
    ("soon", None),
])
def test_parse_int_header(value, expected):
    assert parse_int_header(value) == expected


def test_first_header_ignores_case_and_skips_empty_values():
    headers = {"x-ratelimit-global-remaining": "", "RATELIMIT-GLOBAL-REMAINING": "8"}
    names = ("X-Ratelimit-Global-Remaining", "RateLimit-Global-Remaining")
    assert first_header(headers, names) == "8"
    assert first_header({}, names) is None


def test_fresh_tracker_is_not_throttled(tracker: RateLimitTracker):
    assert tracker.state.lowest_remaining is None
    assert not tracker.is_throttled()


def test_observe_without_quota_headers_leaves_unknown(tracker: RateLimitTracker):
    tracker.observe({"Content-Type": "application/json"})
    assert tracker.state.global_remaining is None
    assert tracker.state.route_remaining is None
    assert not tracker.is_throttled()


def test_observe_reads_header_aliases(tracker: RateLimitTracker):
    tracker.observe({
        "x-ratelimit-global-remaining": "120",
        "RateLimit-Route-Remaining": "42",
        "X-RateLimit-Reset": str(NOW_MS + 5_000),
        "retry-after": "3",
    })
    assert tracker.state.global_remaining == 120
    assert tracker.state.route_remaining == 42
    assert tracker.state.reset_at_ms == NOW_MS + 5_000
    assert tracker.state.retry_after_s == 3
    assert tracker.state.lowest_remaining == 42


def test_first_listed_alias_wins(tracker: RateLimitTracker):
    tracker.observe({"X-Ratelimit-Global-Remaining": "30", "RateLimit-Global-Remaining": "5"})
    assert tracker.state.global_remaining == 30


def test_last_observation_wins(tracker: RateLimitTracker):
    tracker.observe({"X-Ratelimit-Route-Remaining": "2"})
    assert tracker.is_throttled()

    tracker.observe({})
    assert not tracker.is_throttled()


@pytest.mark.parametrize("global_remaining, route_remaining, expected", [
    (9, None, True),
    (None, 9, True),
    (50, 5, True),
    (5, 50, True),
    (0, 100, True),
    (10, 10, False),
    (11, None, False),
    (None, None, False),
])
def test_is_throttled_uses_lowest_remaining(tracker, global_remaining, route_remaining, expected):
    headers = {}
    if global_remaining is not None:
        headers["X-Ratelimit-Global-Remaining"] = str(global_remaining)
    if route_remaining is not None:
        headers["X-Ratelimit-Route-Remaining"] = str(route_remaining)
    tracker.observe(headers)
    assert tracker.is_throttled() is expected


def test_is_throttled_accepts_threshold_override(tracker: RateLimitTracker):
    tracker.observe({"X-Ratelimit-Global-Remaining": "15"})
    assert not tracker.is_throttled()
    assert tracker.is_throttled(threshold=20)


@pytest.mark.asyncio
async def test_delay_prefers_retry_after(tracker: RateLimitTracker, no_sleep):
    tracker.observe({
        "X-Ratelimit-Global-Remaining": "3",
        "Retry-After": "2",
        "X-Ratelimit-Reset": str(NOW_MS + 9_000),
    })

    waited = await tracker.delay_if_throttled()

    assert waited == pytest.approx(2.0)
    no_sleep.assert_awaited_once_with(pytest.approx(2.0))


@pytest.mark.asyncio
async def test_delay_uses_reset_time_plus_buffer(tracker: RateLimitTracker, no_sleep):
    tracker.observe({"X-Ratelimit-Route-Remaining": "1", "X-Ratelimit-Reset": str(NOW_MS + 3_000)})

    waited = await tracker.delay_if_throttled()

    assert waited == pytest.approx(3.1)
    no_sleep.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [
    {"X-Ratelimit-Global-Remaining": "1", "Retry-After": "20"},
    {"X-Ratelimit-Global-Remaining": "1", "X-Ratelimit-Reset": str(NOW_MS + 60_000)},
    {"X-Ratelimit-Global-Remaining": "1", "X-Ratelimit-Reset": str(NOW_MS - 5_000)},
    {"X-Ratelimit-Global-Remaining": "1"},
])
async def test_throttled_without_usable_wait_proceeds_immediately(tracker, no_sleep, headers):
    tracker.observe(headers)
    assert tracker.is_throttled()

    waited = await tracker.delay_if_throttled()

    assert waited == 0.0
    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_delay_when_quota_is_healthy(tracker: RateLimitTracker, no_sleep):
    tracker.observe({"X-Ratelimit-Global-Remaining": "500", "Retry-After": "5"})

    assert await tracker.delay_if_throttled() == 0.0
    no_sleep.assert_not_awaited()


def test_max_wait_is_configurable(no_sleep):
    tracker = RateLimitTracker(max_wait_s=30.0, clock=lambda: NOW_S, sleep=no_sleep)
    tracker.observe({"X-Ratelimit-Global-Remaining": "1", "Retry-After": "20"})
    assert tracker.throttle_wait_seconds() == pytest.approx(20.0)


@pytest.mark.parametrize("remaining, level, prefix", [
    (5, LEVEL_DANGER, "Critical: "),
    (19, LEVEL_DANGER, "Critical: "),
    (20, LEVEL_WARNING, "Warning: "),
    (49, LEVEL_WARNING, "Warning: "),
    (50, LEVEL_GOOD, ""),
    (900, LEVEL_GOOD, ""),
])
def test_status_for_display_tiers(tracker, remaining, level, prefix):
    tracker.observe({"X-Ratelimit-Global-Remaining": str(remaining), "X-Ratelimit-Reset": str(NOW_MS + 5_000)})

    status = tracker.status_for_display()

    assert status.level == level
    assert status.remaining == remaining
    assert status.message == f"{prefix}{remaining} requests remaining. Resets in 5s"


def test_status_for_display_without_information(tracker: RateLimitTracker):
    status = tracker.status_for_display()
    assert status.level == LEVEL_GOOD
    assert status.message == "Rate limit information not available"
    assert status.remaining is None


@pytest.mark.asyncio
async def test_concurrent_observers_leave_a_complete_observation(tracker: RateLimitTracker):
    async def observe(n: int):
        await asyncio.sleep(0)
        tracker.observe({"X-Ratelimit-Global-Remaining": str(n), "X-Ratelimit-Route-Remaining": str(n)})

    await asyncio.gather(*(observe(n) for n in range(50)))

    # Never a mix of two observations.
    assert tracker.state.global_remaining == tracker.state.route_remaining
