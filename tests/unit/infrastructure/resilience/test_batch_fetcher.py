import asyncio
import random

import pytest

from flaghealth.domain.errors import NotFound
from flaghealth.domain.models.flags import FlagDefinition
from flaghealth.infrastructure.api.launchdarkly_client import LaunchDarklyClient
from flaghealth.infrastructure.resilience.batch_fetcher import BatchFetcher, describe_error


def definition_for(status) -> FlagDefinition:
    return FlagDefinition(key=status.flag_key, display_name=status.flag_key)


@pytest.fixture
def statuses(make_status):
    return [make_status(f"flag-{i:02d}") for i in range(31)]


def test_wave_size_must_be_positive(no_sleep):
    async def fetch(status):
        return definition_for(status)

    with pytest.raises(ValueError):
        BatchFetcher(fetch, wave_size=0, sleep=no_sleep)


def test_describe_error():
    assert describe_error(NotFound("fetching flag 'a'")) == (
        "Resource not found. Please verify the project key and environment. (fetching flag 'a')"
    )
    assert describe_error(RuntimeError("boom")) == "boom"
    assert describe_error(KeyError()) == "KeyError"


@pytest.mark.asyncio
async def test_empty_input_returns_nothing(no_sleep, mocker):
    fetch = mocker.AsyncMock()
    progress = mocker.Mock()
    fetcher = BatchFetcher(fetch, sleep=no_sleep)

    outcomes, stats = await fetcher.fetch_all([], on_progress=progress)

    assert outcomes == []
    assert (stats.total, stats.succeeded, stats.failed) == (0, 0, 0)
    fetch.assert_not_awaited()
    progress.assert_not_called()
    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_outcomes_follow_input_order_regardless_of_latency(statuses, no_sleep):
    latencies = [i / 1000 for i in range(len(statuses))]
    random.Random(7).shuffle(latencies)
    by_key = {s.flag_key: latency for s, latency in zip(statuses, latencies)}

    async def fetch(status):
        await asyncio.sleep(by_key[status.flag_key])
        return definition_for(status)

    outcomes, stats = await BatchFetcher(fetch, sleep=no_sleep).fetch_all(statuses)

    assert [o.status for o in outcomes] == statuses
    assert [o.definition.key for o in outcomes] == [s.flag_key for s in statuses]
    assert stats.succeeded == 31


@pytest.mark.asyncio
async def test_waves_are_bounded_and_do_not_overlap(statuses, no_sleep):
    in_flight = 0
    peak = 0
    wave_peaks = []

    async def fetch(status):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return definition_for(status)

    def on_progress(processed, total):
        nonlocal peak
        wave_peaks.append(peak)
        assert in_flight == 0
        peak = 0

    await BatchFetcher(fetch, wave_size=15, sleep=no_sleep).fetch_all(statuses, on_progress=on_progress)

    assert wave_peaks == [15, 15, 1]


@pytest.mark.asyncio
async def test_cooldown_between_waves_only(statuses, no_sleep, mocker):
    fetch = mocker.AsyncMock(side_effect=definition_for)
    progress = mocker.Mock()

    await BatchFetcher(fetch, wave_size=15, wave_cooldown_s=0.1, sleep=no_sleep).fetch_all(statuses, on_progress=progress)

    assert no_sleep.await_args_list == [mocker.call(0.1), mocker.call(0.1)]
    assert progress.call_args_list == [mocker.call(15, 31), mocker.call(30, 31), mocker.call(31, 31)]


@pytest.mark.asyncio
async def test_no_cooldown_for_single_wave(make_status, no_sleep, mocker):
    fetch = mocker.AsyncMock(side_effect=definition_for)

    await BatchFetcher(fetch, wave_size=15, sleep=no_sleep).fetch_all([make_status(f"f{i}") for i in range(15)])

    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_failures_are_isolated_per_item(make_status, no_sleep):
    statuses = [make_status(f"flag-{i}") for i in range(15)]
    failing = {"flag-3", "flag-8", "flag-14"}

    async def fetch(status):
        if status.flag_key == "flag-8":
            raise NotFound(f"fetching flag '{status.flag_key}'")
        if status.flag_key in failing:
            raise RuntimeError("socket closed")
        return definition_for(status)

    outcomes, stats = await BatchFetcher(fetch, sleep=no_sleep).fetch_all(statuses)

    assert len(outcomes) == 15
    assert (stats.total, stats.succeeded, stats.failed) == (15, 12, 3)
    for status, outcome in zip(statuses, outcomes):
        assert outcome.status is status
        assert outcome.succeeded is (status.flag_key not in failing)
    assert outcomes[3].fetch_error == "socket closed"
    assert outcomes[8].fetch_error.startswith("Resource not found.")


@pytest.mark.asyncio
async def test_rate_limited_items_recover_through_retries(fake_ld, make_executor, make_status, no_sleep):
    statuses = []
    for i in range(15):
        fake_ld.add_flag("proj", "production", f"flag-{i}", "launched")
        statuses.append(make_status(f"flag-{i}"))
    for i in (2, 5, 11):
        fake_ld.scripted[f"/api/v2/flags/proj/flag-{i}"] = [429]

    executor, _ = make_executor(fake_ld.handler)
    client = LaunchDarklyClient(executor)
    fetcher = BatchFetcher(client.fetch_flag_definition, sleep=no_sleep)

    outcomes, stats = await fetcher.fetch_all(statuses)

    assert stats.failed == 0
    assert all(o.fetch_error is None for o in outcomes)
    assert [o.definition.key for o in outcomes] == [f"flag-{i}" for i in range(15)]


@pytest.mark.asyncio
async def test_exhausted_item_is_the_only_failure(fake_ld, make_executor, make_status, no_sleep):
    statuses = []
    for i in range(15):
        fake_ld.add_flag("proj", "production", f"flag-{i}", "launched")
        statuses.append(make_status(f"flag-{i}"))
    fake_ld.scripted["/api/v2/flags/proj/flag-6"] = [503, 503, 503, 503]

    executor, _ = make_executor(fake_ld.handler, max_retries=3)
    fetcher = BatchFetcher(LaunchDarklyClient(executor).fetch_flag_definition, sleep=no_sleep)

    outcomes, stats = await fetcher.fetch_all(statuses)

    assert stats.failed == 1
    assert outcomes[6].fetch_error is not None
    assert "temporarily unavailable" in outcomes[6].fetch_error
    assert sum(1 for o in outcomes if o.succeeded) == 14


@pytest.mark.asyncio
async def test_fetch_without_a_definition_fails_only_that_item(make_status, no_sleep):
    statuses = [make_status(f"flag-{i}") for i in range(3)]

    async def fetch(status):
        return None if status.flag_key == "flag-1" else definition_for(status)

    outcomes, stats = await BatchFetcher(fetch, sleep=no_sleep).fetch_all(statuses)

    assert len(outcomes) == 3
    assert (stats.succeeded, stats.failed) == (2, 1)
    assert outcomes[1].fetch_error.startswith("Received an invalid response from LaunchDarkly.")
    assert outcomes[0].succeeded and outcomes[2].succeeded
