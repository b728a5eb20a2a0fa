"""Batch fetching of per-flag definitions in bounded concurrency waves.

Items are split into consecutive waves. All fetches of a wave run
concurrently and the next wave starts only after every fetch of the
current one has settled. One item's failure never affects another.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from flaghealth.domain.errors import FlagHealthError, InvalidResponse
from flaghealth.domain.events.api_events import WaveCompleted, dispatch_event
from flaghealth.domain.interfaces.user_interface import ProgressSink
from flaghealth.domain.models.flags import BatchStats, FlagDefinition, FlagOutcome, FlagStatusRecord

logger = logging.getLogger(__name__)

DEFAULT_WAVE_SIZE = 15
DEFAULT_WAVE_COOLDOWN_S = 0.1

FetchFunc = Callable[[FlagStatusRecord], Awaitable[FlagDefinition]]


def describe_error(error: Exception) -> str:
    """Short text recorded as an outcome's fetch error."""
    if isinstance(error, FlagHealthError):
        return error.user_message
    return str(error) or type(error).__name__


class BatchFetcher:
    """Fans per-flag fetches out in waves and collects their outcomes."""

    def __init__(
        self,
        fetch: FetchFunc,
        wave_size: int = DEFAULT_WAVE_SIZE,
        wave_cooldown_s: float = DEFAULT_WAVE_COOLDOWN_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the batch fetcher.

        Args:
            fetch: Coroutine function fetching one flag's definition.
            wave_size: Number of fetches issued concurrently per wave.
            wave_cooldown_s: Pause between waves (not after the last one).
            sleep: Coroutine used for the cooldown.
        """
        if wave_size <= 0:
            raise ValueError("wave_size must be positive.")
        self.fetch = fetch
        self.wave_size = wave_size
        self.wave_cooldown_s = wave_cooldown_s
        self._sleep = sleep

    async def _fetch_one(self, status: FlagStatusRecord) -> FlagOutcome:
        try:
            definition = await self.fetch(status)
            if not isinstance(definition, FlagDefinition):
                raise InvalidResponse(f"fetching flag '{status.flag_key}'")
        except Exception as e:
            # Per-item isolation: any failure becomes this item's outcome.
            logger.warning(f"Failed to fetch definition for flag '{status.flag_key}': {describe_error(e)}")
            return FlagOutcome(status=status, fetch_error=describe_error(e))
        return FlagOutcome(status=status, definition=definition)

    async def fetch_all(
        self,
        statuses: Sequence[FlagStatusRecord],
        on_progress: Optional[ProgressSink] = None,
    ) -> Tuple[List[FlagOutcome], BatchStats]:
        """Fetches every status's definition.

        Args:
            statuses: Status records, in the order results should come back.
            on_progress: Called with (processed, total) after each wave.

        Returns:
            Outcomes in input order, and the batch counters.
        """
        total = len(statuses)
        stats = BatchStats(total=total)
        outcomes: List[FlagOutcome] = []

        for wave_number, start in enumerate(range(0, total, self.wave_size), start=1):
            wave = statuses[start:start + self.wave_size]
            logger.debug(f"Starting wave {wave_number}: items {start + 1}-{start + len(wave)} of {total}")

            # gather preserves argument order regardless of completion order
            wave_outcomes = await asyncio.gather(*(self._fetch_one(status) for status in wave))

            failed = sum(1 for outcome in wave_outcomes if not outcome.succeeded)
            stats.failed += failed
            stats.succeeded += len(wave_outcomes) - failed
            outcomes.extend(wave_outcomes)

            processed = len(outcomes)
            dispatch_event(WaveCompleted(wave_number=wave_number, wave_size=len(wave), failed=failed, processed=processed, total=total))
            if on_progress:
                on_progress(processed, total)

            if processed < total and self.wave_cooldown_s > 0:
                await self._sleep(self.wave_cooldown_s)

        logger.info(f"Batch fetch finished: {stats.succeeded}/{stats.total} succeeded, {stats.failed} failed")
        return outcomes, stats
