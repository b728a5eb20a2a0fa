"""Domain Events related to API calls and batch fetching.

Events are emitted when calls are deferred by the quota tracker, retried,
fail, or succeed, and when a wave of the batch fetcher settles.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when a call is held back because quota is low."""
    wait_time_seconds: float
    remaining: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when a call returns a success status."""
    method: str
    url: str
    status_code: int
    latency_ms: float
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a call fails definitively (after retries)."""
    method: str
    url: str
    error_type: str
    error_message: str
    status_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed call."""
    method: str
    url: str
    attempt_number: int
    delay_seconds: float
    cause: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class WaveCompleted(DomainEvent):
    """Event triggered when every fetch of one wave has settled."""
    wave_number: int
    wave_size: int
    failed: int
    processed: int
    total: int
    timestamp: float = field(default_factory=time.time)


def dispatch_event(event: Any) -> None:
    """Publishes an event. Events are only logged for now."""
    logger.debug(f"EVENT: {event}")
