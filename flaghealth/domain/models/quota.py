"""Quota state observed from the upstream service's rate-limit headers."""

from dataclasses import dataclass
from typing import Optional

LEVEL_GOOD = "good"
LEVEL_WARNING = "warning"
LEVEL_DANGER = "danger"


@dataclass
class QuotaState:
    """Last-known quota. Every field is None until a response reports it.

    ``reset_at_ms`` is epoch milliseconds; ``retry_after_s`` is seconds.
    """
    global_remaining: Optional[int] = None
    route_remaining: Optional[int] = None
    reset_at_ms: Optional[int] = None
    retry_after_s: Optional[int] = None

    @property
    def lowest_remaining(self) -> Optional[int]:
        """Minimum of the known remaining counts, or None if neither is known."""
        known = [v for v in (self.global_remaining, self.route_remaining) if v is not None]
        return min(known) if known else None


@dataclass(frozen=True)
class QuotaStatus:
    """Presentational tier for the remaining quota."""
    level: str
    message: str
    remaining: Optional[int] = None
