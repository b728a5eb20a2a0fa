"""Models for evaluation results and the final health report."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .common import EnvironmentKey, FlagKey, JSONValue, ProjectKey
from .flags import BatchStats, STATUS_ACTIVE, STATUS_INACTIVE, STATUS_LAUNCHED
from .quota import QuotaStatus


class Classification(str, enum.Enum):
    """Outcome of comparing a fallback value with the environment default."""
    MATCH = "match"
    MISMATCH = "mismatch"
    INDETERMINATE = "indeterminate"

    @property
    def label(self) -> str:
        return {
            Classification.MATCH: "Match",
            Classification.MISMATCH: "Mismatch",
            Classification.INDETERMINATE: "Unable to Determine",
        }[self]


@dataclass(frozen=True)
class EvaluationResult:
    """Value a flag serves by default in one environment.

    When ``determinate`` is False the value could not be derived and
    ``reason`` says why.
    """
    determinate: bool
    value: JSONValue = None
    variation_index: Optional[int] = None
    variation_name: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def indeterminate(cls, reason: str) -> "EvaluationResult":
        return cls(determinate=False, reason=reason)


@dataclass(frozen=True)
class FlagReport:
    """Per-flag line of the health report."""
    flag_key: FlagKey
    flag_name: str
    status_name: str
    fallback_value: JSONValue
    environment_default: EvaluationResult
    classification: Classification
    explanation: str
    last_evaluated_at: Optional[datetime] = None
    fetch_error: Optional[str] = None
    deprecated: bool = False
    archived: bool = False

    @property
    def has_mismatch(self) -> bool:
        return self.classification is Classification.MISMATCH

    @property
    def needs_review(self) -> bool:
        return self.status_name == STATUS_ACTIVE


@dataclass
class HealthSummary:
    """Counts over one check.

    Each flag lands in exactly one status bucket and exactly one
    classification bucket.
    """
    total: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    matches: int = 0
    mismatches: int = 0
    indeterminate: int = 0
    failed: int = 0

    @property
    def launched(self) -> int:
        return self.status_counts.get(STATUS_LAUNCHED, 0)

    @property
    def active(self) -> int:
        return self.status_counts.get(STATUS_ACTIVE, 0)

    @property
    def inactive(self) -> int:
        return self.status_counts.get(STATUS_INACTIVE, 0)


@dataclass
class HealthReport:
    """Everything a presentation layer needs after one check."""
    project_key: ProjectKey
    environment_key: EnvironmentKey
    flags: List[FlagReport]
    summary: HealthSummary
    stats: BatchStats
    quota_status: Optional[QuotaStatus] = None

    @property
    def has_partial_failure(self) -> bool:
        return self.stats.failed > 0

    @property
    def partial_failure_message(self) -> Optional[str]:
        if not self.has_partial_failure:
            return None
        return (
            f"Warning: {self.stats.failed} out of {self.stats.total} flags failed to load. "
            f"Showing {self.stats.succeeded} successful results."
        )
