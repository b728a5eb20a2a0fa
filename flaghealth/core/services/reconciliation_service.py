"""Core service running a full fallback-vs-default health check.

Lists flag statuses, batch-fetches definitions, evaluates every flag and
folds the classifications into a summary.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from flaghealth.core.services.evaluation_engine import evaluate_outcome
from flaghealth.domain.errors import NoFlagsFound
from flaghealth.domain.interfaces.flag_service import FlagServiceClient
from flaghealth.domain.interfaces.user_interface import ProgressSink
from flaghealth.domain.models.common import EnvironmentKey, ProjectKey
from flaghealth.domain.models.flags import BatchStats, FlagOutcome, FlagStatusRecord
from flaghealth.domain.models.report import Classification, FlagReport, HealthReport, HealthSummary
from flaghealth.infrastructure.resilience.batch_fetcher import BatchFetcher
from flaghealth.infrastructure.resilience.rate_limiter import RateLimitTracker

logger = logging.getLogger(__name__)


def summarize(reports: Iterable[FlagReport], failed: int = 0) -> HealthSummary:
    """Counts flags per status name and per classification."""
    summary = HealthSummary(failed=failed)
    for report in reports:
        summary.total += 1
        summary.status_counts[report.status_name] = summary.status_counts.get(report.status_name, 0) + 1
        if report.classification is Classification.MATCH:
            summary.matches += 1
        elif report.classification is Classification.MISMATCH:
            summary.mismatches += 1
        else:
            summary.indeterminate += 1
    return summary


class ReconciliationService:
    """Orchestrates the end-to-end health check for one project+environment."""

    def __init__(
        self,
        flag_client: FlagServiceClient,
        batch_fetcher: BatchFetcher,
        tracker: Optional[RateLimitTracker] = None,
    ):
        """Initializes the service.

        Args:
            flag_client: Access to the flag-management service.
            batch_fetcher: Fetches definitions in bounded waves.
            tracker: Quota tracker whose status is attached to reports.
        """
        self.flag_client = flag_client
        self.batch_fetcher = batch_fetcher
        self.tracker = tracker

    async def fetch_flag_details_batch(
        self,
        statuses: List[FlagStatusRecord],
        on_progress: Optional[ProgressSink] = None,
    ) -> Tuple[List[FlagOutcome], BatchStats]:
        """Fetches every definition. Never fails as a whole; failures are per item."""
        return await self.batch_fetcher.fetch_all(statuses, on_progress=on_progress)

    async def run_check(
        self,
        project_key: ProjectKey,
        environment_key: EnvironmentKey,
        on_progress: Optional[ProgressSink] = None,
    ) -> HealthReport:
        """Runs the health check.

        Args:
            project_key: Project to check.
            environment_key: Environment whose default rules are compared.
            on_progress: Called with (processed, total) after each wave.

        Returns:
            The report, including every successfully evaluated flag even when
            some definitions failed to load.

        Raises:
            NoFlagsFound: If the project+environment has no flags.
            FlagHealthError: If listing the statuses fails.
        """
        logger.info(f"Running health check for {project_key}/{environment_key}")
        statuses = await self.flag_client.list_flag_statuses(project_key, environment_key)
        if not statuses:
            raise NoFlagsFound()

        outcomes, stats = await self.fetch_flag_details_batch(statuses, on_progress=on_progress)

        reports = [evaluate_outcome(outcome, environment_key) for outcome in outcomes]
        summary = summarize(reports, failed=stats.failed)

        if stats.failed:
            logger.warning(f"{stats.failed} of {stats.total} flags failed to load")
        logger.info(
            f"Health check done: {summary.total} flags, {summary.matches} match, "
            f"{summary.mismatches} mismatch, {summary.indeterminate} indeterminate"
        )

        return HealthReport(
            project_key=project_key,
            environment_key=environment_key,
            flags=reports,
            summary=summary,
            stats=stats,
            quota_status=self.tracker.status_for_display() if self.tracker else None,
        )
