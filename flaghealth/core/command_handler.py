"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), delegates the work
to the application services and turns errors into user-facing messages
and exit codes.
"""

import logging

from flaghealth.core.services.reconciliation_service import ReconciliationService
from flaghealth.domain.errors import FlagHealthError
from flaghealth.domain.interfaces.flag_service import FlagServiceClient
from flaghealth.domain.interfaces.user_interface import UserInterface
from flaghealth.domain.models.common import EnvironmentKey, ProjectKey

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MISMATCH = 2


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        reconciliation_service: ReconciliationService,
        flag_client: FlagServiceClient,
        ui: UserInterface,
    ):
        self.reconciliation_service = reconciliation_service
        self.flag_client = flag_client
        self.ui = ui

    async def handle_check(
        self,
        project_key: str,
        environment_key: str,
        only_mismatches: bool = False,
        fail_on_mismatch: bool = False,
    ) -> int:
        """Handles the 'check' command. Returns the process exit code."""
        logger.info(f"Handling 'check' command for {project_key}/{environment_key}")
        try:
            with self.ui.progress(f"Checking flags in {project_key}/{environment_key}") as sink:
                report = await self.reconciliation_service.run_check(
                    ProjectKey(project_key),
                    EnvironmentKey(environment_key),
                    on_progress=sink,
                )
        except FlagHealthError as e:
            logger.error(f"Health check failed: {e.user_message}")
            self.ui.display_error(e.user_message)
            return EXIT_ERROR

        self.ui.display_report(report, only_mismatches=only_mismatches)

        if fail_on_mismatch and report.summary.mismatches:
            return EXIT_MISMATCH
        return EXIT_OK

    async def handle_list_projects(self) -> int:
        """Handles the 'projects' command."""
        logger.info("Handling 'projects' command")
        try:
            projects = await self.flag_client.list_projects()
        except FlagHealthError as e:
            logger.error(f"Listing projects failed: {e.user_message}")
            self.ui.display_error(e.user_message)
            return EXIT_ERROR

        self.ui.display_projects(projects)
        tracker = self.reconciliation_service.tracker
        if tracker is not None:
            self.ui.display_quota_status(tracker.status_for_display())
        return EXIT_OK
