"""Interface for presenting results to the user.

Defines the contract for messages, the project listing, progress and
the final health report, allowing different UI implementations.
"""

import abc
from contextlib import AbstractContextManager
from typing import Any, Callable, List

from flaghealth.domain.models.flags import Project
from flaghealth.domain.models.quota import QuotaStatus
from flaghealth.domain.models.report import HealthReport

ProgressSink = Callable[[int, int], None]


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_projects(self, projects: List[Project]) -> None:
        """Displays projects and their environments."""
        pass

    @abc.abstractmethod
    def display_report(self, report: HealthReport, only_mismatches: bool = False) -> None:
        """Displays the summary and per-flag results of a health check.

        Args:
            report: The report to render.
            only_mismatches: Render only flags classified as mismatches.
        """
        pass

    @abc.abstractmethod
    def display_quota_status(self, status: QuotaStatus) -> None:
        """Displays the remaining rate-limit quota."""
        pass

    @abc.abstractmethod
    def progress(self, description: str) -> AbstractContextManager:
        """Returns a context manager yielding a ProgressSink.

        The sink is called with (processed, total) as work advances.
        """
        pass
