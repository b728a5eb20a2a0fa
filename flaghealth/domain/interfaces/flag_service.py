"""Interface for the remote flag-management service.

Defines the contract for listing projects and flag statuses and for
fetching a single flag's definition.
"""

import abc
from typing import List

from flaghealth.domain.models.common import EnvironmentKey, ProjectKey
from flaghealth.domain.models.flags import FlagDefinition, FlagStatusRecord, Project


class FlagServiceClient(abc.ABC):
    """Abstract Base Class for flag-management service access."""

    @abc.abstractmethod
    async def list_projects(self) -> List[Project]:
        """Lists every project visible to the credential, with environments.

        Pagination is handled internally; the result is one flat list.

        Raises:
            Unauthorized: If the credential is rejected.
            UpstreamUnavailable: If the service keeps failing after retries.
        """
        pass

    @abc.abstractmethod
    async def list_flag_statuses(self, project_key: ProjectKey, environment_key: EnvironmentKey) -> List[FlagStatusRecord]:
        """Lists the status record of every flag in a project+environment.

        Raises:
            Unauthorized, NotFound, RateLimited, UpstreamUnavailable:
                The listing failed as a whole.
        """
        pass

    @abc.abstractmethod
    async def fetch_flag_definition(self, status: FlagStatusRecord) -> FlagDefinition:
        """Fetches the full definition of the flag a status record points at.

        Raises:
            FlagHealthError: Any failure; callers treat it per item.
        """
        pass
