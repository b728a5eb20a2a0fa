"""Concrete implementation of the FlagServiceClient interface for LaunchDarkly.

Hides the REST API specifics (paths, pagination, payload shapes) and
translates payloads into domain models. Every call goes through the
RetryingRequestExecutor, so throttling and retries apply uniformly.
"""

import logging
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote

import httpx

from flaghealth.domain.errors import InvalidResponse, MissingDetailLocator, error_for_status
from flaghealth.domain.interfaces.flag_service import FlagServiceClient
from flaghealth.domain.models.common import ApiCredential, EnvironmentKey, ProjectKey
from flaghealth.domain.models.flags import FlagDefinition, FlagStatusRecord, Project
from flaghealth.infrastructure.resilience.api_retry import RetryingRequestExecutor

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2"
DEFAULT_PROJECT_PAGE_SIZE = 20


def create_http_client(credential: ApiCredential, base_url: str, timeout_s: float = 30.0) -> httpx.AsyncClient:
    """Builds the shared HTTP client; the credential is forwarded verbatim."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers={
            "Authorization": credential,
            "Content-Type": "application/json",
        },
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=True,
    )


class LaunchDarklyClient(FlagServiceClient):
    """LaunchDarkly REST API implementation of FlagServiceClient."""

    def __init__(self, executor: RetryingRequestExecutor, page_size: int = DEFAULT_PROJECT_PAGE_SIZE):
        """Initializes the client.

        Args:
            executor: Executor wrapping an httpx client whose base URL is the
                LaunchDarkly host (without the /api/v2 prefix).
            page_size: Page size used when listing projects.
        """
        self.executor = executor
        self.page_size = page_size

    async def aclose(self) -> None:
        await self.executor.client.aclose()

    async def _get_json(self, url: str, context: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self.executor.execute("GET", url, params=params)
        if not response.is_success:
            logger.debug(f"GET {url} failed with status {response.status_code}")
            raise error_for_status(response.status_code, context)
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponse(context) from e
        if not isinstance(data, dict):
            raise InvalidResponse(context)
        return data

    async def list_projects(self) -> List[Project]:
        """Lists all projects with their environments, across every page."""
        projects: List[Project] = []
        offset = 0
        total_count = 0

        while True:
            data = await self._get_json(
                f"{API_PREFIX}/projects",
                "fetching projects",
                params={"limit": self.page_size, "offset": offset, "expand": "environments"},
            )
            items = data.get("items") or []
            projects.extend(Project.from_api(item) for item in items)

            # totalCount from the first page bounds the loop
            if offset == 0:
                total_count = int(data.get("totalCount") or 0)
            offset += self.page_size
            if offset >= total_count or not items:
                break

        logger.info(f"Loaded {len(projects)} project(s)")
        return projects

    async def list_flag_statuses(self, project_key: ProjectKey, environment_key: EnvironmentKey) -> List[FlagStatusRecord]:
        """Lists every flag status, following 'next' links until exhausted."""
        url: Optional[str] = f"{API_PREFIX}/flag-statuses/{quote(project_key, safe='')}/{quote(environment_key, safe='')}"
        seen: Set[str] = set()
        statuses: List[FlagStatusRecord] = []

        while url and url not in seen:
            seen.add(url)
            data = await self._get_json(url, "fetching flag statuses")
            statuses.extend(FlagStatusRecord.from_api(item) for item in (data.get("items") or []))
            url = ((data.get("_links") or {}).get("next") or {}).get("href")

        logger.info(f"Found {len(statuses)} flag status record(s) for {project_key}/{environment_key}")
        return statuses

    async def fetch_flag_definition(self, status: FlagStatusRecord) -> FlagDefinition:
        """Fetches the definition behind a status record's detail locator."""
        if not status.detail_locator:
            raise MissingDetailLocator()
        data = await self._get_json(status.detail_locator, f"fetching flag '{status.flag_key}'")
        return FlagDefinition.from_api(data)
