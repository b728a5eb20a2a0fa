import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from typer.testing import CliRunner

from flaghealth.domain.models.common import UNKNOWN, DetailLocator, EnvironmentKey, FlagKey
from flaghealth.domain.models.flags import EnvironmentConfig, FlagDefinition, FlagStatusRecord, Variation
from flaghealth.infrastructure.config.settings import clear_test_config
from flaghealth.infrastructure.resilience.api_retry import RetryingRequestExecutor
from flaghealth.infrastructure.resilience.rate_limiter import RateLimitTracker

BASE_URL = "https://ld.test"


class FakeLaunchDarkly:
    """In-memory stand-in for the LaunchDarkly REST API, served via httpx.MockTransport.

    ``scripted`` maps a path to status codes returned (in order) before the
    real payload is served; a code of 0 raises a connection error instead.
    """

    def __init__(self):
        self.projects: List[Dict[str, Any]] = []
        self.status_pages: Dict[str, List[Dict[str, Any]]] = {}
        self.definitions: Dict[str, Dict[str, Any]] = {}
        self.scripted: Dict[str, List[int]] = {}
        self.response_headers: Dict[str, str] = {}
        self.requests: List[httpx.Request] = []

    def add_flag(self, project: str, env: str, key: str, status: str, fallback: Any = UNKNOWN,
                 variations: Optional[List[Any]] = None, on: bool = True, fallthrough: Optional[int] = 0,
                 off: Optional[int] = 1, last_requested: Optional[str] = "2024-05-01T10:00:00Z") -> None:
        """Registers a flag in the listing for project/env and its definition."""
        locator = f"/api/v2/flags/{project}/{key}"
        item: Dict[str, Any] = {"name": status, "_links": {"parent": {"href": locator}}}
        if fallback is not UNKNOWN:
            item["default"] = fallback
        if last_requested:
            item["lastRequested"] = last_requested
        path = f"/api/v2/flag-statuses/{project}/{env}"
        pages = self.status_pages.setdefault(path, [{"items": []}])
        pages[-1]["items"].append(item)

        env_payload: Dict[str, Any] = {"on": on, "fallthrough": {}}
        if fallthrough is not None:
            env_payload["fallthrough"]["variation"] = fallthrough
        else:
            env_payload["fallthrough"]["rollout"] = {"variations": []}
        if off is not None:
            env_payload["offVariation"] = off
        self.definitions[locator] = {
            "key": key,
            "name": key.replace("-", " ").title(),
            "variations": [{"value": v} for v in (variations if variations is not None else [True, False])],
            "environments": {env: env_payload},
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        script = self.scripted.get(path)
        if script:
            code = script.pop(0)
            if code == 0:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(code, headers=self.response_headers, json={"message": "scripted"})

        if path == "/api/v2/projects":
            offset = int(request.url.params.get("offset", 0))
            limit = int(request.url.params.get("limit", 20))
            body = {"items": self.projects[offset:offset + limit], "totalCount": len(self.projects)}
            return httpx.Response(200, headers=self.response_headers, json=body)
        if path in self.status_pages:
            page = int(request.url.params.get("page", 0))
            pages = self.status_pages[path]
            body = dict(pages[page])
            if page + 1 < len(pages):
                body["_links"] = {"next": {"href": f"{path}?page={page + 1}"}}
            return httpx.Response(200, headers=self.response_headers, json=body)
        if path in self.definitions:
            return httpx.Response(200, headers=self.response_headers, content=json.dumps(self.definitions[path]))
        return httpx.Response(404, json={"message": "not found"})

    def paths_requested(self) -> List[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def fake_ld() -> FakeLaunchDarkly:
    return FakeLaunchDarkly()


@pytest.fixture
def no_sleep(mocker):
    """AsyncMock standing in for asyncio.sleep; records requested delays."""
    return mocker.AsyncMock(return_value=None)


@pytest.fixture
def make_executor(no_sleep):
    """Factory building an executor over a MockTransport handler."""
    def _make(handler, tracker: Optional[RateLimitTracker] = None, **kwargs) -> Tuple[RetryingRequestExecutor, RateLimitTracker]:
        tracker = tracker or RateLimitTracker(sleep=no_sleep)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
        kwargs.setdefault("sleep", no_sleep)
        return RetryingRequestExecutor(client, tracker, **kwargs), tracker
    return _make


@pytest.fixture
def make_status():
    def _make(key: str, status: str = "launched", fallback: Any = UNKNOWN, last_evaluated_at=None, locator: Optional[str] = "default") -> FlagStatusRecord:
        if locator == "default":
            locator = f"/api/v2/flags/proj/{key}"
        return FlagStatusRecord(
            status_name=status,
            fallback_value=fallback,
            last_evaluated_at=last_evaluated_at,
            detail_locator=DetailLocator(locator) if locator else None,
        )
    return _make


@pytest.fixture
def make_definition():
    def _make(key: str, values: List[Any], env: str = "production", enabled: bool = True,
              fallthrough: Optional[int] = 0, off: Optional[int] = None, names: Optional[List[str]] = None) -> FlagDefinition:
        names = names or [None] * len(values)
        return FlagDefinition(
            key=FlagKey(key),
            display_name=key,
            variations=[Variation(value=v, name=n) for v, n in zip(values, names)],
            per_environment={EnvironmentKey(env): EnvironmentConfig(enabled=enabled, off_variation=off, fallthrough_variation=fallthrough)},
        )
    return _make


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_test_config():
    """Keeps configuration overrides from leaking between tests."""
    clear_test_config()
    yield
    clear_test_config()
