"""Domain models for feature flags as reported by the flag-management service.

FlagStatusRecord comes from the status listing, FlagDefinition from the
per-flag detail call. Both are immutable once fetched. FlagOutcome pairs a
status with the result of its detail fetch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .common import (
    UNKNOWN,
    DetailLocator,
    EnvironmentKey,
    FlagKey,
    JSONValue,
    ProjectKey,
)

logger = logging.getLogger(__name__)

STATUS_LAUNCHED = "launched"
STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
KNOWN_STATUSES = (STATUS_LAUNCHED, STATUS_ACTIVE, STATUS_INACTIVE)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parses an ISO-8601 timestamp, tolerating a trailing 'Z'."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp from upstream: {value!r}")
        return None


def _link_href(payload: Mapping[str, Any], rel: str) -> Optional[str]:
    links = payload.get("_links") or {}
    link = links.get(rel) or {}
    href = link.get("href")
    return href or None


@dataclass(frozen=True)
class Environment:
    """An environment within a project (e.g. 'production')."""
    key: EnvironmentKey
    name: str


@dataclass(frozen=True)
class Project:
    """A project together with its environments."""
    key: ProjectKey
    name: str
    environments: List[Environment] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "Project":
        env_items = (payload.get("environments") or {}).get("items") or []
        return cls(
            key=ProjectKey(payload.get("key", "")),
            name=payload.get("name") or payload.get("key", ""),
            environments=[
                Environment(key=EnvironmentKey(e.get("key", "")), name=e.get("name") or e.get("key", ""))
                for e in env_items
            ],
        )


@dataclass(frozen=True)
class FlagStatusRecord:
    """One flag's status in a project+environment.

    ``fallback_value`` is the value the application passes to the SDK as its
    fallback. It is ``UNKNOWN`` when the service reported none and ``None``
    when it reported an explicit null.
    """
    status_name: str
    fallback_value: JSONValue = UNKNOWN
    last_evaluated_at: Optional[datetime] = None
    detail_locator: Optional[DetailLocator] = None

    @property
    def flag_key(self) -> FlagKey:
        """Flag key taken from the last segment of the detail locator."""
        if self.detail_locator:
            return FlagKey(self.detail_locator.rstrip("/").split("/")[-1])
        return FlagKey("unknown")

    @property
    def never_evaluated(self) -> bool:
        return self.last_evaluated_at is None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "FlagStatusRecord":
        href = _link_href(payload, "parent")
        return cls(
            status_name=str(payload.get("name", "")),
            fallback_value=payload["default"] if "default" in payload else UNKNOWN,
            last_evaluated_at=_parse_timestamp(payload.get("lastRequested")),
            detail_locator=DetailLocator(href) if href else None,
        )


@dataclass(frozen=True)
class Variation:
    value: JSONValue
    name: Optional[str] = None


@dataclass(frozen=True)
class EnvironmentConfig:
    """Targeting configuration of a flag in one environment.

    An absent ``fallthrough_variation`` means the default rule is a rollout
    or experiment rather than a single static variation.
    """
    enabled: bool
    off_variation: Optional[int] = None
    fallthrough_variation: Optional[int] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "EnvironmentConfig":
        fallthrough = payload.get("fallthrough") or {}
        return cls(
            enabled=payload.get("on") is True,
            off_variation=_as_index(payload.get("offVariation")),
            fallthrough_variation=_as_index(fallthrough.get("variation")),
        )


def _as_index(value: Any) -> Optional[int]:
    # bool is an int subclass; a JSON true is not a variation index
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


@dataclass(frozen=True)
class FlagDefinition:
    """Full definition of a flag, including every environment's configuration."""
    key: FlagKey
    display_name: str
    variations: List[Variation] = field(default_factory=list)
    per_environment: Dict[EnvironmentKey, EnvironmentConfig] = field(default_factory=dict)
    deprecated: bool = False
    archived: bool = False

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "FlagDefinition":
        variations = [
            Variation(value=v.get("value"), name=v.get("name"))
            for v in (payload.get("variations") or [])
            if isinstance(v, Mapping)
        ]
        environments = {
            EnvironmentKey(env_key): EnvironmentConfig.from_api(env)
            for env_key, env in (payload.get("environments") or {}).items()
            if isinstance(env, Mapping)
        }
        return cls(
            key=FlagKey(payload.get("key", "")),
            display_name=payload.get("name") or payload.get("key", ""),
            variations=variations,
            per_environment=environments,
            deprecated=bool(payload.get("deprecated", False)),
            archived=bool(payload.get("archived", False)),
        )


@dataclass(frozen=True)
class FlagOutcome:
    """Settled result of fetching one flag's definition.

    Exactly one of ``definition`` or ``fetch_error`` is set.
    """
    status: FlagStatusRecord
    definition: Optional[FlagDefinition] = None
    fetch_error: Optional[str] = None

    def __post_init__(self):
        if (self.definition is None) == (self.fetch_error is None):
            raise ValueError("FlagOutcome needs exactly one of definition or fetch_error")

    @property
    def succeeded(self) -> bool:
        return self.definition is not None


@dataclass
class BatchStats:
    """Counters accumulated over one batch run."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
