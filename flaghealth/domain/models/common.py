"""Defines common Value Objects used across the domain.

These are plain strings or JSON values at runtime; NewType gives the
signatures semantic clarity.
"""

from typing import Any, NewType

ApiCredential = NewType("ApiCredential", str)   # Opaque access token, forwarded verbatim
ProjectKey = NewType("ProjectKey", str)
EnvironmentKey = NewType("EnvironmentKey", str)
FlagKey = NewType("FlagKey", str)
DetailLocator = NewType("DetailLocator", str)   # Path such as /api/v2/flags/<project>/<flag>

# Any value decoded from JSON: None, bool, int, float, str, list or dict.
JSONValue = Any


class _Unknown:
    """Sentinel for a value the upstream service did not report at all.

    Distinct from ``None``, which is an explicit JSON null.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "unknown"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()
