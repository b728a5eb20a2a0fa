"""Error taxonomy for calls against the flag-management service.

Each error carries a ``user_message`` suitable for showing as-is. An
indeterminate comparison is not an error and has no class here.
"""

from typing import Optional


class FlagHealthError(Exception):
    """Base class for all errors surfaced by flaghealth."""

    default_message = "An unexpected error occurred."

    def __init__(self, context: Optional[str] = None, status_code: Optional[int] = None, detail: Optional[str] = None):
        self.context = context
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.user_message)

    def _base_message(self) -> str:
        return self.default_message

    @property
    def user_message(self) -> str:
        message = self._base_message()
        if self.detail:
            message = f"{message} {self.detail}"
        if self.context:
            message = f"{message} ({self.context})"
        return message


class Unauthorized(FlagHealthError):
    default_message = "Authentication failed. Please check your API key."


class Forbidden(FlagHealthError):
    default_message = "Access forbidden. Your API key may not have the required permissions."


class NotFound(FlagHealthError):
    default_message = "Resource not found. Please verify the project key and environment."


class RateLimited(FlagHealthError):
    default_message = "Rate limit exceeded. Please wait a moment and try again."


class UpstreamUnavailable(FlagHealthError):
    default_message = "LaunchDarkly service temporarily unavailable. Please try again in a moment."

    def _base_message(self) -> str:
        if self.status_code == 500:
            return "LaunchDarkly server error. Please try again later."
        return self.default_message


class UpstreamError(FlagHealthError):
    """Any other non-success status."""

    def _base_message(self) -> str:
        return f"API error ({self.status_code})."


class TransportError(FlagHealthError):
    default_message = "Connection error. Please check your internet connection and try again."


class InvalidResponse(FlagHealthError):
    default_message = "Received an invalid response from LaunchDarkly."


class MissingDetailLocator(FlagHealthError):
    default_message = "No detail URL found."


class NoFlagsFound(FlagHealthError):
    default_message = "No flags found for this project and environment."


def error_for_status(status_code: int, context: Optional[str] = None) -> FlagHealthError:
    """Maps a failing HTTP status to the matching taxonomy error."""
    if status_code == 401:
        return Unauthorized(context, status_code)
    if status_code == 403:
        return Forbidden(context, status_code)
    if status_code == 404:
        return NotFound(context, status_code)
    if status_code == 429:
        return RateLimited(context, status_code)
    if 500 <= status_code < 600:
        return UpstreamUnavailable(context, status_code)
    return UpstreamError(context, status_code)
