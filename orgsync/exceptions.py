"""Exception hierarchy for the reconciliation and migration engine."""

from typing import Optional


class OrgSyncError(Exception):
    """Base class for all engine errors."""


class TransportError(OrgSyncError):
    """A remote call failed: timeout, network failure or non-2xx response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class ConfigurationError(OrgSyncError):
    """The request cannot run. Raised before any remote call is made."""


class MetadataNotFoundError(OrgSyncError):
    """An object, field or permission holder does not exist in an environment."""


_PLATFORM_MESSAGES = {
    "INVALID_SESSION_ID": "Session expired. Please sign in to the environment again.",
    "INSUFFICIENT_ACCESS": "Insufficient permissions to access this metadata.",
    "FIELD_INTEGRITY_EXCEPTION": "Cannot modify field: existing data violates the new dependencies.",
}


def describe_error(error: Exception) -> str:
    """Turn an exception into a message suitable for an end user."""
    text = str(error)
    for code, message in _PLATFORM_MESSAGES.items():
        if code in text:
            return message

    if isinstance(error, TransportError) and error.is_auth_error:
        return _PLATFORM_MESSAGES["INVALID_SESSION_ID"]

    return f"Error: {text}"
