"""
Error types raised by the Vagrant Cloud client.

Every error derives from VagrantCloudError so callers can catch the whole
family at once. Errors coming back from the remote API keep the remote error
list so server-side diagnostics are not lost.
"""

import json
from typing import Any


class VagrantCloudError(Exception):
    """Base error class for Vagrant Cloud errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for event payloads."""
        result: dict[str, Any] = {"error": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(VagrantCloudError):
    """Invalid static configuration (attribute declarations, credentials)."""


class ValidationError(VagrantCloudError):
    """Validation error for local input/data issues (not API errors)."""


class DataTypeError(ValidationError, TypeError):
    """Value of an unexpected type was provided."""


class StateError(VagrantCloudError):
    """Operation is not allowed in the current state of the resource."""


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(VagrantCloudError):
    """Failure while talking to the remote service."""


class RequestError(ClientError):
    """
    Remote request completed with an unexpected HTTP status.

    The response body is inspected for an ``errors`` entry which is appended
    to the message and exposed as ``errors``.
    """

    def __init__(self, message: str, body: str | bytes | None, status: int):
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        body = body or ""

        remote_errors: Any = None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as e:
            remote_errors = str(e)
        else:
            if isinstance(parsed, dict):
                remote_errors = parsed.get("errors")
                if isinstance(remote_errors, list):
                    message = f"{message} - {', '.join(str(item) for item in remote_errors)}"
                elif remote_errors:
                    message = f"{message} - {remote_errors}"

        if remote_errors is None:
            errors = []
        elif isinstance(remote_errors, list):
            errors = remote_errors
        else:
            errors = [remote_errors]

        super().__init__(message, details={"errors": errors} if errors else None)
        self.errors = errors
        self.status = int(status or 0)
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for event payloads."""
        result = super().to_dict()
        if self.status:
            result["status"] = self.status
        return result


class ConnectionLockedError(ClientError):
    """Shared connection is in use and the caller asked not to wait."""


class AuthenticationError(ClientError):
    """Token exchange with the authorization server failed."""

    def __init__(self, message: str, status: int = 0, body: str | None = None):
        super().__init__(message)
        self.status = int(status or 0)
        self.body = body if body is not None else message


# =============================================================================
# Box Errors
# =============================================================================


class BoxExistsError(ValidationError):
    """Box with the same name already exists in the organization."""


class VersionExistsError(ValidationError):
    """Version with the same number already exists in the box."""


class VersionProviderExistsError(ValidationError):
    """Provider with the same name already exists in the version."""


class VersionStatusChangeError(StateError):
    """Version cannot be released or revoked in its current state."""


class ProviderNotFoundError(StateError):
    """Provider does not exist remotely."""
