"""
Typed failures raised by the session lifecycle components.

Each error carries the HTTP status and machine-readable code the API layer
reports, so capacity and provisioning failures stay distinguishable from
"no such session".
"""

from typing import Optional


class SessionError(Exception):
    """Base exception for session lifecycle errors."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, session_id: Optional[str] = None) -> None:
        self.message = message
        self.session_id = session_id
        super().__init__(message)


class CapacityExceededError(SessionError):
    """Admission denied: the concurrent session ceiling is reached."""

    status_code = 429
    code = "capacity_exceeded"
    retryable = True


class ImageUnavailableError(SessionError):
    """The browser image is not present locally and could not be pulled."""

    status_code = 503
    code = "image_unavailable"
    retryable = True


class ProvisionFailedError(SessionError):
    """The container could not be created or started."""

    status_code = 503
    code = "provision_failed"
    retryable = True


class SessionNotFoundError(SessionError):
    """The id does not refer to an active session."""

    status_code = 404
    code = "session_not_found"


class DuplicateSessionError(SessionError):
    """A session with this id is already registered."""

    status_code = 409
    code = "duplicate_session"


class RuntimeClientError(SessionError):
    """The container runtime returned an unexpected error."""

    status_code = 502
    code = "runtime_error"
