"""
Session lifecycle: registry, expiry, capacity, lifecycle coordination and
endpoint resolution.

Only the data model and errors are re-exported here; import the components
from their modules (``disposable.sessions.lifecycle`` and friends).
"""

from disposable.sessions.errors import (
    CapacityExceededError,
    DuplicateSessionError,
    ImageUnavailableError,
    ProvisionFailedError,
    RuntimeClientError,
    SessionError,
    SessionNotFoundError,
)
from disposable.sessions.models import Endpoint, Session, SessionState, SessionView, StopOutcome

__all__ = [
    "CapacityExceededError",
    "DuplicateSessionError",
    "Endpoint",
    "ImageUnavailableError",
    "ProvisionFailedError",
    "RuntimeClientError",
    "Session",
    "SessionError",
    "SessionNotFoundError",
    "SessionState",
    "SessionView",
    "StopOutcome",
]
