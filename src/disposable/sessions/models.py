import math
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """In-memory lifecycle state of a registered session.

    PENDING sessions hold a capacity slot but have no registry entry yet;
    GONE sessions are simply absent from the registry.
    """

    ACTIVE = "active"
    EXTENDING = "extending"
    RECLAIMING = "reclaiming"


class StopOutcome(str, Enum):
    """Both outcomes are successes; ALREADY_GONE is the idempotent no-op."""

    STOPPED = "stopped"
    ALREADY_GONE = "already_gone"


class Endpoint(BaseModel):
    """Host-reachable address of a session's browser port."""

    host: str
    port: int = Field(..., ge=1, le=65535)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class Session(BaseModel):
    """A time-bounded allocation of one disposable container."""

    id: str
    endpoint: Optional[Endpoint] = None
    expires_at: float = Field(..., description="Absolute expiry, epoch seconds")
    owner_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    state: SessionState = Field(SessionState.ACTIVE, exclude=True)

    def remaining_ms(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, int((self.expires_at - now) * 1000))

    def remaining_ttl_seconds(self, now: Optional[float] = None) -> int:
        """Whole seconds left, rounded up; used as the mirror record expiry."""
        now = time.time() if now is None else now
        return max(0, math.ceil(self.expires_at - now))

    def is_active(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at > now

    @property
    def routable(self) -> bool:
        return self.endpoint is not None

    def to_record(self) -> str:
        """Serialize for the durable mirror (state is in-memory only)."""
        return self.model_dump_json()

    @classmethod
    def from_record(cls, raw: str | bytes) -> "Session":
        return cls.model_validate_json(raw)


class SessionView(BaseModel):
    """What callers of the lifecycle API get back."""

    id: str
    endpoint: Optional[Endpoint]
    expires_at: float
    remaining_time_ms: int
    owner_id: Optional[str] = None
    proxy_url: str

    @classmethod
    def from_session(cls, session: Session, now: Optional[float] = None) -> "SessionView":
        return cls(
            id=session.id,
            endpoint=session.endpoint,
            expires_at=session.expires_at,
            remaining_time_ms=session.remaining_ms(now),
            owner_id=session.owner_id,
            proxy_url=f"/browser-session/{session.id}/",
        )
