from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from disposable.config.settings import MAX_SESSION_MS, MIN_SESSION_MS


class StartSessionRequest(BaseModel):
    ttl_ms: Optional[int] = Field(
        None,
        ge=MIN_SESSION_MS,
        le=MAX_SESSION_MS,
        description="Session lifetime; the configured default when omitted",
    )
    owner_id: Optional[str] = Field(None, max_length=256, description="Caller identity, used for labels only")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StopSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)


class ExtendSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    extend_by_ms: int = Field(..., ge=MIN_SESSION_MS, le=MAX_SESSION_MS)


class StopSessionResponse(BaseModel):
    success: bool = True
    stopped: bool = True
    message: str


class RemainingTimeResponse(BaseModel):
    success: bool = True
    session_id: str
    remaining_time_ms: int


class ExtendSessionResponse(BaseModel):
    success: bool = True
    session_id: str
    extended_by_ms: int
    remaining_time_ms: int


class CleanupResponse(BaseModel):
    success: bool = True
    removed: int


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
