"""
HTTP front end for the session broker.

Exposes the lifecycle operations under ``/api/browser``, health and status
endpoints, and forwards ``/browser-session/{id}/...`` to the session's
container.
"""

from typing import List, Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from disposable.api.filters import filter_request_headers, filter_response_headers, upstream_url
from disposable.api.schemas import (
    CleanupResponse,
    ErrorResponse,
    ExtendSessionRequest,
    ExtendSessionResponse,
    RemainingTimeResponse,
    StartSessionRequest,
    StopSessionRequest,
    StopSessionResponse,
)
from disposable.concurrency.timeout import OperationTimeoutError
from disposable.config.logging_config import get_logger
from disposable.config.settings import BrokerConfig
from disposable.sessions.errors import CapacityExceededError, SessionError, SessionNotFoundError
from disposable.sessions.lifecycle import LifecycleCoordinator
from disposable.sessions.models import SessionView, StopOutcome

log = get_logger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class SessionAuthError(Exception):
    """Missing or wrong bearer token."""


def error_response(status_code: int, message: str, code: str, headers: Optional[dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, code=code).model_dump(),
        headers=headers,
    )


class SessionProxy:
    """Forwards HTTP requests to the container backing a session."""

    def __init__(self, lifecycle: LifecycleCoordinator, http_client: Optional[httpx.AsyncClient] = None):
        self.lifecycle = lifecycle
        self.http_client = http_client
        self._owns_client = http_client is None

    async def startup(self) -> None:
        if self.http_client is None:
            timeout = httpx.Timeout(connect=10.0, read=60.0, write=60.0, pool=60.0)
            limits = httpx.Limits(max_keepalive_connections=100, max_connections=200)
            self.http_client = httpx.AsyncClient(timeout=timeout, limits=limits, http2=False)

    async def shutdown(self) -> None:
        if self.http_client is not None and self._owns_client:
            await self.http_client.aclose()
            self.http_client = None

    async def forward(self, request: Request, session_id: str, path: str) -> Response:
        endpoint = self.lifecycle.resolve(session_id)
        if endpoint is None:
            return error_response(404, f"Session {session_id} is not routable", "session_unroutable")

        if self.http_client is None:
            raise RuntimeError("SessionProxy.startup() must be called before forwarding requests")
        target_url = upstream_url(endpoint, path, request.url.query)
        headers = filter_request_headers(
            request.headers,
            client_host=request.client.host if request.client else None,
            scheme=request.url.scheme,
            original_host=request.headers.get("host"),
        )
        log.debug(f"Proxying {request.method} /browser-session/{session_id}/{path} -> {target_url}")

        try:
            upstream = await self.http_client.request(
                request.method,
                target_url,
                headers=headers,
                content=await request.body(),
            )
        except httpx.RequestError as e:
            log.error(f"Upstream error for session {session_id}: {e}")
            return error_response(502, f"Upstream error: {e!s}", "upstream_error")

        return Response(
            content=b"" if request.method.upper() == "HEAD" else upstream.content,
            status_code=upstream.status_code,
            headers=filter_response_headers(upstream.headers),
        )


def create_app(
    config: BrokerConfig,
    lifecycle: Optional[LifecycleCoordinator] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Create and configure the broker FastAPI application.

    Args:
        config: Broker configuration.
        lifecycle: Pre-built coordinator; built from ``config`` when omitted.
        http_client: Client used for proxy forwarding; created on startup when omitted.
    """
    app = FastAPI(
        title="Disposable Suite",
        description="Ephemeral browser session broker",
    )

    coordinator = lifecycle or LifecycleCoordinator.from_config(config)
    proxy = SessionProxy(coordinator, http_client)
    app.state.lifecycle = coordinator

    @app.on_event("startup")
    async def startup():
        await proxy.startup()
        await coordinator.start()

    @app.on_event("shutdown")
    async def shutdown():
        await coordinator.shutdown()
        await proxy.shutdown()

    # ---- Error mapping ----
    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError):
        headers = {"Retry-After": "30"} if isinstance(exc, CapacityExceededError) else None
        return error_response(exc.status_code, exc.message, exc.code, headers)

    @app.exception_handler(OperationTimeoutError)
    async def timeout_error_handler(request: Request, exc: OperationTimeoutError):
        return error_response(504, exc.message, "timeout")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        return error_response(400, messages or "Invalid request", "invalid_request")

    # ---- Auth dependency ----
    async def require_bearer_auth(request: Request):
        """Check the bearer token when an API key is configured."""
        if not config.server.auth_required:
            return
        expected = f"Bearer {config.server.api_key}"
        if request.headers.get("authorization", "") != expected:
            raise SessionAuthError()

    @app.exception_handler(SessionAuthError)
    async def auth_error_handler(request: Request, exc: SessionAuthError):
        return error_response(401, "Unauthorized", "unauthorized", {"WWW-Authenticate": "Bearer"})

    auth = [Depends(require_bearer_auth)]

    # ---- Session API ----
    @app.post("/api/browser/start-session", status_code=201, response_model=SessionView, dependencies=auth)
    async def start_session(body: Optional[StartSessionRequest] = None):
        body = body or StartSessionRequest()
        return await coordinator.create_session(ttl_ms=body.ttl_ms, owner_id=body.owner_id, metadata=body.metadata)

    @app.post("/api/browser/stop-session", response_model=StopSessionResponse, dependencies=auth)
    async def stop_session(body: StopSessionRequest):
        outcome = await coordinator.stop(body.session_id)
        if outcome is StopOutcome.ALREADY_GONE:
            message = "Session already stopped or does not exist"
        else:
            message = "Session stopped successfully"
        return StopSessionResponse(message=message)

    @app.get("/api/browser/remaining-time", response_model=RemainingTimeResponse, dependencies=auth)
    async def remaining_time(session_id: str):
        if coordinator.get_session(session_id) is None:
            raise SessionNotFoundError(f"Session {session_id} not found or expired", session_id)
        return RemainingTimeResponse(
            session_id=session_id,
            remaining_time_ms=coordinator.get_remaining_time(session_id),
        )

    @app.post("/api/browser/extend-session", response_model=ExtendSessionResponse, dependencies=auth)
    async def extend_session(body: ExtendSessionRequest):
        await coordinator.extend_session(body.session_id, body.extend_by_ms)
        return ExtendSessionResponse(
            session_id=body.session_id,
            extended_by_ms=body.extend_by_ms,
            remaining_time_ms=coordinator.get_remaining_time(body.session_id),
        )

    @app.get("/api/browser/sessions", response_model=List[SessionView], dependencies=auth)
    async def list_sessions():
        return coordinator.list_sessions()

    @app.get("/api/browser/sessions/{session_id}", response_model=SessionView, dependencies=auth)
    async def get_session(session_id: str):
        view = coordinator.get_session(session_id)
        if view is None:
            raise SessionNotFoundError(f"Session {session_id} not found or expired", session_id)
        return view

    @app.post("/api/browser/cleanup", response_model=CleanupResponse, dependencies=auth)
    async def cleanup():
        return CleanupResponse(removed=await coordinator.cleanup())

    # ---- Health and status ----
    @app.get("/health")
    async def health():
        report = await coordinator.health_check()
        report["status"] = "healthy" if report["healthy"] else "unhealthy"
        report["active_sessions"] = len(coordinator.registry)
        return JSONResponse(report, status_code=200 if report["healthy"] else 503)

    @app.get("/status", dependencies=auth)
    async def status():
        return coordinator.stats()

    # ---- Session proxy (no auth: browsers load it directly) ----
    @app.api_route("/browser-session/{session_id}/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy_request(session_id: str, path: str, request: Request):
        return await proxy.forward(request, session_id, path)

    return app


def run_server(config: BrokerConfig) -> None:
    """Run the broker with uvicorn (blocking)."""
    import uvicorn

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
    )
