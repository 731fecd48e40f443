"""
HTTP layer for the session broker.

- Session lifecycle endpoints under ``/api/browser``
- Health and status endpoints
- Reverse proxy from ``/browser-session/{id}/`` to the session container
- Bearer token authentication when an API key is configured
"""

from disposable.api.filters import (
    HOP_BY_HOP_HEADERS,
    filter_request_headers,
    filter_response_headers,
)
from disposable.api.server import SessionProxy, create_app, run_server

__all__ = [
    "HOP_BY_HOP_HEADERS",
    "SessionProxy",
    "create_app",
    "filter_request_headers",
    "filter_response_headers",
    "run_server",
]
