"""
Header and URL helpers for forwarding requests to session containers.
"""

from typing import Mapping, Optional

from disposable.sessions.models import Endpoint

# RFC 7230: hop-by-hop headers that must not be forwarded
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
    }
)

# The broker's own bearer token is never handed to a session container.
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"host", "authorization"}

RESPONSE_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding"}


def filter_headers(headers: Mapping[str, str], exclude: frozenset[str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in exclude}


def filter_request_headers(
    headers: Mapping[str, str],
    client_host: Optional[str] = None,
    scheme: str = "http",
    original_host: Optional[str] = None,
) -> dict[str, str]:
    """
    Headers to send upstream: hop-by-hop, Host and Authorization removed,
    X-Forwarded-* added.
    """
    filtered = filter_headers(headers, REQUEST_EXCLUDED_HEADERS)
    if client_host:
        prior = headers.get("x-forwarded-for")
        filtered["x-forwarded-for"] = f"{prior}, {client_host}" if prior else client_host
    filtered["x-forwarded-proto"] = scheme
    if original_host:
        filtered["x-forwarded-host"] = original_host
    return filtered


def filter_response_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Headers to return to the client.

    Content-Encoding is dropped because httpx hands back a decoded body.
    """
    return filter_headers(headers, RESPONSE_EXCLUDED_HEADERS)


def upstream_url(endpoint: Endpoint, path: str, query: str = "") -> str:
    """Build the container URL for a proxied path ("" maps to "/")."""
    url = f"{endpoint.url}/{path.lstrip('/')}"
    if query:
        url += f"?{query}"
    return url
