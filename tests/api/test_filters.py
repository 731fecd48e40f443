"""
Tests for proxy header filtering and upstream URL helpers.
"""

from disposable.api.filters import (
    HOP_BY_HOP_HEADERS,
    REQUEST_EXCLUDED_HEADERS,
    filter_request_headers,
    filter_response_headers,
    upstream_url,
)
from disposable.sessions.models import Endpoint


class TestHeaderSets:
    def test_hop_by_hop_headers_defined(self):
        """Standard hop-by-hop headers are covered."""
        assert "connection" in HOP_BY_HOP_HEADERS
        assert "transfer-encoding" in HOP_BY_HOP_HEADERS
        assert "upgrade" in HOP_BY_HOP_HEADERS

    def test_request_exclusions(self):
        assert HOP_BY_HOP_HEADERS <= REQUEST_EXCLUDED_HEADERS
        assert "host" in REQUEST_EXCLUDED_HEADERS
        assert "authorization" in REQUEST_EXCLUDED_HEADERS


class TestFilterRequestHeaders:
    def test_removes_hop_by_hop_host_and_auth(self):
        """Filtering is case-insensitive."""
        filtered = filter_request_headers(
            {
                "Connection": "keep-alive",
                "Host": "broker.example.com",
                "Authorization": "Bearer s3cret",
                "Accept": "text/html",
            }
        )
        assert "Connection" not in filtered
        assert "Host" not in filtered
        assert "Authorization" not in filtered
        assert filtered["Accept"] == "text/html"

    def test_adds_forwarding_headers(self):
        filtered = filter_request_headers(
            {"x-forwarded-for": "10.0.0.1"},
            client_host="10.0.0.2",
            scheme="https",
            original_host="broker.example.com",
        )
        assert filtered["x-forwarded-for"] == "10.0.0.1, 10.0.0.2"
        assert filtered["x-forwarded-proto"] == "https"
        assert filtered["x-forwarded-host"] == "broker.example.com"


class TestFilterResponseHeaders:
    def test_drops_encoding_and_hop_by_hop(self):
        filtered = filter_response_headers(
            {"Content-Encoding": "gzip", "Transfer-Encoding": "chunked", "Set-Cookie": "a=b"}
        )
        assert filtered == {"Set-Cookie": "a=b"}


class TestUpstreamUrl:
    def test_paths_and_query(self):
        endpoint = Endpoint(host="127.0.0.1", port=32768)
        assert upstream_url(endpoint, "") == "http://127.0.0.1:32768/"
        assert upstream_url(endpoint, "vnc/index.html") == "http://127.0.0.1:32768/vnc/index.html"
        assert upstream_url(endpoint, "/a", "x=1") == "http://127.0.0.1:32768/a?x=1"
