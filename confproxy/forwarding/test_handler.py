"""
Tests for request forwarding.

Tests cover:
- Outbound URL rewriting (scheme, host, path, query)
- Verbatim request header copy and body streaming
- Header-set preserving response relay and byte-exact bodies
- Transport errors surfaced as 500
- Upstream response release on every exit path
"""

import asyncio
import logging

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from confproxy.errors import UpstreamTransportError
from confproxy.forwarding.handler import (
    ForwardingHandler,
    UpstreamResponse,
    build_target_url,
    copy_request_headers,
)
from confproxy.models import RouteEntry
from confproxy.server import create_app
from confproxy.utils_tests.upstream_mock import ChunkedStream, upstream_response

API_ROUTE = {
    "api": {
        "Method": "GET",
        "PathAccess": "users",
        "DominRedirect": "backend.internal",
        "PathRedirect": "v1/users",
    }
}


def _request(
    path="/api/users", query=b"", headers=None, method="GET", raw_path=None
) -> Request:
    scope = {
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("proxy.example.com", 80),
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode(),
        "query_string": query,
        "headers": headers
        if headers is not None
        else [(b"host", b"proxy.example.com"), (b"x-custom", b"abc")],
    }

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


class TestBuildTargetUrl:
    def test_full_rewrite(self):
        route = RouteEntry(rewrite_host="backend.internal", rewrite_path="v1/users")

        assert build_target_url(_request(), route) == "https://backend.internal/v1/users"

    def test_scheme_defaults_to_https(self):
        url = build_target_url(_request(), RouteEntry(rewrite_host="b"))

        assert url.startswith("https://")

    def test_explicit_scheme(self):
        url = build_target_url(_request(), RouteEntry(scheme="http", rewrite_host="b"))

        assert url == "http://b/api/users"

    def test_host_kept_without_rewrite_host(self):
        url = build_target_url(_request(), RouteEntry(rewrite_path="v1"))

        assert url == "https://proxy.example.com/v1"

    def test_host_port_is_kept(self):
        request = _request(headers=[(b"host", b"proxy.example.com:8080")])

        assert build_target_url(request, RouteEntry()) == "https://proxy.example.com:8080/api/users"

    def test_raw_path_kept_without_rewrite_path(self):
        request = _request(path="/files/a/b", raw_path=b"/files/a%2Fb")

        url = build_target_url(request, RouteEntry(rewrite_host="b"))

        assert url == "https://b/files/a%2Fb"

    def test_query_is_preserved(self):
        request = _request(query=b"page=2&q=a%20b")
        route = RouteEntry(rewrite_host="b", rewrite_path="/v1/users")

        assert build_target_url(request, route) == "https://b/v1/users?page=2&q=a%20b"


class TestCopyRequestHeaders:
    def test_everything_but_host(self):
        request = _request(
            headers=[
                (b"host", b"proxy.example.com"),
                (b"connection", b"keep-alive"),
                (b"x-multi", b"1"),
                (b"x-multi", b"2"),
            ]
        )

        assert copy_request_headers(request) == [
            (b"connection", b"keep-alive"),
            (b"x-multi", b"1"),
            (b"x-multi", b"2"),
        ]


class TestForwardingHandler:
    @pytest.mark.asyncio
    async def test_transport_error_returns_500(self):
        def refuse(request):
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        handler = ForwardingHandler(RouteEntry(rewrite_host="down.internal"), client)

        response = await handler.handle(_request())

        assert response.status_code == 500
        assert response.body == b"[Errno 111] Connection refused"

    @pytest.mark.asyncio
    async def test_send_wraps_transport_errors(self):
        def refuse(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        handler = ForwardingHandler(RouteEntry(rewrite_host="slow.internal"), client)

        with pytest.raises(UpstreamTransportError) as exc_info:
            await handler._send(_request(), "https://slow.internal/api/users")

        assert exc_info.value.url == "https://slow.internal/api/users"
        assert isinstance(exc_info.value.cause, httpx.ConnectTimeout)

    def test_route_is_copied(self, upstream):
        route = RouteEntry(rewrite_host="b")

        handler = ForwardingHandler(route, upstream.client())

        assert handler.route == route
        assert handler.route is not route


class TestUpstreamResponse:
    @pytest.mark.asyncio
    async def test_closes_upstream_when_caller_goes_away(self):
        stream = ChunkedStream(b"x" * 64, chunk_size=8)
        upstream = httpx.Response(
            200, stream=stream, request=httpx.Request("GET", "https://u/")
        )
        response = UpstreamResponse(upstream)

        async def receive():
            await asyncio.sleep(60)
            return {"type": "http.disconnect"}

        async def send(message):
            if message["type"] == "http.response.body":
                raise OSError("broken pipe")

        scope = {"type": "http", "method": "GET", "asgi": {"spec_version": "2.4"}}
        with pytest.raises(Exception):
            await response(scope, receive, send)

        assert stream.closed

    def test_headers_keep_duplicates_in_order(self):
        upstream = httpx.Response(
            200,
            headers=[("Set-Cookie", "a=1"), ("X-One", "1"), ("Set-Cookie", "b=2")],
            stream=ChunkedStream(b""),
        )

        response = UpstreamResponse(upstream)

        assert response.raw_headers == [
            (b"set-cookie", b"a=1"),
            (b"x-one", b"1"),
            (b"set-cookie", b"b=2"),
        ]


class TestForwardingEndToEnd:
    def test_api_scenario(self, proxy_client, upstream):
        client = proxy_client(API_ROUTE)

        response = client.get("/api/users")

        assert response.status_code == 200
        assert upstream.last.method == "GET"
        assert str(upstream.last.url) == "https://backend.internal/v1/users"

    def test_outbound_host_header_follows_rewrite(self, proxy_client, upstream):
        client = proxy_client(API_ROUTE)

        client.get("/api/users", headers={"X-Custom": "abc", "Authorization": "Bearer t"})

        sent = upstream.last.headers
        assert sent["host"] == "backend.internal"
        assert sent["x-custom"] == "abc"
        assert sent["authorization"] == "Bearer t"

    def test_inbound_host_kept_without_rewrite_host(self, proxy_client, upstream):
        client = proxy_client({"api": {"Method": "GET", "PathAccess": "users"}})

        client.get("/api/users")

        assert upstream.last.url.host == "testserver"
        assert upstream.last.url.scheme == "https"
        assert upstream.last.url.path == "/api/users"

    def test_query_reaches_upstream(self, proxy_client, upstream):
        client = proxy_client(API_ROUTE)

        client.get("/api/users?page=2&sort=name")

        assert str(upstream.last.url) == "https://backend.internal/v1/users?page=2&sort=name"

    def test_request_body_is_streamed(self, proxy_client, upstream):
        client = proxy_client({"forms": {"PathRedirect": "submit", "DominRedirect": "b"}})
        payload = b"field=value&other=1" * 1000

        client.post("/forms/submit", content=payload)

        assert upstream.last.method == "POST"
        assert upstream.last.content == payload
        assert upstream.last.headers["content-length"] == str(len(payload))

    def test_request_without_body(self, proxy_client, upstream):
        client = proxy_client(API_ROUTE)

        client.get("/api/users")

        assert upstream.last.content == b""
        assert "transfer-encoding" not in upstream.last.headers

    def test_response_header_set_is_preserved(self, proxy_client, upstream):
        headers = [
            ("Content-Type", "application/json"),
            ("Set-Cookie", "a=1; Path=/"),
            ("Set-Cookie", "b=2; Path=/"),
            ("X-Upstream", "yes"),
        ]
        upstream.responder = lambda request: upstream_response(201, b"{}", headers)
        client = proxy_client(API_ROUTE)

        response = client.get("/api/users")

        assert response.status_code == 201
        assert {key for key, _ in response.headers.multi_items()} == {
            "content-type",
            "set-cookie",
            "x-upstream",
        }
        assert response.headers.get_list("set-cookie") == ["a=1; Path=/", "b=2; Path=/"]
        assert response.headers["x-upstream"] == "yes"

    def test_status_code_is_relayed(self, proxy_client, upstream):
        upstream.responder = lambda request: upstream_response(418, b"teapot")
        client = proxy_client(API_ROUTE)

        response = client.get("/api/users")

        assert response.status_code == 418
        assert response.content == b"teapot"

    def test_large_body_is_byte_exact(self, proxy_client, upstream):
        body = bytes(range(256)) * 12289
        upstream.responder = lambda request: upstream_response(
            200,
            body,
            [("Content-Length", str(len(body)))],
            chunk_size=65536,
        )
        client = proxy_client(API_ROUTE)

        response = client.get("/api/users")

        assert len(response.content) == len(body)
        assert response.content == body

    def test_upstream_is_closed_after_relay(self, proxy_client, upstream):
        stream = ChunkedStream(b"payload", chunk_size=2)
        upstream.responder = lambda request: httpx.Response(200, stream=stream)
        client = proxy_client(API_ROUTE)

        assert client.get("/api/users").content == b"payload"
        assert stream.closed

    def test_connection_refused_then_recovers(self, proxy_client, upstream):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("[Errno 111] Connection refused", request=request)
            return upstream_response(200, b"back")

        upstream.responder = flaky
        client = proxy_client(API_ROUTE)

        failed = client.get("/api/users")
        recovered = client.get("/api/users")

        assert failed.status_code == 500
        assert failed.text == "[Errno 111] Connection refused"
        assert recovered.status_code == 200
        assert recovered.content == b"back"
        assert len(attempts) == 2

    def test_two_log_lines_per_request(self, proxy_client, upstream, caplog):
        client = proxy_client(API_ROUTE)

        with caplog.at_level(logging.INFO, logger="uvicorn.error"):
            caplog.clear()
            client.get("/api/users")

        messages = [r.getMessage() for r in caplog.records if r.name == "uvicorn.error"]
        assert messages == [
            "testserver http://testserver/api/users GET",
            "backend.internal https://backend.internal/v1/users GET",
        ]


class TestUpstreamRedirects:
    @pytest.fixture
    def following_client(self, upstream, make_config):
        routes = {
            "forms": {"PathRedirect": "submit", "DominRedirect": "b"},
            "echo": {"PathRedirect": "echo", "DominRedirect": "b"},
        }
        app = create_app(make_config(routes), client=upstream.client(follow_redirects=True))
        return TestClient(app, follow_redirects=False)

    @staticmethod
    def _redirect_submit(status_code):
        def respond(request):
            if request.url.path == "/submit":
                return upstream_response(status_code, b"", [("Location", "https://b/echo")])
            return upstream_response(200, b"followed")

        return respond

    @pytest.mark.parametrize("status_code", [307, 308])
    def test_request_with_body_relays_redirect(self, following_client, upstream, status_code):
        upstream.responder = self._redirect_submit(status_code)

        response = following_client.post("/forms/submit", content=b"payload")

        assert response.status_code == status_code
        assert response.headers["location"] == "https://b/echo"
        assert [str(r.url) for r in upstream.requests] == ["https://b/submit"]

    def test_request_without_body_follows_redirect(self, following_client, upstream):
        upstream.responder = self._redirect_submit(307)

        response = following_client.get("/forms/submit")

        assert response.status_code == 200
        assert response.content == b"followed"
        assert [str(r.url) for r in upstream.requests] == [
            "https://b/submit",
            "https://b/echo",
        ]
