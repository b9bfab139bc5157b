import logging
from typing import AsyncIterator, List, Optional, Tuple

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.types import Receive, Scope, Send

from confproxy.errors import UpstreamTransportError
from confproxy.models import RouteEntry

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

RawHeaders = List[Tuple[bytes, bytes]]


def copy_request_headers(request: Request) -> RawHeaders:
    """
    Copy every inbound header onto the outbound request, verbatim.

    No hop-by-hop filtering is done. Host is left out because the client
    derives it from the outbound URL, so a rewritten host reaches upstream.
    """
    return [(name, value) for name, value in request.headers.raw if name.lower() != b"host"]


def copy_response_headers(upstream: httpx.Response) -> RawHeaders:
    """Every upstream header, repeated keys and order preserved."""
    return [(name.lower(), value) for name, value in upstream.headers.raw]


def inbound_host(request: Request) -> str:
    return request.headers.get("host") or request.url.netloc


def build_target_url(request: Request, route: RouteEntry) -> str:
    """Rewrite scheme, host and path of the inbound URL; keep the query."""
    host = route.rewrite_host or inbound_host(request)

    if route.rewrite_path:
        path = "/" + route.rewrite_path.lstrip("/")
    else:
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else request.url.path

    url = f"{route.effective_scheme}://{host}{path}"
    query = request.url.query
    if query:
        url = f"{url}?{query}"
    return url


def request_body(request: Request) -> Optional[AsyncIterator[bytes]]:
    """The inbound body as a stream, or None when the request has no body."""
    headers = request.headers
    if "content-length" not in headers and "transfer-encoding" not in headers:
        return None
    return request.stream()


class UpstreamResponse(StreamingResponse):
    """Streams an upstream response and closes it on every exit path."""

    def __init__(self, upstream: httpx.Response):
        super().__init__(self._relay(upstream), status_code=upstream.status_code)
        self.upstream = upstream
        self.raw_headers = copy_response_headers(upstream)

    @staticmethod
    async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            logger.error(f"proxy relay error for {upstream.request.url}: {e}")
            raise

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()


class ForwardingHandler:
    """Rewrite one matched request and relay it to the upstream origin."""

    def __init__(self, route: RouteEntry, client: httpx.AsyncClient):
        self.route = route.model_copy()
        self.client = client

    async def handle(self, request: Request) -> Response:
        logger.info(f"{inbound_host(request)} {request.url} {request.method}")

        target_url = build_target_url(request, self.route)
        with tracer.start_as_current_span("proxy_request") as span:
            span.set_attribute("proxy.target_url", target_url)
            span.set_attribute("proxy.method", request.method)
            try:
                upstream = await self._send(request, target_url)
            except UpstreamTransportError as e:
                logger.error(f"proxy do error: {e}")
                span.set_attribute("proxy.error", str(e))
                return PlainTextResponse(str(e), status_code=500)
            span.set_attribute("proxy.status_code", upstream.status_code)

        return UpstreamResponse(upstream)

    async def _send(self, request: Request, target_url: str) -> httpx.Response:
        body = request_body(request)
        try:
            outbound = self.client.build_request(
                request.method,
                target_url,
                headers=copy_request_headers(request),
                content=body,
            )
            logger.info(f"{outbound.url.netloc.decode('ascii')} {outbound.url} {outbound.method}")
            # A streamed body cannot be replayed, so a 307/308 is relayed as-is
            return await self.client.send(
                outbound,
                stream=True,
                follow_redirects=self.client.follow_redirects and body is None,
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise UpstreamTransportError(target_url, e) from e
