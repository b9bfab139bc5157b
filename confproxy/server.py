import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse, Response
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)

from confproxy.models import ProxyConfig
from confproxy.routing import RouteTable, bind_routes
from confproxy.vars import (
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_FOLLOW_REDIRECTS,
    PROXY_TIMEOUT,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


RELAY_CHUNK_EVENT = "http.response.body"


def is_relay_chunk(span: ReadableSpan) -> bool:
    """ASGI instrumentation opens one send span per relayed body chunk."""
    attributes = span.attributes or {}
    return attributes.get("asgi.event.type") == RELAY_CHUNK_EVENT


class FilteringSpanExporter(SpanExporter):
    """Drops per-chunk relay spans and hands the rest to *exporter*.

    A proxied multi-megabyte download is thousands of chunks; only the
    request span and the ``proxy_request`` span are worth keeping.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if not is_relay_chunk(span)]
        if not kept:
            return SpanExportResult.SUCCESS
        return self.exporter.export(kept)

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing() -> bool:
    """Export spans over OTLP when OTLP_ENDPOINT is set. Returns whether it is."""
    if not OTLP_ENDPOINT:
        return False

    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": SERVICE_NAME})
    )
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )
    trace.set_tracer_provider(tracer_provider)
    logger.info(f"Exporting traces to {OTLP_ENDPOINT}")
    return True


def build_http_client() -> httpx.AsyncClient:
    """The outbound client shared by every forwarding route."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=PROXY_FOLLOW_REDIRECTS,
    )


def _bare_app(**kwargs) -> FastAPI:
    # Route patterns own the whole URL space, keep the docs endpoints out of it
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None, **kwargs)
    if OTLP_ENDPOINT:
        FastAPIInstrumentor.instrument_app(app)
    return app


def create_app(
    config: ProxyConfig, client: Optional[httpx.AsyncClient] = None
) -> FastAPI:
    """
    Build the routed application for *config*.

    When no client is given one is created here and closed when the app
    shuts down; a caller-provided client is left to the caller.
    """
    owns_client = client is None
    http_client = client if client is not None else build_http_client()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        try:
            yield
        finally:
            if owns_client:
                await http_client.aclose()

    app = _bare_app(lifespan=lifespan)
    app.state.config = config
    app.state.http_client = http_client
    app.state.bindings = bind_routes(
        app.router, RouteTable(config.routes), http_client
    )
    return app


def request_uri(request: Request) -> str:
    """Path and query exactly as the caller sent them."""
    raw_path = request.scope.get("raw_path")
    uri = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.url.query
    return f"{uri}?{query}" if query else uri


def https_location(config: ProxyConfig, request: Request) -> str:
    return config.own_address + config.https_port + request_uri(request)


def create_redirect_app(config: ProxyConfig) -> FastAPI:
    """Application for the plaintext listener in dual-stack mode."""
    app = _bare_app()
    app.state.config = config

    async def redirect_to_https(request: Request) -> Response:
        return RedirectResponse(https_location(config, request), status_code=301)

    app.add_route(
        "/{path:path}",
        redirect_to_https,
        methods=None,
        name="redirect_to_https",
        include_in_schema=False,
    )
    return app
