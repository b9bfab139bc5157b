from .handler import (
    ForwardingHandler,
    UpstreamResponse,
    build_target_url,
    copy_request_headers,
    copy_response_headers,
)
from .static import StaticFileResponder

__all__ = [
    "ForwardingHandler",
    "UpstreamResponse",
    "build_target_url",
    "copy_request_headers",
    "copy_response_headers",
    "StaticFileResponder",
]
