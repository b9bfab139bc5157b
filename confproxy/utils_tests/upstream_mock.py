from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple

import httpx


class ChunkedStream(httpx.AsyncByteStream):
    """Upstream body delivered in fixed-size chunks; records when it is closed."""

    def __init__(self, body: bytes, chunk_size: int = 65536):
        self.body = body
        self.chunk_size = chunk_size
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self.body), self.chunk_size):
            yield self.body[start : start + self.chunk_size]

    async def aclose(self) -> None:
        self.closed = True


def upstream_response(
    status_code: int = 200,
    body: bytes = b"",
    headers: Optional[Sequence[Tuple[str, str]]] = None,
    chunk_size: int = 65536,
) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers=list(headers or []),
        stream=ChunkedStream(body, chunk_size),
    )


class RecordingUpstream:
    """MockTransport handler that records every request it receives."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self.responses: List[httpx.Response] = []
        self.responder = responder or (lambda request: upstream_response(200, b"ok"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responder(request)
        self.responses.append(response)
        return response

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]

    def client(self, follow_redirects: bool = False) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self), follow_redirects=follow_redirects
        )
