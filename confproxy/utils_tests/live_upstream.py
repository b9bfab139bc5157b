"""A real HTTP upstream on a local port, served by uvicorn in a thread."""

import socket
import threading
import time
from typing import Dict, List

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse, Response


def wait_for_port(port, host="127.0.0.1", timeout=10.0):
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(0.05)
    raise RuntimeError(f"Timeout waiting for {host}:{port}")


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def build_upstream_app(received: List[Dict]) -> FastAPI:
    """
    /echo answers with the body it read from the request stream.
    /submit answers 307 to /echo, /moved answers 308 to /echo.
    /download answers with ``size`` bytes of a repeating pattern.
    """
    app = FastAPI()

    @app.api_route("/echo", methods=["GET", "POST", "PUT"])
    async def echo(request: Request):
        chunks = [chunk async for chunk in request.stream() if chunk]
        received.append(
            {
                "method": request.method,
                "headers": dict(request.headers),
                "body": b"".join(chunks),
            }
        )
        return Response(b"".join(chunks), media_type="application/octet-stream")

    @app.api_route("/submit", methods=["GET", "POST"])
    async def submit(request: Request):
        received.append({"method": request.method, "path": "/submit"})
        return RedirectResponse("/echo", status_code=307)

    @app.api_route("/moved", methods=["PUT"])
    async def moved(request: Request):
        received.append({"method": request.method, "path": "/moved"})
        return RedirectResponse("/echo", status_code=308)

    @app.get("/download")
    async def download(size: int):
        pattern = bytes(range(256))
        body = (pattern * (size // len(pattern) + 1))[:size]
        return Response(body, media_type="application/octet-stream")

    return app


class LiveUpstream:
    def __init__(self):
        self.received: List[Dict] = []
        self.port = free_port()
        config = uvicorn.Config(
            build_upstream_app(self.received),
            host="127.0.0.1",
            port=self.port,
            log_config=None,
            lifespan="off",
        )
        self.server = uvicorn.Server(config)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    def start(self) -> "LiveUpstream":
        self.thread.start()
        wait_for_port(self.port)
        return self

    def stop(self) -> None:
        self.server.should_exit = True
        self.thread.join(timeout=5)
