import logging
import os

from fastapi import Request
from fastapi.responses import FileResponse, PlainTextResponse, Response

logger = logging.getLogger("uvicorn.error")


class StaticFileResponder:
    """Serve one fixed file for every request that reaches it.

    The rest of the request path is ignored. Content type, validators and
    range requests are handled by Starlette's FileResponse.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path

    async def handle(self, request: Request) -> Response:
        if not os.path.isfile(self.file_path):
            logger.warning(f"static file not found: {self.file_path} for {request.url}")
            return PlainTextResponse("404 page not found", status_code=404)
        return FileResponse(self.file_path)
