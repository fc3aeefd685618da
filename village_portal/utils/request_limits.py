"""
Request body size limit.
Enforced on the declared Content-Length and on the bytes actually received,
so chunked uploads without a Content-Length are capped too.
"""
from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
import logging

from village_portal.config import settings

logger = logging.getLogger(__name__)


class RequestBodyTooLarge(HTTPException):
    """Raised from the wrapped receive channel once the body passes the limit."""

    def __init__(self, limit: int):
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"error": "Request too large", "detail": f"Request body exceeds the {limit // (1024 * 1024)}MB limit"},
        )


class RequestBodyLimitMiddleware:
    """
    ASGI middleware capping request bodies at MAX_REQUEST_BODY_BYTES.

    A declared Content-Length over the limit is refused before the app runs.
    Otherwise body chunks are counted as the app reads them and
    RequestBodyTooLarge is raised into the reader, which the app's
    HTTPException handler renders as 413.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = settings.MAX_REQUEST_BODY_BYTES
        declared = Headers(scope=scope).get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            logger.warning(f"Rejected {scope['method']} {scope['path']}: declared body of {declared} bytes over the limit")
            error = RequestBodyTooLarge(limit)
            response = JSONResponse(status_code=error.status_code, content=error.detail)
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    logger.warning(f"Rejected {scope['method']} {scope['path']}: body passed {limit} bytes while streaming")
                    raise RequestBodyTooLarge(limit)
            return message

        await self.app(scope, limited_receive, send)
