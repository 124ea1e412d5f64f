"""
Global error handling middleware.

Pure ASGI so that yield dependencies such as get_db_session() keep working.
"""
import json

from fastapi import HTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from siteinsights.core.logging import get_logger

logger = get_logger(__name__)

ERROR_BODY = json.dumps({"error": "Internal server error"}).encode("utf-8")


class ErrorHandlerMiddleware:
    """
    Turns unhandled exceptions into an opaque ``{"error": ...}`` 500.

    HTTPException passes through to FastAPI's own handler. Once a response
    has started the exception is logged and re-raised, since the status can
    no longer change.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = False

        async def tracking_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                error=str(e),
                path=scope.get("path", "unknown"),
                response_started=started,
            )
            if started:
                raise

            await send({
                "type": "http.response.start",
                "status": 500,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(ERROR_BODY)).encode()),
                ],
            })
            await send({"type": "http.response.body", "body": ERROR_BODY})
