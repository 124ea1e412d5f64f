"""
Request ID middleware for tracing.

Pure ASGI so that yield dependencies such as get_db_session() keep working.
"""
import uuid

import structlog
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = b"x-request-id"


class RequestIdMiddleware:
    """
    Tags every request with an id: the caller's ``X-Request-ID`` when sent,
    otherwise a fresh UUID. The id is echoed in the response and bound into
    the structlog context together with the method and path.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(REQUEST_ID_HEADER, b"").decode("latin-1") or str(uuid.uuid4())

        # Context from a previous request on this task must not leak
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=scope.get("method"),
            path=scope.get("path"),
        )
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                message = {
                    **message,
                    "headers": [*message.get("headers", []), (REQUEST_ID_HEADER, request_id.encode("latin-1"))],
                }
            await send(message)

        await self.app(scope, receive, send_with_request_id)
