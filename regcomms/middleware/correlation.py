"""Correlation ID middleware.

Pure ASGI middleware: takes ``X-Correlation-ID`` from the request (or
generates one), binds it and any ``X-Incident-ID`` to the logging
context, echoes the correlation id on the response and logs one line per
request.
"""

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from regcomms.logging_config import correlation_id_ctx, get_logger, incident_id_ctx

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
INCIDENT_ID_HEADER = "X-Incident-ID"


class CorrelationIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        correlation_id = headers.get(b"x-correlation-id", b"").decode() or str(uuid.uuid4())
        incident_id = headers.get(b"x-incident-id", b"").decode() or None

        correlation_token = correlation_id_ctx.set(correlation_id)
        incident_token = incident_id_ctx.set(incident_id)

        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.perf_counter()
        status_code: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status")
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode())
                )
                message = {**message, "headers": response_headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
        except Exception:
            logger.exception(
                "Request failed",
                method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise
        finally:
            incident_id_ctx.reset(incident_token)
            correlation_id_ctx.reset(correlation_token)
