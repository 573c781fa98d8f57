"""Structured JSON request logging middleware for the PEroxide API.

:class:`RequestLoggingMiddleware` records every HTTP request as one structured
JSON log entry at ``INFO`` level, enriched with:

* A **correlation ID**: propagated from the incoming ``X-Correlation-ID``
  (or ``X-Request-ID``) header, or generated as a UUID v4 when absent.
* Request metadata: HTTP method, URL path, client address, response status
  code, response body size, and wall-clock duration in milliseconds.

The correlation ID is stored in ``scope["state"]`` (readable as
``request.state.correlation_id``) and echoed back to the client in the
``X-Correlation-ID`` response header.

The middleware is written against raw ASGI rather than
``BaseHTTPMiddleware`` so that long-lived ``text/event-stream`` responses
are passed through untouched: the log entry is emitted when the final body
chunk has been sent, which makes ``duration_ms`` cover the whole stream, and
client disconnects reach the endpoint unchanged.

Log entry format
----------------
::

    {
      "event": "http_request",
      "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
      "method": "GET",
      "path": "/api/scan-status/scan-1f0c...",
      "client": "10.0.0.7",
      "status_code": 200,
      "response_bytes": 412,
      "duration_ms": 4210.5
    }
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

# Headers checked (in priority order) for an incoming correlation ID.
_CORRELATION_HEADERS: tuple[str, ...] = ("x-correlation-id", "x-request-id")


class RequestLoggingMiddleware:
    """Structured JSON per-request logging middleware.

    Non-HTTP scopes (``lifespan``, ``websocket``) are passed straight through.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = self._extract_correlation_id(Headers(scope=scope))
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        start = time.monotonic()
        status_code = 500
        response_bytes = 0
        logged = False

        def _log() -> None:
            nonlocal logged
            if logged:
                return
            logged = True
            client = scope.get("client")
            log_entry = {
                "event": "http_request",
                "correlation_id": correlation_id,
                "method": scope["method"],
                "path": scope["path"],
                "client": client[0] if client else None,
                "status_code": status_code,
                "response_bytes": response_bytes,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            }
            logger.info(json.dumps(log_entry))

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, response_bytes
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers["X-Correlation-ID"] = correlation_id
            elif message["type"] == "http.response.body":
                response_bytes += len(message.get("body", b""))
                if not message.get("more_body", False):
                    _log()
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # Covers aborted streams and unhandled errors.
            _log()

    @staticmethod
    def _extract_correlation_id(headers: Headers) -> str:
        """Return a correlation ID from *headers*, or a fresh UUID v4."""
        for header in _CORRELATION_HEADERS:
            value = headers.get(header, "").strip()
            if value:
                return value
        return str(uuid.uuid4())
