"""Request body size guard for upload endpoints.

:class:`UploadSizeLimitMiddleware` rejects oversized upload requests before
the multipart parser sees them, so an oversized body is never spooled to a
temporary file.  Two checks apply to every request whose path is listed in
``paths``:

* **Declared size**: a ``Content-Length`` above the body budget is rejected
  immediately; the application is never called.
* **Streamed size**: for bodies without a usable ``Content-Length`` (chunked
  transfer), bytes are counted as they are received.  Once the budget is
  exceeded the ``400`` response is sent and the application sees
  ``http.disconnect`` in place of any further body, so at most one budget's
  worth of data reaches the parser.

The body budget is the configured upload limit plus a fixed allowance for
multipart boundaries and part headers.  The rejection body matches the one
produced by the upload route: ``{"error": "File size exceeds maximum limit
of ..."}``.
"""

from __future__ import annotations

import logging
from typing import Iterable

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from peroxide.services.uploads import UploadTooLargeError

logger = logging.getLogger(__name__)

#: Extra bytes allowed on top of the file limit for multipart framing.
MULTIPART_OVERHEAD_BYTES = 64 * 1024


class UploadSizeLimitMiddleware:
    """Reject request bodies larger than ``max_upload_bytes`` plus framing.

    Args:
        app: The wrapped ASGI application.
        max_upload_bytes: Largest accepted file, in bytes.
        paths: Request paths the limit applies to.
        overhead_bytes: Allowance for multipart framing.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_upload_bytes: int,
        paths: Iterable[str] = ("/api/upload",),
        overhead_bytes: int = MULTIPART_OVERHEAD_BYTES,
    ) -> None:
        self.app = app
        self.max_upload_bytes = max_upload_bytes
        self.max_body_bytes = max_upload_bytes + overhead_bytes
        self.paths = frozenset(paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] not in self.paths:
            await self.app(scope, receive, send)
            return

        declared = self._content_length(Headers(scope=scope))
        if declared is not None and declared > self.max_body_bytes:
            logger.info(
                "Upload rejected before parsing: content-length=%d budget=%d",
                declared,
                self.max_body_bytes,
            )
            await self._reject(scope, receive, send, declared)
            return

        received = 0
        rejected = False
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received, rejected
            if rejected:
                return {"type": "http.disconnect"}
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    rejected = True
                    logger.info(
                        "Upload rejected while streaming: received=%d budget=%d",
                        received,
                        self.max_body_bytes,
                    )
                    if not response_started:
                        await self._reject(scope, receive, send, received)
                    return {"type": "http.disconnect"}
            return message

        async def guarded_send(message: Message) -> None:
            nonlocal response_started
            if rejected:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except Exception:
            if not rejected:
                raise
            logger.debug("Application error after upload rejection ignored", exc_info=True)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        error = UploadTooLargeError(size, self.max_upload_bytes)
        response = JSONResponse({"error": str(error)}, status_code=400)
        await response(scope, receive, send)

    @staticmethod
    def _content_length(headers: Headers) -> int | None:
        value = headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None
