"""API routes for file submission, scan progress and scan results.

Endpoints
---------
POST /api/upload
    Accept a ``multipart/form-data`` upload (field ``file``), persist it to the
    upload directory, and start an asynchronous scan.  Returns
    ``{"scanId": "scan-..."}`` immediately; the scan continues in the
    background.

GET  /api/scan-status/{scan_id}
    Server-sent event stream of progress updates.  Each event is
    ``data: {"progress": <0-100>, "message": "..."}``.  The stream closes once
    the scan reaches a terminal status and every progress entry has been sent,
    or as soon as the client disconnects.

GET  /api/scan-result/{scan_id}
    Full current scan record (status, threats, stats, logs, fileInfo).  Valid
    at any time; callers should check ``status`` for ``"scanning"``.

Unknown scan identifiers return ``404 {"error": "Scan not found"}`` from both
read endpoints.  Oversized or malformed uploads return ``400`` before any
scan is registered.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse

from peroxide.core.progress import ProgressNotifier
from peroxide.core.registry import DuplicateScanError, ScanNotFoundError
from peroxide.schemas.scan import ProgressUpdate, ScanResultOut, UploadResponse
from peroxide.services.scans import ScanService
from peroxide.services.uploads import UploadStore, UploadTooLargeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["scans"])


def get_upload_store(request: Request) -> UploadStore:
    return request.app.state.upload_store


def get_scan_service(request: Request) -> ScanService:
    return request.app.state.scan_service


def get_notifier(request: Request) -> ProgressNotifier:
    return request.app.state.notifier


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    request: Request,
    file: UploadFile | None = File(default=None),
    store: UploadStore = Depends(get_upload_store),
    service: ScanService = Depends(get_scan_service),
) -> UploadResponse:
    """Persist the uploaded file and start scanning it.

    Request bodies well over the limit never reach this handler; they are
    refused by :class:`~peroxide.api.middleware.upload_limit.UploadSizeLimitMiddleware`
    before multipart parsing.  What remains is the exact per-file check: the
    parsed part size first, then at most ``limit + 1`` bytes are read before
    anything is written to the upload directory.
    """
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        raise HTTPException(status_code=400, detail="Expected multipart/form-data")
    if file is None:
        raise HTTPException(status_code=400, detail="No file found in multipart data")

    try:
        if file.size is not None:
            store.check_size(file.size)
        data = await file.read(store.max_upload_bytes + 1)
        logger.info("Upload request received: %s (%d bytes)", file.filename, len(data))
        stored = await asyncio.to_thread(store.save, file.filename, data)
    except UploadTooLargeError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except OSError as exc:
        logger.error("Failed to save file %r: %s", file.filename, exc)
        raise HTTPException(status_code=500, detail="Failed to save file")
    finally:
        await file.close()

    try:
        scan_id = service.submit_scan(stored.path, stored.file_info)
    except DuplicateScanError:
        store.discard(stored.path)
        logger.error("Generated scan id collided with an existing scan")
        raise HTTPException(status_code=500, detail="Failed to start scan")

    return UploadResponse(scan_id=scan_id)


@router.get("/scan-status/{scan_id}")
async def scan_status(
    scan_id: str,
    request: Request,
    notifier: ProgressNotifier = Depends(get_notifier),
) -> StreamingResponse:
    """Stream progress updates for *scan_id* as server-sent events."""
    try:
        entries = notifier.stream(scan_id, is_disconnected=request.is_disconnected)
    except ScanNotFoundError:
        raise HTTPException(status_code=404, detail="Scan not found")

    logger.info("SSE connection established for scan: %s", scan_id)

    async def events() -> AsyncIterator[str]:
        async for entry in entries:
            yield ProgressUpdate.from_entry(entry).to_sse()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get(
    "/scan-result/{scan_id}",
    response_model=ScanResultOut,
    response_model_exclude_none=True,
)
async def scan_result(
    scan_id: str,
    notifier: ProgressNotifier = Depends(get_notifier),
) -> ScanResultOut:
    """Return the current record for *scan_id*."""
    try:
        record = notifier.snapshot(scan_id)
    except ScanNotFoundError:
        raise HTTPException(status_code=404, detail="Scan not found")

    return ScanResultOut.from_record(record)
