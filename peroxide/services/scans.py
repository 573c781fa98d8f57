"""ScanService — submission entry point for the asynchronous scan pipeline.

:meth:`ScanService.submit_scan` seeds the registry with a ``scanning`` record
and spawns a :class:`~peroxide.workers.scan_worker.ScanWorker` task for it,
returning the new scan identifier without waiting for the scan.

Worker tasks are fire-and-forget.  Their handles are held in a set only so
the event loop does not garbage-collect a running task; nothing joins them,
and a scan's outcome is observed exclusively through the registry.  Tasks
still running at process shutdown are abandoned along with the in-memory
registry.

There is no backpressure: every accepted upload gets its own task
immediately.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

from peroxide.core.models import FileInfo
from peroxide.core.registry import ScanRegistry
from peroxide.workers.scan_worker import ScanWorker

logger = logging.getLogger(__name__)


def new_scan_id() -> str:
    """Return a fresh opaque scan identifier."""
    return f"scan-{uuid.uuid4()}"


class ScanService:
    """Accept submissions and start their background scans.

    Args:
        registry: Shared scan registry.
        worker: Worker used to run each scan.
    """

    def __init__(self, registry: ScanRegistry, worker: ScanWorker) -> None:
        self._registry = registry
        self._worker = worker
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> ScanRegistry:
        return self._registry

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    def submit_scan(self, file_path: str | Path, file_info: FileInfo) -> str:
        """Register a scan for *file_path* and start it in the background.

        Must be called from a running event loop.  The registry holds a
        ``scanning`` record for the returned id before this method returns.

        Raises:
            DuplicateScanError: If the generated id collides with an existing
                scan (the worker is not started in that case).
        """
        scan_id = new_scan_id()
        self._registry.create(scan_id, file_info)

        task = asyncio.create_task(
            self._worker.run(scan_id, file_path),
            name=f"peroxide-scan-{scan_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Scan %s submitted: file=%s size=%d sha256=%s",
            scan_id,
            file_info.original_name,
            file_info.size_bytes,
            file_info.digest_hex,
        )
        return scan_id
