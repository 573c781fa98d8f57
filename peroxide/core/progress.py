"""ProgressNotifier — read-side view of a scan's progress log.

Two access patterns are supported:

* :meth:`ProgressNotifier.snapshot` — one-shot read of the full current
  record.  Valid at any time; callers must check ``status`` themselves.
* :meth:`ProgressNotifier.stream` — incremental read.  Polls the registry at a
  fixed interval and yields only the log entries added since the caller's
  cursor, finishing once the scan reaches a terminal status and every entry
  has been flushed.

Streaming is a bounded-interval poll over the registry, not a subscription.
The interval bounds end-to-end latency of progress visibility; it must be
positive so the loop always yields to the event loop.

Usage::

    notifier = ProgressNotifier(registry, poll_interval=0.1)
    async for entry in notifier.stream(scan_id, is_disconnected=request.is_disconnected):
        print(entry.percent, entry.message)
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from peroxide.core.models import ProgressEntry, ScanRecord
from peroxide.core.registry import ScanNotFoundError, ScanRegistry

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class ProgressNotifier:
    """Turn registry records into snapshots and progress event streams.

    Args:
        registry: The shared :class:`ScanRegistry`.
        poll_interval: Seconds to sleep between registry polls.  Must be
            greater than zero.
    """

    def __init__(self, registry: ScanRegistry, poll_interval: float = 0.1) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be greater than zero")
        self._registry = registry
        self._poll_interval = poll_interval

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def snapshot(self, scan_id: str) -> ScanRecord:
        """Return the current record for *scan_id*.

        Raises:
            ScanNotFoundError: If *scan_id* is unknown.
        """
        record = self._registry.get(scan_id)
        if record is None:
            raise ScanNotFoundError(scan_id)
        return record

    def stream(
        self,
        scan_id: str,
        *,
        cursor: int = 0,
        is_disconnected: DisconnectCheck | None = None,
    ) -> AsyncIterator[ProgressEntry]:
        """Return an async iterator of progress entries from *cursor* onwards.

        The existence check happens immediately, before any iteration, so an
        unknown id is reported to the caller rather than streamed as empty.

        Args:
            scan_id: Scan to follow.
            cursor: Number of log entries the consumer has already seen.
            is_disconnected: Optional async callable; when it returns
                ``True`` the stream stops without waiting for completion.

        Raises:
            ScanNotFoundError: If *scan_id* is unknown.
            ValueError: If *cursor* is negative.
        """
        if cursor < 0:
            raise ValueError("cursor must not be negative")
        self.snapshot(scan_id)
        return self._poll(scan_id, cursor, is_disconnected)

    async def _poll(
        self,
        scan_id: str,
        cursor: int,
        is_disconnected: DisconnectCheck | None,
    ) -> AsyncIterator[ProgressEntry]:
        while True:
            await asyncio.sleep(self._poll_interval)

            if is_disconnected is not None and await is_disconnected():
                logger.info(
                    "Progress stream for scan %s stopped: client disconnected (cursor=%d)",
                    scan_id,
                    cursor,
                )
                return

            record = self._registry.get(scan_id)
            if record is None:
                logger.warning("Progress stream for scan %s: record disappeared", scan_id)
                return

            for entry in record.log[cursor:]:
                yield entry
            cursor = max(cursor, len(record.log))

            if record.status.is_terminal:
                logger.debug(
                    "Progress stream for scan %s complete: status=%s entries=%d",
                    scan_id,
                    record.status.value,
                    cursor,
                )
                return
