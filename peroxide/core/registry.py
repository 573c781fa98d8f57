"""ScanRegistry — the single source of truth for in-flight and completed scans.

:class:`ScanRegistry` maps scan identifiers to immutable
:class:`~peroxide.core.models.ScanRecord` snapshots.  Every mutation builds a
new snapshot with :func:`dataclasses.replace` and swaps it in under a
``threading.Lock``, so all operations are linearizable and readers can hold
on to a record without ever observing a torn update.

The lock guards only dictionary access and snapshot construction; it is never
held across I/O or ``await`` points.  A ``threading.Lock`` (rather than an
``asyncio.Lock``) keeps the operations synchronous so they are safe to call
from the event loop and from worker threads alike.

**Retention**: completed records are kept for the lifetime of the process.
There is no eviction; memory grows with the number of scans submitted.

Usage::

    from peroxide.core.registry import ScanRegistry
    from peroxide.core.models import ScanStatus

    registry = ScanRegistry()
    registry.create("scan-1", file_info)
    registry.append_log("scan-1", 10, "Reading file content...")
    registry.finalize("scan-1", ScanStatus.SAFE, [])
    print(registry.get("scan-1").status)  # ScanStatus.SAFE
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Iterable

from peroxide.core.models import FileInfo, Finding, ProgressEntry, ScanRecord, ScanStatus
from peroxide.core.verdict import compute_stats

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RegistryError(Exception):
    """Base class for registry errors."""


class ScanNotFoundError(RegistryError):
    """Raised when a scan identifier is not present in the registry."""

    def __init__(self, scan_id: str) -> None:
        super().__init__(f"Scan not found: {scan_id}")
        self.scan_id = scan_id


class DuplicateScanError(RegistryError):
    """Raised by :meth:`ScanRegistry.create` when the identifier already exists."""

    def __init__(self, scan_id: str) -> None:
        super().__init__(f"Scan already exists: {scan_id}")
        self.scan_id = scan_id


class ScanAlreadyFinalizedError(RegistryError):
    """Raised when a terminal record is finalized or appended to again."""

    def __init__(self, scan_id: str, status: ScanStatus) -> None:
        super().__init__(f"Scan {scan_id} is already finalized with status {status.value!r}")
        self.scan_id = scan_id
        self.status = status


# ---------------------------------------------------------------------------
# ScanRegistry
# ---------------------------------------------------------------------------


class ScanRegistry:
    """Thread-safe in-memory store of :class:`ScanRecord` snapshots."""

    def __init__(self) -> None:
        self._records: dict[str, ScanRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, scan_id: object) -> bool:
        with self._lock:
            return scan_id in self._records

    def create(self, scan_id: str, file_info: FileInfo | None = None) -> ScanRecord:
        """Insert a fresh ``scanning`` record for *scan_id*.

        Raises:
            DuplicateScanError: If *scan_id* is already registered.  Existing
                records are never overwritten.
        """
        record = ScanRecord(scan_id=scan_id, file_info=file_info)
        with self._lock:
            if scan_id in self._records:
                raise DuplicateScanError(scan_id)
            self._records[scan_id] = record
        logger.debug("Registered scan %s", scan_id)
        return record

    def get(self, scan_id: str) -> ScanRecord | None:
        """Return the current snapshot for *scan_id*, or ``None``."""
        with self._lock:
            return self._records.get(scan_id)

    def append_log(self, scan_id: str, percent: int, message: str) -> bool:
        """Atomically append a progress entry to *scan_id*'s log.

        Returns:
            ``True`` if the entry was appended; ``False`` if *scan_id* is
            not registered.

        Raises:
            ValueError: If *percent* is outside ``0..100`` or lower than the
                last logged percentage.
            ScanAlreadyFinalizedError: If the record is already terminal.
        """
        if not 0 <= percent <= 100:
            raise ValueError(f"percent must be within 0..100, got {percent}")

        with self._lock:
            record = self._records.get(scan_id)
            if record is None:
                missing = True
            else:
                missing = False
                if record.status.is_terminal:
                    raise ScanAlreadyFinalizedError(scan_id, record.status)
                if percent < record.last_percent:
                    raise ValueError(
                        f"percent must not decrease (last={record.last_percent}, got {percent})"
                    )
                entry = ProgressEntry(percent=percent, message=message)
                self._records[scan_id] = replace(record, log=record.log + (entry,))

        if missing:
            logger.warning("append_log: unknown scan_id=%s; entry dropped", scan_id)
            return False
        return True

    def finalize(
        self,
        scan_id: str,
        status: ScanStatus,
        findings: Iterable[Finding],
        *,
        message: str | None = None,
    ) -> ScanRecord:
        """Atomically move *scan_id* to a terminal *status*.

        The findings and derived stats replace the record's current values;
        the accumulated log is preserved.  When *message* is given it is
        appended as a final log entry at the last logged percentage, inside
        the same critical section.

        Returns:
            The finalized :class:`ScanRecord`.

        Raises:
            ValueError: If *status* is not terminal.
            ScanNotFoundError: If *scan_id* is not registered.
            ScanAlreadyFinalizedError: If the record is already terminal.
        """
        status = ScanStatus(status)
        if not status.is_terminal:
            raise ValueError("finalize requires a terminal status")

        findings = tuple(findings)
        stats = compute_stats(findings)

        with self._lock:
            record = self._records.get(scan_id)
            if record is None:
                raise ScanNotFoundError(scan_id)
            if record.status.is_terminal:
                raise ScanAlreadyFinalizedError(scan_id, record.status)

            log = record.log
            if message is not None:
                log = log + (ProgressEntry(percent=record.last_percent, message=message),)

            final = replace(record, status=status, findings=findings, stats=stats, log=log)
            self._records[scan_id] = final

        logger.info(
            "Finalized scan %s: status=%s findings=%d",
            scan_id,
            status.value,
            stats.total,
        )
        return final
