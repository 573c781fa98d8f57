"""ScanWorker — staged background scan of one uploaded file.

:class:`ScanWorker` drives a fixed sequence of stages for a single scan and
reports progress into the shared :class:`~peroxide.core.registry.ScanRegistry`.
It is spawned as a detached ``asyncio`` task by
:class:`~peroxide.services.scans.ScanService`; completion is observed only
through the registry, never by awaiting the task.

Stages and the progress entries they append (percentages and messages are
part of the client-facing contract):

==========  ===  ==========================================
Stage       %    Message
==========  ===  ==========================================
read        10   ``Reading file content...``
headers     30   ``Scanning file headers...``
            50   ``<format> detected, analyzing...`` (only when an
                 executable signature is recognised)
signatures  60   ``Performing signature analysis...``
finalize    90   ``Finalizing results...``
complete    100  ``Scan complete!``
==========  ===  ==========================================

**Failure contract**: every path ends with the record in a terminal status and
the temporary file deleted.  A read failure finalizes the record as
``error`` with an ``Error reading file: ...`` entry; any other unexpected
exception finalizes it as ``error`` with a ``Scan failed: ...`` entry.  A
detector that raises contributes no findings but does not abort the scan.
Nothing is retried.

Every stage runs inside a named OpenTelemetry span under a root
``peroxide.scan`` span.

Usage::

    worker = ScanWorker(registry, [IndicatorDetector()], settle_delay=1.0)
    asyncio.create_task(worker.run(scan_id, path))
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from prometheus_client import Counter, Gauge

from peroxide.core.detector import Detector
from peroxide.core.headers import sniff_executable_format
from peroxide.core.models import Finding, ScanStatus
from peroxide.core.registry import RegistryError, ScanRegistry
from peroxide.core.verdict import compute_stats, decide_verdict

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(
    "peroxide.scan_worker",
    schema_url="https://opentelemetry.io/schemas/1.11.0",
)

# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

_SCANS_TOTAL = Counter(
    "peroxide_scans_total",
    "Completed scans by terminal status",
    ["status"],  # safe | suspicious | unsafe | error
)
_SCANS_IN_PROGRESS = Gauge(
    "peroxide_scans_in_progress",
    "Scans currently being processed by a worker task",
)
_DETECTOR_ERRORS = Counter(
    "peroxide_detector_errors_total",
    "Detector passes that raised and were treated as zero findings",
    ["detector"],
)

# Bytes inspected for executable signatures.
_HEADER_BYTES = 8

MSG_READING = "Reading file content..."
MSG_HEADERS = "Scanning file headers..."
MSG_SIGNATURES = "Performing signature analysis..."
MSG_FINALIZING = "Finalizing results..."
MSG_COMPLETE = "Scan complete!"


class ScanWorker:
    """Runs the staged scan for one file at a time per :meth:`run` call.

    A single instance is shared by all scans; per-scan state lives only in
    local variables and the registry, so concurrent :meth:`run` calls are
    independent.

    Args:
        registry: Shared scan registry.  The worker is the only mutator of a
            record between submission and finalization.
        detectors: Detectors run, in order, over the decoded content.
        settle_delay: Seconds to wait before appending the final
            ``Scan complete!`` entry, so slow-polling clients can tell it
            apart from the previous one.
    """

    def __init__(
        self,
        registry: ScanRegistry,
        detectors: Sequence[Detector],
        *,
        settle_delay: float = 1.0,
    ) -> None:
        if settle_delay < 0:
            raise ValueError("settle_delay must not be negative")
        self._registry = registry
        self._detectors = list(detectors)
        self._settle_delay = settle_delay

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def run(self, scan_id: str, file_path: str | Path) -> ScanStatus:
        """Scan *file_path* and finalize *scan_id* in the registry.

        Never raises for scan-level failures; they are recorded as
        ``status=error``.  The file is deleted before returning.

        Returns:
            The terminal status written to the registry.
        """
        path = Path(file_path)
        start_ms = int(time.monotonic() * 1000)
        _SCANS_IN_PROGRESS.inc()

        with tracer.start_as_current_span(
            "peroxide.scan",
            kind=trace.SpanKind.INTERNAL,
        ) as root_span:
            root_span.set_attribute("scan.id", scan_id)
            try:
                status = await self._scan(scan_id, path, root_span)
            except Exception as exc:
                logger.exception("Scan %s failed unexpectedly", scan_id)
                root_span.record_exception(exc)
                root_span.set_status(Status(StatusCode.ERROR, str(exc)))
                status = self._fail(scan_id, f"Scan failed: {exc}")
            finally:
                self._discard(scan_id, path)
                _SCANS_IN_PROGRESS.dec()

            elapsed_ms = int(time.monotonic() * 1000) - start_ms
            root_span.set_attribute("scan.status", status.value)
            root_span.set_attribute("scan.duration_ms", elapsed_ms)

        _SCANS_TOTAL.labels(status=status.value).inc()
        logger.info(
            "Scan complete for %s: status=%s duration_ms=%d, file cleaned up",
            scan_id,
            status.value,
            elapsed_ms,
        )
        return status

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _scan(self, scan_id: str, path: Path, root_span: Span) -> ScanStatus:
        with self._stage(scan_id, "read"):
            self._progress(scan_id, 10, MSG_READING)
            try:
                content = await asyncio.to_thread(path.read_bytes)
            except OSError as exc:
                logger.warning("Scan %s: cannot read %s: %s", scan_id, path, exc)
                return self._fail(scan_id, f"Error reading file: {exc}")
        root_span.set_attribute("scan.file_size_bytes", len(content))

        with self._stage(scan_id, "headers"):
            self._progress(scan_id, 30, MSG_HEADERS)
            file_format = sniff_executable_format(content[:_HEADER_BYTES])
            if file_format is not None:
                root_span.set_attribute("scan.file_format", file_format)
                self._progress(scan_id, 50, f"{file_format} detected, analyzing...")

        with self._stage(scan_id, "signatures"):
            self._progress(scan_id, 60, MSG_SIGNATURES)
            text = content.decode("utf-8", errors="replace")
            findings = await asyncio.to_thread(self._detect, scan_id, text)

        with self._stage(scan_id, "finalize"):
            self._progress(scan_id, 90, MSG_FINALIZING)
            status = decide_verdict(compute_stats(findings))

        with self._stage(scan_id, "complete"):
            await asyncio.sleep(self._settle_delay)
            self._progress(scan_id, 100, MSG_COMPLETE)
            self._registry.finalize(scan_id, status, findings)

        root_span.set_attribute("scan.findings_count", len(findings))
        return status

    def _detect(self, scan_id: str, text: str) -> list[Finding]:
        """Run every detector over *text*, isolating detector failures."""
        findings: list[Finding] = []
        for detector in self._detectors:
            try:
                found = detector.detect(text)
            except Exception:
                _DETECTOR_ERRORS.labels(detector=detector.name).inc()
                logger.exception(
                    "Detector %r raised during scan %s; treating as zero findings",
                    detector.name,
                    scan_id,
                )
                continue
            findings.extend(found)
        return findings

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _stage(self, scan_id: str, stage_name: str) -> Iterator[Span]:
        """Open a child span named ``peroxide.<stage_name>`` around a stage."""
        with tracer.start_as_current_span(f"peroxide.{stage_name}") as span:
            span.set_attribute("stage.name", stage_name)
            span.set_attribute("scan.id", scan_id)
            stage_start_ms = int(time.monotonic() * 1000)
            try:
                yield span
            finally:
                elapsed_ms = int(time.monotonic() * 1000) - stage_start_ms
                span.set_attribute("stage.duration_ms", elapsed_ms)
                logger.debug(
                    "Scan stage '%s' done: scan_id=%s duration_ms=%d",
                    stage_name,
                    scan_id,
                    elapsed_ms,
                )

    def _progress(self, scan_id: str, percent: int, message: str) -> None:
        self._registry.append_log(scan_id, percent, message)

    def _fail(self, scan_id: str, message: str) -> ScanStatus:
        """Finalize *scan_id* as ``error`` with *message* as the last entry."""
        try:
            self._registry.finalize(scan_id, ScanStatus.ERROR, (), message=message)
        except RegistryError as exc:
            logger.error("Scan %s: cannot record failure %r: %s", scan_id, message, exc)
            record = self._registry.get(scan_id)
            if record is not None and record.status.is_terminal:
                return record.status
        return ScanStatus.ERROR

    @staticmethod
    def _discard(scan_id: str, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Scan %s: failed to delete temp file %s: %s", scan_id, path, exc)
