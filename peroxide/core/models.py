"""Scan data model shared by the registry, worker, detectors and API.

Every type in this module is immutable.  The
:class:`~peroxide.core.registry.ScanRegistry` replaces whole
:class:`ScanRecord` snapshots under its lock rather than mutating them, so a
reader holding a record can never observe it half-updated.

Usage::

    from peroxide.core.models import Finding, Severity

    finding = Finding(
        kind="Suspicious String",
        details="File contains suspicious keywords",
        severity=Severity.SUSPICIOUS,
        finding_id="S001",
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    """Severity assigned to a finding by a detector."""

    MALICIOUS = "malicious"
    SUSPICIOUS = "suspicious"
    NEUTRAL = "neutral"


class ScanStatus(str, Enum):
    """Lifecycle status of a scan.

    ``SCANNING`` is the only non-terminal value.  A record moves from
    ``SCANNING`` to exactly one of the terminal values and never changes
    again.
    """

    SCANNING = "scanning"
    SAFE = "safe"
    SUSPICIOUS = "suspicious"
    UNSAFE = "unsafe"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not ScanStatus.SCANNING


@dataclass(frozen=True)
class Finding:
    """Immutable record of a single detected indicator.

    Attributes:
        kind: Short human-readable label (e.g. ``"Process Injection API"``).
        details: Longer description of what matched.
        severity: Assessed severity of the finding.
        finding_id: Stable identifier of the rule that produced the finding
            (e.g. ``"S002"``).
    """

    kind: str
    details: str
    severity: Severity
    finding_id: str


@dataclass(frozen=True)
class ProgressEntry:
    """One ``(percent, message)`` pair appended to a scan's log."""

    percent: int
    message: str

    def render(self) -> str:
        """Return the entry in its ``"[NN%] message"`` log-line form."""
        return f"[{self.percent}%] {self.message}"


@dataclass(frozen=True)
class FileInfo:
    """Metadata captured once at submission time.

    Attributes:
        original_name: Client-supplied filename (basename only).
        size_bytes: Size of the uploaded content in bytes.
        digest_hex: Lower-case hex SHA-256 of the uploaded content.
    """

    original_name: str
    size_bytes: int
    digest_hex: str


@dataclass(frozen=True)
class ScanStats:
    """Aggregate finding counts.  ``total`` always equals the sum of the rest."""

    total: int = 0
    malicious: int = 0
    suspicious: int = 0
    neutral: int = 0


@dataclass(frozen=True)
class ScanRecord:
    """Snapshot of one scan as held by the registry.

    Attributes:
        scan_id: Opaque identifier; the registry key.
        status: Current :class:`ScanStatus`.
        file_info: Submission metadata; ``None`` only for records created
            without it (e.g. in tests).
        findings: Findings in detection order.  Empty until finalization.
        stats: Counts derived from *findings*.
        log: Progress entries in append order.
    """

    scan_id: str
    status: ScanStatus = ScanStatus.SCANNING
    file_info: FileInfo | None = None
    findings: tuple[Finding, ...] = field(default_factory=tuple)
    stats: ScanStats = field(default_factory=ScanStats)
    log: tuple[ProgressEntry, ...] = field(default_factory=tuple)

    @property
    def last_percent(self) -> int:
        return self.log[-1].percent if self.log else 0
