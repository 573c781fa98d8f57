"""Verdict aggregation for completed scans.

The verdict is derived purely from finding severities:

* ``unsafe``     — at least one ``malicious`` finding.
* ``suspicious`` — no malicious findings, but at least one ``suspicious``
  **or** ``neutral`` finding.  A lone neutral finding therefore still yields
  ``suspicious``; it never yields ``safe``.
* ``safe``       — no findings at all.

Usage::

    from peroxide.core.verdict import compute_stats, decide_verdict

    stats = compute_stats(findings)
    status = decide_verdict(stats)
"""

from __future__ import annotations

from typing import Iterable

from peroxide.core.models import Finding, ScanStats, ScanStatus, Severity


def compute_stats(findings: Iterable[Finding]) -> ScanStats:
    """Count *findings* by severity."""
    counts = {severity: 0 for severity in Severity}
    total = 0
    for finding in findings:
        counts[Severity(finding.severity)] += 1
        total += 1
    return ScanStats(
        total=total,
        malicious=counts[Severity.MALICIOUS],
        suspicious=counts[Severity.SUSPICIOUS],
        neutral=counts[Severity.NEUTRAL],
    )


def decide_verdict(stats: ScanStats) -> ScanStatus:
    """Map aggregate *stats* to a terminal :class:`ScanStatus`."""
    if stats.malicious > 0:
        return ScanStatus.UNSAFE
    if stats.suspicious > 0 or stats.neutral > 0:
        return ScanStatus.SUSPICIOUS
    return ScanStatus.SAFE
