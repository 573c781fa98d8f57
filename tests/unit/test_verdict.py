"""Unit tests for :mod:`peroxide.core.verdict`."""

from __future__ import annotations

import pytest

from peroxide.core.models import Finding, ScanStats, ScanStatus, Severity
from peroxide.core.verdict import compute_stats, decide_verdict


def _finding(severity: Severity, finding_id: str = "T001") -> Finding:
    return Finding(kind="Test", details="test finding", severity=severity, finding_id=finding_id)


class TestComputeStats:
    def test_empty_findings(self):
        assert compute_stats([]) == ScanStats(total=0, malicious=0, suspicious=0, neutral=0)

    def test_counts_each_severity(self):
        findings = [
            _finding(Severity.MALICIOUS),
            _finding(Severity.SUSPICIOUS),
            _finding(Severity.SUSPICIOUS),
            _finding(Severity.NEUTRAL),
        ]
        stats = compute_stats(findings)
        assert stats.total == 4
        assert stats.malicious == 1
        assert stats.suspicious == 2
        assert stats.neutral == 1

    def test_total_equals_sum_of_severities(self):
        findings = [_finding(s) for s in (Severity.NEUTRAL, Severity.MALICIOUS, Severity.NEUTRAL)]
        stats = compute_stats(findings)
        assert stats.total == stats.malicious + stats.suspicious + stats.neutral

    def test_accepts_generator(self):
        stats = compute_stats(_finding(Severity.SUSPICIOUS) for _ in range(3))
        assert stats.suspicious == 3


class TestDecideVerdict:
    @pytest.mark.parametrize(
        "stats, expected",
        [
            (ScanStats(total=0), ScanStatus.SAFE),
            (ScanStats(total=1, malicious=1), ScanStatus.UNSAFE),
            (ScanStats(total=3, malicious=1, suspicious=1, neutral=1), ScanStatus.UNSAFE),
            (ScanStats(total=1, suspicious=1), ScanStatus.SUSPICIOUS),
            (ScanStats(total=2, suspicious=1, neutral=1), ScanStatus.SUSPICIOUS),
        ],
    )
    def test_verdict_law(self, stats, expected):
        assert decide_verdict(stats) is expected

    def test_single_neutral_finding_is_suspicious_not_safe(self):
        stats = compute_stats([_finding(Severity.NEUTRAL)])
        assert decide_verdict(stats) is ScanStatus.SUSPICIOUS

    def test_verdict_is_always_terminal(self):
        for stats in (ScanStats(), ScanStats(total=1, neutral=1), ScanStats(total=1, malicious=1)):
            assert decide_verdict(stats).is_terminal
