"""Detector interface and the default keyword indicator detector.

A detector is a pure function over decoded file text: it returns zero or more
:class:`~peroxide.core.models.Finding` objects and has no side effects.  The
scan worker runs each configured detector independently; a detector that
raises contributes no findings to that scan but does not abort it.

Usage::

    from peroxide.core.detector import IndicatorDetector

    detector = IndicatorDetector()          # built-in rules
    findings = detector.detect("this file contains malware")
    print(findings)  # [Finding(kind='Suspicious String', ...)]
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

from peroxide.core.indicators.builtin import IndicatorRule, load_rules
from peroxide.core.models import Finding

logger = logging.getLogger(__name__)


class Detector(ABC):
    """Abstract interface for content detectors.

    Implementations must be stateless after construction so that a single
    instance can serve concurrent scans.

    Example — minimal stub for unit tests::

        class FakeDetector(Detector):
            name = "fake"

            def detect(self, text: str) -> list[Finding]:
                return []
    """

    #: Short identifier used in logs and metrics.
    name: str = "detector"

    @abstractmethod
    def detect(self, text: str) -> list[Finding]:
        """Return findings for *text*, in detection order.

        Args:
            text: Best-effort decoded file content.  May contain replacement
                characters for undecodable byte sequences.

        Returns:
            A list of :class:`~peroxide.core.models.Finding` objects; empty
            when nothing matched.
        """


class IndicatorDetector(Detector):
    """Keyword indicator detector driven by :class:`IndicatorRule` objects.

    Args:
        rules: Explicit rule list.  When ``None``, the built-in rules are
            used, plus any custom rules from *custom_rules_path*.
        custom_rules_path: Path to a JSON custom-rules file merged with the
            built-ins.  Ignored when *rules* is supplied.
    """

    name = "indicators"

    def __init__(
        self,
        rules: Sequence[IndicatorRule] | None = None,
        custom_rules_path: str | Path | None = None,
    ) -> None:
        if rules is not None:
            self._rules: list[IndicatorRule] = list(rules)
        else:
            self._rules = load_rules(custom_rules_path)

        logger.debug(
            "IndicatorDetector initialised with %d rule(s): %s",
            len(self._rules),
            [r.rule_id for r in self._rules],
        )

    @property
    def rules(self) -> list[IndicatorRule]:
        return list(self._rules)

    def detect(self, text: str) -> list[Finding]:
        if not text:
            return []

        findings: list[Finding] = []
        for rule in self._rules:
            if rule.matches(text):
                findings.append(
                    Finding(
                        kind=rule.kind,
                        details=rule.details,
                        severity=rule.severity,
                        finding_id=rule.rule_id,
                    )
                )
                logger.debug(
                    "Indicator match: rule=%s severity=%s",
                    rule.rule_id,
                    rule.severity.value,
                )
        return findings
