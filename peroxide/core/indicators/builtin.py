"""Built-in keyword indicator rules for PEroxide.

Each :class:`IndicatorRule` describes a set of literal substrings to look for
in the decoded file content.  A rule fires when **every** string in
``all_of`` is present and, if ``any_of`` is non-empty, **at least one** string
in ``any_of`` is present.  Matching is case-sensitive, mirroring how API names
appear in compiled binaries.

Additional organisation-specific rules can be supplied at startup via a JSON
config file (see :func:`load_rules`).  Custom rules are appended after the
built-in set.

**JSON config format** (array of objects at the root):

.. code-block:: json

    [
        {
            "id": "C001",
            "kind": "Keylogger API",
            "details": "Contains keyboard hook installation calls",
            "severity": "malicious",
            "all_of": ["SetWindowsHookEx", "GetAsyncKeyState"]
        }
    ]

Valid severity values: ``"malicious"``, ``"suspicious"``, ``"neutral"``.

Usage::

    from peroxide.core.indicators.builtin import load_rules

    rules = load_rules()                          # built-ins only
    rules = load_rules("/path/to/custom.json")    # built-ins + custom
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from peroxide.core.models import Severity

logger = logging.getLogger(__name__)

_VALID_SEVERITIES: frozenset[str] = frozenset(s.value for s in Severity)


@dataclass(frozen=True)
class IndicatorRule:
    """An immutable keyword indicator rule.

    Attributes:
        rule_id: Identifier reported as the finding id (e.g. ``"S001"``).
        kind: Short label reported as the finding kind.
        details: Description reported with the finding.
        severity: Severity of a positive match.
        all_of: Substrings that must all be present.
        any_of: Substrings of which at least one must be present.  Ignored
            when empty.
    """

    rule_id: str
    kind: str
    details: str
    severity: Severity
    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not self.all_of and not self.any_of:
            return False
        if not all(needle in text for needle in self.all_of):
            return False
        if self.any_of and not any(needle in text for needle in self.any_of):
            return False
        return True


_BUILTIN_RULES: list[IndicatorRule] = [
    IndicatorRule(
        rule_id="S001",
        kind="Suspicious String",
        details="File contains suspicious keywords",
        severity=Severity.SUSPICIOUS,
        any_of=("malware", "virus"),
    ),
    IndicatorRule(
        rule_id="S002",
        kind="Process Injection API",
        details="Contains process injection function calls",
        severity=Severity.MALICIOUS,
        all_of=("CreateRemoteThread", "VirtualAllocEx"),
    ),
    IndicatorRule(
        rule_id="S003",
        kind="Registry Modification",
        details="Contains registry manipulation functions",
        severity=Severity.SUSPICIOUS,
        all_of=("RegSetValue", "RegCreateKey"),
    ),
]


def get_builtin_rules() -> list[IndicatorRule]:
    """Return a new list containing the built-in rules in canonical order."""
    return list(_BUILTIN_RULES)


def _string_tuple(value: object) -> tuple[str, ...] | None:
    if value is None:
        return ()
    if isinstance(value, list) and all(isinstance(v, str) and v for v in value):
        return tuple(value)
    return None


def load_rules(custom_config_path: Optional[str | Path] = None) -> list[IndicatorRule]:
    """Return the built-in rules plus any custom rules from *custom_config_path*.

    Malformed entries (missing keys, invalid severity, no keywords) are
    skipped with a warning so that the service can start with the valid
    rules even when the config contains errors.  A custom rule whose id
    duplicates an earlier rule is skipped.

    This function never raises; filesystem and JSON errors are logged and
    the built-in rules are returned.
    """
    rules = get_builtin_rules()

    if custom_config_path is None:
        return rules

    path = Path(custom_config_path)
    if not path.exists():
        logger.warning(
            "Custom indicator rule config not found: %s; using built-in rules only",
            path,
        )
        return rules

    try:
        entries = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        logger.error("Cannot read indicator rule config %s: %s", path, exc)
        return rules
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON in indicator rule config %s: %s", path, exc)
        return rules

    if not isinstance(entries, list):
        logger.error(
            "Indicator rule config %s must contain a JSON array at the root (got %s)",
            path,
            type(entries).__name__,
        )
        return rules

    seen_ids = {rule.rule_id for rule in rules}
    loaded = 0

    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning("Indicator rule at index %d is not a JSON object; skipping", i)
            continue

        rule_id = entry.get("id")
        kind = entry.get("kind")
        details = entry.get("details", "")
        severity = entry.get("severity")
        all_of = _string_tuple(entry.get("all_of"))
        any_of = _string_tuple(entry.get("any_of"))

        if not rule_id or not isinstance(rule_id, str):
            logger.warning("Indicator rule at index %d missing valid 'id'; skipping", i)
            continue
        if rule_id in seen_ids:
            logger.warning("Indicator rule %r at index %d duplicates an existing id; skipping", rule_id, i)
            continue
        if not kind or not isinstance(kind, str) or not isinstance(details, str):
            logger.warning("Indicator rule %r missing valid 'kind'/'details'; skipping", rule_id)
            continue
        if not isinstance(severity, str) or severity not in _VALID_SEVERITIES:
            logger.warning(
                "Indicator rule %r has invalid severity %r (must be one of %s); skipping",
                rule_id,
                severity,
                sorted(_VALID_SEVERITIES),
            )
            continue
        if all_of is None or any_of is None or not (all_of or any_of):
            logger.warning(
                "Indicator rule %r needs non-empty string lists in 'all_of' or 'any_of'; skipping",
                rule_id,
            )
            continue

        rules.append(
            IndicatorRule(
                rule_id=rule_id,
                kind=kind,
                details=details,
                severity=Severity(severity),
                all_of=all_of,
                any_of=any_of,
            )
        )
        seen_ids.add(rule_id)
        loaded += 1

    logger.info(
        "Loaded %d custom indicator rule(s) from %s (total rules: %d)",
        loaded,
        path,
        len(rules),
    )
    return rules
