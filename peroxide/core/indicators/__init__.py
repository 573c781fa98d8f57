"""Keyword indicator rule library for PEroxide.

Provides the built-in indicator rule set and custom rule loading.
"""

from peroxide.core.indicators.builtin import (
    IndicatorRule,
    get_builtin_rules,
    load_rules,
)

__all__ = [
    "IndicatorRule",
    "get_builtin_rules",
    "load_rules",
]
