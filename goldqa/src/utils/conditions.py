"""Numeric filter conditions such as ``>=30`` or ``10-20``."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_COMPARISON_RE = re.compile(r"^\s*(>=|<=|==|=|>|<)?\s*(-?\d+(?:\.\d+)?)\s*$")
_RANGE_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(?:-|to|\.\.)\s*(-?\d+(?:\.\d+)?)\s*$", re.IGNORECASE)


def to_number(text: str | None) -> Optional[float]:
    if text is None:
        return None
    try:
        return float(str(text).replace(",", "").strip())
    except ValueError:
        return None


@dataclass(slots=True)
class NumericCondition:
    low: Optional[float] = None
    high: Optional[float] = None
    low_inclusive: bool = True
    high_inclusive: bool = True

    def matches(self, value: float) -> bool:
        if self.low is not None:
            if value < self.low or (value == self.low and not self.low_inclusive):
                return False
        if self.high is not None:
            if value > self.high or (value == self.high and not self.high_inclusive):
                return False
        return True


def parse_numeric_condition(text: str) -> Optional[NumericCondition]:
    """Return None when ``text`` is not a numeric condition."""

    match = _RANGE_RE.match(text or "")
    if match:
        low, high = sorted((float(match.group(1)), float(match.group(2))))
        return NumericCondition(low=low, high=high)

    match = _COMPARISON_RE.match(text or "")
    if not match:
        return None
    operator, number = match.group(1) or "=", float(match.group(2))
    if operator == ">=":
        return NumericCondition(low=number)
    if operator == ">":
        return NumericCondition(low=number, low_inclusive=False)
    if operator == "<=":
        return NumericCondition(high=number)
    if operator == "<":
        return NumericCondition(high=number, high_inclusive=False)
    return NumericCondition(low=number, high=number)
