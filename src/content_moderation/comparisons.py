"""Comparison and duration expressions used by rule and filter criteria."""

from __future__ import annotations

from dataclasses import dataclass
import operator
import re
from typing import Any, Callable


GENERIC_COMPARISON_RE = re.compile(
    r"^\s*(?P<op>>=|<=|>|<)\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<percent>%?)\s*$"
)
DURATION_RE = re.compile(r"^\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]+)\s*$")
DURATION_COMPARISON_RE = re.compile(r"^\s*(?P<op>>=|<=|>|<)\s*(?P<duration>.+?)\s*$")

UNIT_SECONDS: dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400,
}

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


class ComparisonError(ValueError):
    """Raised when a comparison or duration expression cannot be parsed."""


@dataclass(frozen=True)
class GenericComparison:
    op: str
    value: float
    is_percent: bool = False

    def matches(self, observed: float) -> bool:
        return OPERATORS[self.op](observed, self.value)

    def describe(self) -> str:
        value = int(self.value) if float(self.value).is_integer() else self.value
        return f"{self.op} {value}{'%' if self.is_percent else ''}"


@dataclass(frozen=True)
class DurationComparison:
    op: str
    seconds: float

    def matches(self, observed_seconds: float) -> bool:
        return OPERATORS[self.op](observed_seconds, self.seconds)


def parse_generic_comparison(value: Any) -> GenericComparison:
    text = str(value or "")
    matched = GENERIC_COMPARISON_RE.match(text)
    if matched is None:
        raise ComparisonError(f"could not parse comparison expression: {value!r}")
    return GenericComparison(
        op=matched.group("op"),
        value=float(matched.group("value")),
        is_percent=matched.group("percent") == "%",
    )


def parse_duration(value: Any) -> float:
    """Seconds for ``"90 minutes"``, ``"3 months"``; bare numbers are seconds."""
    if isinstance(value, bool):
        raise ComparisonError(f"could not parse duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    matched = DURATION_RE.match(str(value or ""))
    if matched is None:
        raise ComparisonError(f"could not parse duration: {value!r}")
    unit = matched.group("unit").lower()
    if unit.endswith("s") and unit[:-1] in UNIT_SECONDS:
        unit = unit[:-1]
    if unit not in UNIT_SECONDS:
        raise ComparisonError(f"unsupported duration unit in {value!r}")
    return float(matched.group("value")) * UNIT_SECONDS[unit]


def parse_duration_comparison(value: Any) -> DurationComparison:
    matched = DURATION_COMPARISON_RE.match(str(value or ""))
    if matched is None:
        raise ComparisonError(f"could not parse duration comparison: {value!r}")
    return DurationComparison(op=matched.group("op"), seconds=parse_duration(matched.group("duration")))


def compare_count(comparison: GenericComparison, count: int, total: int) -> bool:
    """Apply ``comparison`` to ``count`` (as a percentage of ``total`` when the expression is a percent)."""
    if comparison.is_percent:
        if total <= 0:
            return False
        return comparison.matches(count / total * 100)
    return comparison.matches(count)
