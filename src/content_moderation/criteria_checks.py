"""Supported author/item criteria keys and their load-time checks."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from content_moderation.comparisons import (
    ComparisonError,
    DurationComparison,
    GenericComparison,
    parse_duration_comparison,
    parse_generic_comparison,
)


ITEM_FLAGS: dict[str, str] = {
    "removed": "removed",
    "locked": "locked",
    "approved": "approved",
    "spam": "spam",
    "deleted": "deleted",
    "nsfw": "nsfw",
    "spoiler": "spoiler",
    "stickied": "stickied",
    "distinguished": "distinguished",
    "is_self": "is_self",
    "op": "is_submitter",
}
ITEM_CRITERIA_KEYS = set(ITEM_FLAGS) | {"score", "reports", "age", "title", "flair"}
KARMA_KEYS = ("linkKarma", "commentKarma", "totalKarma")
AUTHOR_CRITERIA_KEYS = {
    "name",
    "flairText",
    "flairCssClass",
    "isMod",
    "verified",
    "age",
    "userNotes",
} | set(KARMA_KEYS)

NOTE_SEARCH_CURRENT = "current"
NOTE_SEARCH_TOTAL = "total"
NOTE_SEARCH_CONSECUTIVE = "consecutive"
NOTE_SEARCHES = {NOTE_SEARCH_CURRENT, NOTE_SEARCH_TOTAL, NOTE_SEARCH_CONSECUTIVE}


class CriteriaError(ValueError):
    """Raised when author/item criteria contain unsupported keys or expressions."""


def check_item_criteria(criteria: Any) -> None:
    """Parse every expression in an itemIs criteria entry without evaluating it."""
    reject_unknown(criteria, ITEM_CRITERIA_KEYS, "itemIs")
    for key, expected in criteria.items():
        if key in ("score", "reports"):
            comparison_of(expected, key)
        elif key == "age":
            duration_comparison_of(expected, key)
        elif key == "title":
            compile_pattern(expected, key)
        elif key == "flair":
            as_list(expected, key)


def check_author_criteria(criteria: Any) -> None:
    """Parse every expression in an authorIs criteria entry without evaluating it."""
    reject_unknown(criteria, AUTHOR_CRITERIA_KEYS, "authorIs")
    for key, expected in criteria.items():
        if key in ("name", "flairText", "flairCssClass"):
            as_list(expected, key)
        elif key == "age":
            duration_comparison_of(expected, key)
        elif key in KARMA_KEYS:
            karma_comparison_of(expected, key)
        elif key == "userNotes":
            for criterion in as_list(expected, key):
                note_search_of(criterion)


def note_search_of(criterion: Any) -> tuple[str, GenericComparison]:
    """Search mode and count comparison for one userNotes entry."""
    if not isinstance(criterion, Mapping) or not criterion.get("type"):
        raise CriteriaError("authorIs.userNotes entries require a type")
    search = str(criterion.get("search") or NOTE_SEARCH_CURRENT)
    if search not in NOTE_SEARCHES:
        raise CriteriaError(f"authorIs.userNotes.search must be one of {sorted(NOTE_SEARCHES)}")
    return search, comparison_of(criterion.get("count") or ">= 1", "userNotes.count")


def karma_comparison_of(value: Any, key: str) -> GenericComparison:
    comparison = comparison_of(value, key)
    if comparison.is_percent:
        raise CriteriaError(f"authorIs.{key} does not support percentages")
    return comparison


def reject_unknown(criteria: Any, allowed: set[str], label: str) -> None:
    if not isinstance(criteria, Mapping):
        raise CriteriaError(f"{label} criteria must be a mapping")
    unknown = sorted(set(criteria) - allowed)
    if unknown:
        raise CriteriaError(f"{label} criteria has unknown keys: {','.join(unknown)}")


def comparison_of(value: Any, key: str) -> GenericComparison:
    try:
        return parse_generic_comparison(value)
    except ComparisonError as exc:
        raise CriteriaError(f"{key}: {exc}") from exc


def duration_comparison_of(value: Any, key: str) -> DurationComparison:
    try:
        return parse_duration_comparison(value)
    except ComparisonError as exc:
        raise CriteriaError(f"{key}: {exc}") from exc


def compile_pattern(value: Any, key: str) -> re.Pattern[str]:
    try:
        return re.compile(str(value), re.IGNORECASE)
    except re.error as exc:
        raise CriteriaError(f"{key}: invalid regular expression {value!r}") from exc


def as_list(value: Any, key: str) -> list[Any]:
    if isinstance(value, (str, Mapping)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    raise CriteriaError(f"{key} must be a value or a list of values")
