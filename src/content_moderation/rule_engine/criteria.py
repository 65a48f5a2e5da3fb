"""Author and item criteria matching plus include/exclude filter evaluation."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence

from content_moderation.activity import Activity, Author, UserNote
from content_moderation.comparisons import compare_count
from content_moderation.criteria_checks import (
    AUTHOR_CRITERIA_KEYS,
    ITEM_CRITERIA_KEYS,
    ITEM_FLAGS,
    KARMA_KEYS,
    NOTE_SEARCH_CURRENT,
    NOTE_SEARCH_TOTAL,
    CriteriaError,
    as_list,
    comparison_of,
    compile_pattern,
    duration_comparison_of,
    karma_comparison_of,
    note_search_of,
    reject_unknown,
)
from content_moderation.policy_config.contracts import (
    CONDITION_AND,
    FILTER_INCLUDE,
    FilterSpec,
    NamedCriteria,
)

from .contracts import CriteriaResult, FilterResult


logger = logging.getLogger("content_moderation.rule_engine.criteria")

NotesFn = Callable[[], Sequence[UserNote]]
CriteriaTest = Callable[[NamedCriteria, bool], bool]

def item_criteria_matches(item: Activity, criteria: Mapping[str, Any], *, now: float) -> bool:
    """True when every property named in ``criteria`` holds for ``item``."""
    reject_unknown(criteria, ITEM_CRITERIA_KEYS, "itemIs")
    for key, expected in criteria.items():
        if key in ITEM_FLAGS:
            if bool(getattr(item, ITEM_FLAGS[key])) != bool(expected):
                return False
        elif key == "score":
            if not comparison_of(expected, key).matches(item.score):
                return False
        elif key == "reports":
            if not comparison_of(expected, key).matches(item.reports):
                return False
        elif key == "age":
            if not duration_comparison_of(expected, key).matches(now - item.created_utc):
                return False
        elif key == "title":
            if item.title is None or not compile_pattern(expected, key).search(item.title):
                return False
        elif key == "flair":
            if not _in_values(item.flair_text, expected):
                return False
    return True


def author_criteria_matches(
    author: Author,
    criteria: Mapping[str, Any],
    *,
    now: float,
    notes: NotesFn | None = None,
) -> bool:
    """True when every property named in ``criteria`` holds for ``author``.

    User notes are only requested when the criteria mention them.
    """
    reject_unknown(criteria, AUTHOR_CRITERIA_KEYS, "authorIs")
    for key, expected in criteria.items():
        if key == "name":
            if not _in_values(author.name, expected):
                return False
        elif key == "flairText":
            if not _in_values(author.flair_text, expected):
                return False
        elif key == "flairCssClass":
            if not _in_values(author.flair_css_class, expected):
                return False
        elif key == "isMod":
            if author.is_moderator != bool(expected):
                return False
        elif key == "verified":
            if author.verified != bool(expected):
                return False
        elif key == "age":
            if author.created_utc is None:
                return False
            if not duration_comparison_of(expected, key).matches(now - author.created_utc):
                return False
        elif key in KARMA_KEYS:
            observed = {
                "linkKarma": author.link_karma,
                "commentKarma": author.comment_karma,
                "totalKarma": author.total_karma,
            }[key]
            if not karma_comparison_of(expected, key).matches(observed):
                return False
        elif key == "userNotes":
            if notes is None:
                raise CriteriaError("authorIs.userNotes requires a user notes source")
            if not all(user_notes_match(notes(), criterion) for criterion in as_list(expected, key)):
                return False
    return True


def user_notes_match(notes: Sequence[UserNote], criterion: Mapping[str, Any]) -> bool:
    search, comparison = note_search_of(criterion)
    note_type = str(criterion["type"])
    ordered = sorted(notes, key=lambda note: note.created_utc)
    if not ordered:
        return False
    if search == NOTE_SEARCH_CURRENT:
        return ordered[-1].note_type == note_type
    if search == NOTE_SEARCH_TOTAL:
        matched = sum(1 for note in ordered if note.note_type == note_type)
        return compare_count(comparison, matched, len(ordered))
    streak = 0
    for note in reversed(ordered):
        if note.note_type != note_type:
            break
        streak += 1
    return compare_count(comparison, streak, len(ordered))


def evaluate_filter(spec: FilterSpec | None, test: CriteriaTest) -> FilterResult | None:
    """Apply an include/exclude filter; include wins when both are present.

    ``test(criteria, include)`` returns True when the criteria entry passes:
    matched in include mode, not matched in exclude mode.
    """
    if spec is None:
        return None
    mode, entries = spec.effective()
    if mode is None:
        return FilterResult(mode=None, passed=True)
    results: list[CriteriaResult] = []
    if mode == FILTER_INCLUDE:
        passed = False
        for entry in entries:
            outcome = test(entry, True)
            results.append(CriteriaResult(criteria=dict(entry.criteria), passed=outcome, name=entry.name))
            if outcome:
                passed = True
                break
        return FilterResult(mode=mode, passed=passed, results=tuple(results))

    require_all = spec.exclude_condition == CONDITION_AND
    passed = require_all
    for entry in entries:
        outcome = test(entry, False)
        results.append(CriteriaResult(criteria=dict(entry.criteria), passed=outcome, name=entry.name))
        if require_all and not outcome:
            passed = False
            break
        if not require_all and outcome:
            passed = True
            break
    return FilterResult(
        mode=mode,
        passed=passed,
        results=tuple(results),
        exclude_condition=spec.exclude_condition,
    )


def item_filter_test(item: Activity, *, now: float) -> CriteriaTest:
    def _test(entry: NamedCriteria, include: bool) -> bool:
        matched = item_criteria_matches(item, entry.criteria, now=now)
        logger.debug("item criteria item=%s name=%s matched=%s include=%s", item.id, entry.name, matched, include)
        return matched if include else not matched

    return _test


def _in_values(observed: str | None, expected: Any) -> bool:
    if observed is None:
        return False
    candidates = as_list(expected, "value")
    return observed.strip().lower() in {str(candidate).strip().lower() for candidate in candidates}
