"""Closed registry of rule kinds keyed by the ``kind`` discriminator."""

from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
import re
from typing import Any, Mapping, TYPE_CHECKING

from content_moderation.activity import (
    ACTIVITY_COMMENT,
    ACTIVITY_SUBMISSION,
    Activity,
    ActivityWindow,
    parse_window,
)
from content_moderation.comparisons import compare_count, parse_generic_comparison
from content_moderation.policy_config.contracts import CONDITION_AND, CONDITION_OR, StructuredRule

from .contracts import RuleOutcome
from .criteria import evaluate_filter

if TYPE_CHECKING:  # pragma: no cover - typing only
    from content_moderation.resources.resources import ResourceCache


LOOK_AT_TYPES = {"comments": ACTIVITY_COMMENT, "submissions": ACTIVITY_SUBMISSION, "all": None}
REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}
REGEX_LITERAL = re.compile(r"^/(?P<pattern>.*)/(?P<flags>[a-z]*)$", re.DOTALL)


@dataclass(frozen=True)
class RuleContext:
    item: Activity
    resources: ResourceCache
    now: float

    def history(self, window: ActivityWindow) -> list[Activity]:
        """The author's activities inside ``window``, excluding the item itself."""
        activities = self.resources.get_author_activities(self.item.author.name, window)
        return window.select(activities, now=self.now, exclude_id=self.item.id)


class RuleKind:
    kind = ""

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        raise NotImplementedError


class RecentActivityRule(RuleKind):
    """Triggers when the author is active in watched communities."""

    kind = "recentActivity"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        config = rule.config
        window = parse_window(config.get("window"), activity_type=_look_at(config.get("lookAt")))
        history = context.history(window)
        thresholds = config.get("thresholds")
        if not isinstance(thresholds, list) or not thresholds:
            raise ValueError("recentActivity requires a non-empty thresholds list")
        summaries: list[dict[str, Any]] = []
        triggered = False
        for entry in thresholds:
            communities = {str(name).strip().lower() for name in _as_list(entry.get("subreddits"))}
            if not communities:
                raise ValueError("recentActivity thresholds require subreddits")
            comparison = parse_generic_comparison(entry.get("threshold") or ">= 1")
            count = sum(1 for activity in history if activity.community.lower() in communities)
            hit = compare_count(comparison, count, len(history))
            triggered = triggered or hit
            summaries.append(
                {
                    "subreddits": sorted(communities),
                    "count": count,
                    "threshold": comparison.describe(),
                    "triggered": hit,
                }
            )
        hits = [summary for summary in summaries if summary["triggered"]]
        result = (
            "; ".join(f"{s['count']} activities in {','.join(s['subreddits'])} ({s['threshold']})" for s in hits)
            if hits
            else f"no watched community met its threshold in {len(history)} activities"
        )
        return RuleOutcome(triggered=triggered, result=result, data={"total": len(history), "thresholds": summaries})


class RepeatActivityRule(RuleKind):
    """Triggers when the author keeps posting the same content."""

    kind = "repeatActivity"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        config = rule.config
        comparison = parse_generic_comparison(config.get("threshold") or ">= 5")
        min_words = int(config.get("minWordCount", 1))
        case_sensitive = bool(config.get("caseSensitive", False))
        identifier = _identifier(context.item, case_sensitive)
        if len(identifier.split()) < min_words:
            return RuleOutcome(
                triggered=False,
                result=f"content has fewer than {min_words} words",
                data={"count": 0, "threshold": comparison.describe()},
            )
        window = parse_window(config.get("window"), activity_type=_look_at(config.get("lookAt") or "all"))
        repeats = 1 + sum(
            1 for activity in context.history(window) if _identifier(activity, case_sensitive) == identifier
        )
        triggered = comparison.matches(repeats)
        return RuleOutcome(
            triggered=triggered,
            result=f"content repeated {repeats} times ({comparison.describe()})",
            data={"count": repeats, "threshold": comparison.describe(), "identifier": identifier[:200]},
        )


class AuthorRule(RuleKind):
    """Triggers when the author passes the compiled include/exclude criteria."""

    kind = "author"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        if rule.criteria_filter is None:
            raise ValueError("author rule has no compiled criteria")
        outcome = evaluate_filter(
            rule.criteria_filter,
            lambda entry, include: context.resources.test_author_criteria(context.item, entry.criteria, include),
        )
        triggered = bool(outcome is not None and outcome.passed)
        mode = outcome.mode if outcome is not None else None
        return RuleOutcome(
            triggered=triggered,
            result=f"author {'passed' if triggered else 'did not pass'} {mode} criteria",
            data={"criteria": None if outcome is None else outcome.as_dict()},
        )


class AttributionRule(RuleKind):
    """Triggers when too much of the author's activity points at one domain."""

    kind = "attribution"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        criteria = _criteria_list(rule.config, self.kind)
        summaries: list[dict[str, Any]] = []
        for criterion in criteria:
            comparison = parse_generic_comparison(criterion.get("threshold") or "> 10%")
            threshold_on = str(criterion.get("thresholdOn") or "all")
            activity_type = ACTIVITY_SUBMISSION if threshold_on == "submissions" else None
            window = parse_window(criterion.get("window"), activity_type=activity_type)
            history = context.history(window)
            min_count = int(criterion.get("minActivityCount", 5))
            domains = [str(domain).lower() for domain in _as_list(criterion.get("domains"))]
            if not domains and context.item.domain:
                domains = [context.item.domain.lower()]
            counts = {
                domain: sum(
                    1
                    for activity in history
                    if activity.kind == ACTIVITY_SUBMISSION and (activity.domain or "").lower() == domain
                )
                for domain in domains
            }
            if len(history) < min_count:
                hits: list[str] = []
            elif criterion.get("domainsCombined"):
                hits = domains if compare_count(comparison, sum(counts.values()), len(history)) else []
            else:
                hits = [domain for domain, count in counts.items() if compare_count(comparison, count, len(history))]
            summaries.append(
                {
                    "threshold": comparison.describe(),
                    "total": len(history),
                    "counts": counts,
                    "triggered_domains": hits,
                    "triggered": bool(hits),
                }
            )
        return _combine(rule.config, summaries, "attribution")


class HistoryRule(RuleKind):
    """Triggers on the author's comment/submission volume in a window."""

    kind = "history"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        criteria = _criteria_list(rule.config, self.kind)
        summaries: list[dict[str, Any]] = []
        for criterion in criteria:
            checks = {key: criterion.get(key) for key in ("comment", "submission", "total") if criterion.get(key)}
            if not checks:
                raise ValueError("history criteria require at least one of comment, submission, total")
            history = context.history(parse_window(criterion.get("window")))
            observed = {
                "comment": sum(1 for activity in history if activity.kind == ACTIVITY_COMMENT),
                "submission": sum(1 for activity in history if activity.kind == ACTIVITY_SUBMISSION),
                "total": len(history),
            }
            enough = len(history) >= int(criterion.get("minActivityCount", 5))
            hit = enough and all(
                compare_count(parse_generic_comparison(expression), observed[key], len(history))
                for key, expression in checks.items()
            )
            summaries.append({"observed": observed, "thresholds": checks, "triggered": hit})
        return _combine(rule.config, summaries, "history")


class RegexRule(RuleKind):
    """Triggers when item text matches configured expressions."""

    kind = "regex"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        criteria = _criteria_list(rule.config, self.kind)
        item = context.item
        summaries: list[dict[str, Any]] = []
        for criterion in criteria:
            pattern = _compile_regex(criterion.get("regex"))
            fields = _as_list(criterion.get("testOn")) or ["title", "body"]
            matches = 0
            for field_name in fields:
                text = _field_text(item, str(field_name))
                if text:
                    matches += len(pattern.findall(text))
            comparison = parse_generic_comparison(criterion.get("matchThreshold") or "> 0")
            summaries.append(
                {
                    "name": criterion.get("name"),
                    "regex": pattern.pattern,
                    "matches": matches,
                    "triggered": comparison.matches(matches),
                }
            )
        return _combine(rule.config, summaries, "regex")


class RepostRule(RuleKind):
    """Triggers when the item repeats one of the author's earlier submissions."""

    kind = "repost"

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        criteria = _criteria_list(rule.config, self.kind)
        item = context.item
        summaries: list[dict[str, Any]] = []
        for criterion in criteria:
            search_on = [str(value) for value in _as_list(criterion.get("searchOn"))] or ["title", "url"]
            match_score = float(criterion.get("matchScore", 85))
            min_words = int(criterion.get("minWordCount", 2))
            window = parse_window(criterion.get("window"), activity_type=ACTIVITY_SUBMISSION)
            matches: list[dict[str, Any]] = []
            for previous in context.history(window):
                if "url" in search_on and _same_url(item, previous):
                    matches.append({"id": previous.id, "field": "url", "score": 100.0})
                    continue
                if "title" in search_on:
                    score = _title_similarity(item.title, previous.title, min_words)
                    if score is not None and score >= match_score:
                        matches.append({"id": previous.id, "field": "title", "score": round(score, 2)})
            summaries.append({"searchOn": search_on, "matchScore": match_score, "matches": matches, "triggered": bool(matches)})
        return _combine(rule.config, summaries, "repost")


RULE_KINDS: dict[str, RuleKind] = {
    rule_kind.kind: rule_kind
    for rule_kind in (
        RecentActivityRule(),
        RepeatActivityRule(),
        AuthorRule(),
        AttributionRule(),
        HistoryRule(),
        RegexRule(),
        RepostRule(),
    )
}


def _combine(config: Mapping[str, Any], summaries: list[dict[str, Any]], label: str) -> RuleOutcome:
    condition = str(config.get("condition") or CONDITION_OR).upper()
    if condition == CONDITION_AND:
        triggered = all(summary["triggered"] for summary in summaries)
    else:
        triggered = any(summary["triggered"] for summary in summaries)
    hit_count = sum(1 for summary in summaries if summary["triggered"])
    return RuleOutcome(
        triggered=triggered,
        result=f"{hit_count}/{len(summaries)} {label} criteria triggered ({condition})",
        data={"condition": condition, "criteria": summaries},
    )


def _criteria_list(config: Mapping[str, Any], kind: str) -> list[Mapping[str, Any]]:
    criteria = config.get("criteria")
    if not isinstance(criteria, list) or not criteria:
        raise ValueError(f"{kind} requires a non-empty criteria list")
    for index, criterion in enumerate(criteria):
        if not isinstance(criterion, Mapping):
            raise ValueError(f"{kind} criteria[{index}] must be a mapping")
    condition = str(config.get("condition") or CONDITION_OR).upper()
    if condition not in {CONDITION_AND, CONDITION_OR}:
        raise ValueError(f"{kind} condition must be AND or OR")
    return criteria


def _look_at(value: Any) -> str | None:
    if value is None:
        return None
    key = str(value).strip()
    if key not in LOOK_AT_TYPES:
        raise ValueError(f"lookAt must be one of {sorted(LOOK_AT_TYPES)}")
    return LOOK_AT_TYPES[key]


def _identifier(activity: Activity, case_sensitive: bool) -> str:
    if activity.kind == ACTIVITY_SUBMISSION:
        text = f"{activity.title or ''} {activity.body}" if activity.is_self else (activity.url or activity.title or "")
    else:
        text = activity.body
    text = " ".join(text.split())
    return text if case_sensitive else text.lower()


def _compile_regex(value: Any) -> re.Pattern[str]:
    text = str(value or "")
    if not text:
        raise ValueError("regex criteria require a regex")
    literal = REGEX_LITERAL.match(text)
    flags = 0
    if literal is not None:
        text = literal.group("pattern")
        for flag in literal.group("flags"):
            if flag not in REGEX_FLAGS:
                raise ValueError(f"unsupported regex flag '{flag}'")
            flags |= REGEX_FLAGS[flag]
    return re.compile(text, flags)


def _field_text(item: Activity, field_name: str) -> str | None:
    if field_name == "title":
        return item.title
    if field_name == "body":
        return item.body
    if field_name == "url":
        return None if item.is_self else item.url
    raise ValueError(f"unsupported regex testOn field '{field_name}'")


def _same_url(item: Activity, previous: Activity) -> bool:
    if item.is_self or previous.is_self or not item.url or not previous.url:
        return False
    return _normalize_url(item.url) == _normalize_url(previous.url)


def _normalize_url(url: str) -> str:
    return url.strip().lower().rstrip("/").replace("://www.", "://")


def _title_similarity(current: str | None, previous: str | None, min_words: int) -> float | None:
    if not current or not previous:
        return None
    left = " ".join(current.lower().split())
    right = " ".join(previous.lower().split())
    if len(left.split()) < min_words:
        return None
    return SequenceMatcher(None, left, right).ratio() * 100


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
