"""Structured graph builder: hydration + named entity/filter resolution (Phase 4)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from content_moderation.canonical import canonical_json

from .contracts import (
    CONDITION_AND,
    DEFAULT_POST_FAIL,
    DEFAULT_POST_TRIGGER,
    POST_BEHAVIORS,
    FilterDefaults,
    PostCheckBehavior,
    RuleNode,
    StructuredAction,
    StructuredCheck,
    StructuredRule,
    StructuredRuleSet,
    StructuredRun,
)
from .errors import ConfigParseError, FetchError, FragmentPosition, PolicyConfigError
from .filters import AUTHOR_IS, FILTER_FIELDS, FilterComposer
from .fragments import FetchFn, FetchedFragment, FragmentResolver, IncludeReference
from .hydrator import Hydrator, is_rule_set
from .registry import NamedEntityRegistry
from .schemas import SchemaRegistry


logger = logging.getLogger("content_moderation.policy_config.builder")

RULE_RESERVED_KEYS = {"kind", "name", *FILTER_FIELDS}
AUTHOR_RULE_KEYS = {"include", "exclude", "excludeCondition"}
ACTION_RESERVED_KEYS = {"kind", "name", "enable", *FILTER_FIELDS}


def no_remote_fetch(include: IncludeReference) -> FetchedFragment:
    raise FetchError(f"no fetcher configured for remote fragment: {include.path}", source=include.path)


class StructuredGraphBuilder:
    """Compiles a raw policy document into an ordered, name-free ``StructuredRun`` graph."""

    def __init__(
        self,
        fetch: FetchFn | None = None,
        *,
        schemas: SchemaRegistry | None = None,
        hydrator: Hydrator | None = None,
    ) -> None:
        self._hydrator = hydrator or Hydrator(FragmentResolver(fetch or no_remote_fetch), schemas)

    def build(
        self,
        document: Mapping[str, Any],
        *,
        filter_defaults: FilterDefaults | Mapping[str, Any] | None = None,
        post_check_defaults: PostCheckBehavior | Mapping[str, Any] | None = None,
    ) -> tuple[StructuredRun, ...]:
        hydrated = self._hydrator.hydrate(document)
        runs = hydrated["runs"]

        named_rules = NamedEntityRegistry("Rule")
        named_actions = NamedEntityRegistry("Action")
        for run_index, run in enumerate(runs, start=1):
            for check_index, check in enumerate(run["checks"], start=1):
                position = FragmentPosition().child("Run", run_index).child("Check", check_index)
                try:
                    named_rules.extract(check.get("rules") or [])
                    named_actions.extract(check.get("actions") or [])
                except PolicyConfigError as exc:
                    raise exc.at(position) from exc

        composer = FilterComposer().register_document(hydrated)
        resolution = _Resolution(composer=composer, rules=named_rules, actions=named_actions)

        caller_filters = _as_filter_defaults(filter_defaults, composer)
        document_filters = composer.compose_defaults(hydrated.get("filterCriteriaDefaults"))
        caller_behavior = _behavior_mapping(post_check_defaults)
        document_behavior = dict(hydrated.get("postCheckBehaviorDefaults") or {})

        structured_runs: list[StructuredRun] = []
        for run_index, run in enumerate(runs, start=1):
            position = FragmentPosition().child("Run", run_index)
            try:
                structured_runs.append(
                    resolution.build_run(
                        run,
                        position,
                        filter_levels=(document_filters, caller_filters),
                        behavior_levels=(document_behavior, caller_behavior),
                    )
                )
            except PolicyConfigError as exc:
                if exc.position:
                    raise
                raise exc.at(position) from exc

        logger.info(
            "built structured graph runs=%s checks=%s named_rules=%s named_actions=%s",
            len(structured_runs),
            sum(len(run.checks) for run in structured_runs),
            len(named_rules),
            len(named_actions),
        )
        return tuple(structured_runs)


class _Resolution:
    def __init__(
        self,
        *,
        composer: FilterComposer,
        rules: NamedEntityRegistry,
        actions: NamedEntityRegistry,
    ) -> None:
        self.composer = composer
        self.rules = rules
        self.actions = actions

    def build_run(
        self,
        run: Mapping[str, Any],
        position: FragmentPosition,
        *,
        filter_levels: tuple[FilterDefaults | None, ...],
        behavior_levels: tuple[Mapping[str, Any], ...],
    ) -> StructuredRun:
        run_filters = self.composer.compose_scope(run, *filter_levels)
        run_defaults = self.composer.compose_defaults(run.get("filterCriteriaDefaults"))
        run_behavior = dict(run.get("postCheckBehaviorDefaults") or {})
        checks: list[StructuredCheck] = []
        for check_index, check in enumerate(run["checks"], start=1):
            check_position = position.child("Check", check_index)
            try:
                checks.append(
                    self.build_check(
                        check,
                        check_position,
                        filter_levels=(run_defaults, *filter_levels),
                        behavior_levels=(run_behavior, *behavior_levels),
                    )
                )
            except PolicyConfigError as exc:
                if exc.position:
                    raise
                raise exc.at(check_position) from exc
        return StructuredRun(
            name=str(run.get("name") or f"Run{position.path[-1][1]}"),
            checks=tuple(checks),
            author_is=run_filters.author_is,
            item_is=run_filters.item_is,
            enable=bool(run.get("enable", True)),
        )

    def build_check(
        self,
        check: Mapping[str, Any],
        position: FragmentPosition,
        *,
        filter_levels: tuple[FilterDefaults | None, ...],
        behavior_levels: tuple[Mapping[str, Any], ...],
    ) -> StructuredCheck:
        filters = self.composer.compose_scope(check, *filter_levels)
        rules = tuple(
            self.build_rule(rule, position.child("Rule", index))
            for index, rule in enumerate(check.get("rules") or [], start=1)
        )
        actions = tuple(
            self.build_action(action, position.child("Action", index))
            for index, action in enumerate(check.get("actions") or [], start=1)
        )
        behavior = PostCheckBehavior(
            post_trigger=_first_defined("postTrigger", (check, *behavior_levels), DEFAULT_POST_TRIGGER),
            post_fail=_first_defined("postFail", (check, *behavior_levels), DEFAULT_POST_FAIL),
        )
        return StructuredCheck(
            name=str(check["name"]),
            rules=rules,
            actions=actions,
            kind=check.get("kind"),
            condition=str(check.get("condition") or CONDITION_AND),
            author_is=filters.author_is,
            item_is=filters.item_is,
            behavior=behavior,
            enable=bool(check.get("enable", True)),
            description=check.get("description"),
        )

    def build_rule(self, raw: Any, position: FragmentPosition) -> RuleNode:
        try:
            if is_rule_set(raw):
                members = tuple(
                    self.build_rule(member, position.child("Rule", index))
                    for index, member in enumerate(raw["rules"], start=1)
                )
                return StructuredRuleSet(rules=members, condition=str(raw.get("condition") or CONDITION_AND))
            rule = self.rules.resolve(raw)
            filters = self.composer.compose_scope(rule)
            config = {key: value for key, value in rule.items() if key not in RULE_RESERVED_KEYS}
            criteria_filter = None
            if rule["kind"] == "author":
                criteria_filter = self.composer.compose(
                    {
                        "include": rule.get("include") or [],
                        "exclude": rule.get("exclude") or [],
                        "excludeCondition": rule.get("excludeCondition"),
                    },
                    AUTHOR_IS,
                )
                if criteria_filter is None or criteria_filter.is_empty:
                    raise ConfigParseError("author rule requires at least one include or exclude criteria")
                config = {key: value for key, value in config.items() if key not in AUTHOR_RULE_KEYS}
                config["include"] = [dict(item.criteria) for item in criteria_filter.include]
                config["exclude"] = [dict(item.criteria) for item in criteria_filter.exclude]
                config["excludeCondition"] = criteria_filter.exclude_condition
            return StructuredRule(
                kind=str(rule["kind"]),
                config=_json_config(config, "rule"),
                name=rule.get("name"),
                author_is=filters.author_is,
                item_is=filters.item_is,
                criteria_filter=criteria_filter,
            )
        except PolicyConfigError as exc:
            if exc.position:
                raise
            raise exc.at(position) from exc

    def build_action(self, raw: Any, position: FragmentPosition) -> StructuredAction:
        try:
            action = self.actions.resolve(raw)
            filters = self.composer.compose_scope(action)
            return StructuredAction(
                kind=str(action["kind"]),
                config=_json_config(
                    {key: value for key, value in action.items() if key not in ACTION_RESERVED_KEYS}, "action"
                ),
                name=action.get("name"),
                author_is=filters.author_is,
                item_is=filters.item_is,
                enable=bool(action.get("enable", True)),
            )
        except PolicyConfigError as exc:
            if exc.position:
                raise
            raise exc.at(position) from exc


def _as_filter_defaults(
    value: FilterDefaults | Mapping[str, Any] | None,
    composer: FilterComposer,
) -> FilterDefaults | None:
    if value is None or isinstance(value, FilterDefaults):
        return value
    return composer.compose_defaults(value)


def _json_config(config: dict[str, Any], label: str) -> dict[str, Any]:
    try:
        canonical_json(config)
    except (TypeError, ValueError) as exc:
        raise ConfigParseError(f"{label} config must be plain JSON without NaN or Infinity: {exc}") from exc
    return config


def _behavior_mapping(value: PostCheckBehavior | Mapping[str, Any] | None) -> dict[str, Any]:
    if value is None:
        return {}
    payload = value.as_dict() if isinstance(value, PostCheckBehavior) else dict(value)
    for key in ("postTrigger", "postFail"):
        behavior = payload.get(key)
        if behavior is not None and behavior not in POST_BEHAVIORS:
            raise ConfigParseError(f"{key} default must be one of {sorted(POST_BEHAVIORS)}, got {behavior!r}")
    return payload


def _first_defined(key: str, levels: tuple[Mapping[str, Any], ...], default: str) -> str:
    for level in levels:
        value = level.get(key)
        if value is not None:
            return str(value)
    return default
