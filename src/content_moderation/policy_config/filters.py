"""Named filter criteria registration + override-only filter composition (Phase 3)."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from content_moderation.criteria_checks import CriteriaError, check_author_criteria, check_item_criteria

from .contracts import CONDITION_OR, CONDITIONS, FilterDefaults, FilterSpec, NamedCriteria
from .errors import ConfigParseError
from .hydrator import is_rule_set
from .registry import NamedEntityRegistry


logger = logging.getLogger("content_moderation.policy_config.filters")

AUTHOR_IS = "authorIs"
ITEM_IS = "itemIs"
FILTER_FIELDS = (AUTHOR_IS, ITEM_IS)
CRITERIA_CHECKS = {AUTHOR_IS: check_author_criteria, ITEM_IS: check_item_criteria}


def is_named_criteria(value: Any) -> bool:
    return isinstance(value, Mapping) and isinstance(value.get("criteria"), Mapping)


class FilterComposer:
    """Registers named author/item criteria and composes effective filters.

    Default inheritance picks exactly one source per field: the scope's own
    value when defined, otherwise the first fallback level that defines it.
    Levels are never blended.
    """

    def __init__(self) -> None:
        self.authors = NamedEntityRegistry("authorIs criteria")
        self.items = NamedEntityRegistry("itemIs criteria")

    def registry_for(self, field_name: str) -> NamedEntityRegistry:
        if field_name == AUTHOR_IS:
            return self.authors
        if field_name == ITEM_IS:
            return self.items
        raise ConfigParseError(f"unsupported filter field: {field_name}")

    def register_document(self, document: Mapping[str, Any]) -> "FilterComposer":
        self._register_defaults(document.get("filterCriteriaDefaults"))
        for run in document.get("runs") or []:
            self._register_scope(run)
            self._register_defaults(run.get("filterCriteriaDefaults"))
            for check in run.get("checks") or []:
                self._register_scope(check)
                self._register_rules(check.get("rules") or [])
                for action in check.get("actions") or []:
                    if isinstance(action, Mapping):
                        self._register_scope(action)
        logger.debug(
            "registered named criteria authorIs=%s itemIs=%s",
            len(self.authors),
            len(self.items),
        )
        return self

    def compose(self, value: Any, field_name: str) -> FilterSpec | None:
        """Resolve one filter field, substituting named references."""
        if value is None:
            return None
        if isinstance(value, list):
            return FilterSpec(include=self._resolve_all(value, field_name))
        if isinstance(value, Mapping):
            condition = str(value.get("excludeCondition") or CONDITION_OR).strip().upper()
            if condition not in CONDITIONS:
                raise ConfigParseError(f"{field_name}.excludeCondition must be one of AND, OR")
            return FilterSpec(
                include=self._resolve_all(value.get("include") or [], field_name),
                exclude=self._resolve_all(value.get("exclude") or [], field_name),
                exclude_condition=condition,
            )
        raise ConfigParseError(f"{field_name} must be a list or an object with include/exclude")

    def compose_defaults(self, value: Mapping[str, Any] | None) -> FilterDefaults | None:
        if value is None:
            return None
        return FilterDefaults(
            author_is=self.compose(value.get(AUTHOR_IS), AUTHOR_IS),
            item_is=self.compose(value.get(ITEM_IS), ITEM_IS),
        )

    def compose_scope(self, scope: Mapping[str, Any], *fallbacks: FilterDefaults | None) -> FilterDefaults:
        """Effective filters for a Run/Check given defaults levels, nearest first."""
        return FilterDefaults(
            author_is=self._inherit(scope, AUTHOR_IS, fallbacks),
            item_is=self._inherit(scope, ITEM_IS, fallbacks),
        )

    def _inherit(
        self,
        scope: Mapping[str, Any],
        field_name: str,
        fallbacks: Iterable[FilterDefaults | None],
    ) -> FilterSpec | None:
        if scope.get(field_name) is not None:
            return self.compose(scope[field_name], field_name)
        for level in fallbacks:
            if level is None:
                continue
            inherited = level.author_is if field_name == AUTHOR_IS else level.item_is
            if inherited is not None:
                return inherited
        return None

    def _resolve_all(self, values: Iterable[Any], field_name: str) -> tuple[NamedCriteria, ...]:
        entries = tuple(self._resolve_one(value, self.registry_for(field_name)) for value in values)
        for entry in entries:
            try:
                CRITERIA_CHECKS[field_name](entry.criteria)
            except CriteriaError as exc:
                label = f' "{entry.name}"' if entry.name else ""
                raise ConfigParseError(f"{field_name} criteria{label} is invalid: {exc}") from exc
        return entries

    def _resolve_one(self, value: Any, registry: NamedEntityRegistry) -> NamedCriteria:
        if isinstance(value, str):
            found = registry.resolve(value)
            return NamedCriteria(criteria=dict(found["criteria"]), name=found.get("name"))
        if is_named_criteria(value):
            return NamedCriteria(criteria=dict(value["criteria"]), name=value.get("name"))
        if isinstance(value, Mapping):
            return NamedCriteria(criteria=dict(value))
        raise ConfigParseError(f"{registry.label} must be a name or an object, got {type(value).__name__}")

    def _register_defaults(self, defaults: Any) -> None:
        if isinstance(defaults, Mapping):
            self._register_scope(defaults)

    def _register_scope(self, scope: Mapping[str, Any]) -> None:
        for field_name in FILTER_FIELDS:
            self._register_filter(scope.get(field_name), self.registry_for(field_name))

    def _register_rules(self, rules: Iterable[Any]) -> None:
        for rule in rules:
            if is_rule_set(rule):
                self._register_rules(rule["rules"])
            elif isinstance(rule, Mapping):
                self._register_scope(rule)
                if rule.get("kind") == "author":
                    self._register_filter(
                        {"include": rule.get("include") or [], "exclude": rule.get("exclude") or []},
                        self.authors,
                    )

    def _register_filter(self, value: Any, registry: NamedEntityRegistry) -> None:
        if value is None:
            return
        if isinstance(value, list):
            entries = list(value)
        elif isinstance(value, Mapping):
            entries = list(value.get("include") or []) + list(value.get("exclude") or [])
        else:
            return
        for entry in entries:
            if is_named_criteria(entry) and entry.get("name"):
                registry.register(entry)
