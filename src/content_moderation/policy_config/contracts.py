"""Structured (name-free, filter-resolved) policy graph types (Phase 4)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


CONDITION_AND = "AND"
CONDITION_OR = "OR"
CONDITIONS = {CONDITION_AND, CONDITION_OR}

BEHAVIOR_NEXT = "next"
BEHAVIOR_NEXT_RUN = "nextRun"
BEHAVIOR_STOP = "stop"
POST_BEHAVIORS = {BEHAVIOR_NEXT, BEHAVIOR_NEXT_RUN, BEHAVIOR_STOP}

DEFAULT_POST_TRIGGER = BEHAVIOR_NEXT_RUN
DEFAULT_POST_FAIL = BEHAVIOR_NEXT

FILTER_INCLUDE = "include"
FILTER_EXCLUDE = "exclude"

ITEM_KINDS = {"submission", "comment"}


@dataclass(frozen=True)
class NamedCriteria:
    criteria: dict[str, Any]
    name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"criteria": dict(self.criteria)}
        if self.name:
            payload["name"] = self.name
        return payload


@dataclass(frozen=True)
class FilterSpec:
    include: tuple[NamedCriteria, ...] = ()
    exclude: tuple[NamedCriteria, ...] = ()
    exclude_condition: str = CONDITION_OR

    @property
    def is_empty(self) -> bool:
        return not self.include and not self.exclude

    def effective(self) -> tuple[str | None, tuple[NamedCriteria, ...]]:
        """Include wins when both sets are present."""
        if self.include:
            return FILTER_INCLUDE, self.include
        if self.exclude:
            return FILTER_EXCLUDE, self.exclude
        return None, ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "include": [item.as_dict() for item in self.include],
            "exclude": [item.as_dict() for item in self.exclude],
            "excludeCondition": self.exclude_condition,
        }

    def premise_dict(self) -> dict[str, Any] | None:
        """Name-free form used for premise identity; None when nothing is filtered."""
        mode, criteria = self.effective()
        if mode is None:
            return None
        payload: dict[str, Any] = {mode: [dict(item.criteria) for item in criteria]}
        if mode == FILTER_EXCLUDE:
            payload["excludeCondition"] = self.exclude_condition
        return payload


@dataclass(frozen=True)
class FilterDefaults:
    author_is: FilterSpec | None = None
    item_is: FilterSpec | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "authorIs": _optional_filter(self.author_is),
            "itemIs": _optional_filter(self.item_is),
        }


@dataclass(frozen=True)
class PostCheckBehavior:
    post_trigger: str = DEFAULT_POST_TRIGGER
    post_fail: str = DEFAULT_POST_FAIL

    def as_dict(self) -> dict[str, Any]:
        return {"postTrigger": self.post_trigger, "postFail": self.post_fail}


@dataclass(frozen=True)
class StructuredRule:
    kind: str
    config: dict[str, Any]
    name: str | None = None
    author_is: FilterSpec | None = None
    item_is: FilterSpec | None = None
    criteria_filter: FilterSpec | None = None

    @property
    def unique_name(self) -> str:
        label = self.kind[:1].upper() + self.kind[1:]
        return label if self.name is None else f"{label} - {self.name}"

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "rule",
            "kind": self.kind,
            "name": self.name,
            "config": dict(self.config),
            "authorIs": _optional_filter(self.author_is),
            "itemIs": _optional_filter(self.item_is),
        }
        if self.criteria_filter is not None:
            payload["criteriaFilter"] = self.criteria_filter.as_dict()
        return payload


@dataclass(frozen=True)
class StructuredRuleSet:
    rules: tuple["RuleNode", ...]
    condition: str = CONDITION_AND

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": "ruleSet",
            "condition": self.condition,
            "rules": [rule.as_dict() for rule in self.rules],
        }


RuleNode = Union[StructuredRule, StructuredRuleSet]


@dataclass(frozen=True)
class StructuredAction:
    kind: str
    config: dict[str, Any]
    name: str | None = None
    author_is: FilterSpec | None = None
    item_is: FilterSpec | None = None
    enable: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": "action",
            "kind": self.kind,
            "name": self.name,
            "config": dict(self.config),
            "authorIs": _optional_filter(self.author_is),
            "itemIs": _optional_filter(self.item_is),
            "enable": self.enable,
        }


@dataclass(frozen=True)
class StructuredCheck:
    name: str
    rules: tuple[RuleNode, ...] = ()
    actions: tuple[StructuredAction, ...] = ()
    kind: str | None = None
    condition: str = CONDITION_AND
    author_is: FilterSpec | None = None
    item_is: FilterSpec | None = None
    behavior: PostCheckBehavior = field(default_factory=PostCheckBehavior)
    enable: bool = True
    description: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "condition": self.condition,
            "enable": self.enable,
            "description": self.description,
            "authorIs": _optional_filter(self.author_is),
            "itemIs": _optional_filter(self.item_is),
            "rules": [rule.as_dict() for rule in self.rules],
            "actions": [action.as_dict() for action in self.actions],
            **self.behavior.as_dict(),
        }


@dataclass(frozen=True)
class StructuredRun:
    name: str
    checks: tuple[StructuredCheck, ...] = ()
    author_is: FilterSpec | None = None
    item_is: FilterSpec | None = None
    enable: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enable": self.enable,
            "authorIs": _optional_filter(self.author_is),
            "itemIs": _optional_filter(self.item_is),
            "checks": [check.as_dict() for check in self.checks],
        }


def graph_as_dict(runs: tuple[StructuredRun, ...]) -> list[dict[str, Any]]:
    return [run.as_dict() for run in runs]


def _optional_filter(value: FilterSpec | None) -> dict[str, Any] | None:
    return None if value is None else value.as_dict()
