"""Policy document hydration: expands every config fragment depth-first (Phase 2)."""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping

from .errors import ConfigParseError, DocumentShapeError, FragmentPosition, PolicyConfigError
from .fragments import FragmentResolver, ValidateFn
from .schemas import (
    ACTION_SCHEMA,
    CHECK_SCHEMA,
    DOCUMENT_SCHEMA,
    RULE_SCHEMA,
    RUN_SCHEMA,
    SchemaRegistry,
)


logger = logging.getLogger("content_moderation.policy_config.hydrator")

SYNTHETIC_RUN_NAME = "Run1"


def is_rule_set(value: Any) -> bool:
    return isinstance(value, Mapping) and "kind" not in value and isinstance(value.get("rules"), list)


class Hydrator:
    """Resolves Runs → Checks → Rules/RuleSets/Actions into a fragment-free document.

    Every element is resolved through the fragment resolver first (fetched
    fragments are schema-checked by the resolver callback), its children are
    hydrated next, and the element is then validated against its own level's
    schema so failures are attributed to the deepest position.
    """

    def __init__(self, resolver: FragmentResolver, schemas: SchemaRegistry | None = None) -> None:
        self._resolver = resolver
        self._schemas = schemas or SchemaRegistry()

    def hydrate(self, document: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(document, Mapping):
            raise ConfigParseError("policy document must be a mapping")
        config = copy.deepcopy(dict(document))
        runs = _as_list(config.pop("runs", None), "runs")
        checks = _as_list(config.pop("checks", None), "checks")
        if runs and checks:
            raise DocumentShapeError("Policy document cannot contain both 'checks' and 'runs' at top-level.")
        if checks:
            runs = [{"name": SYNTHETIC_RUN_NAME, "checks": checks}]

        hydrated_runs: list[dict[str, Any]] = []
        run_index = 1
        for raw_run in runs:
            resolved = self._resolve(raw_run, FragmentPosition().child("Run", run_index), RUN_SCHEMA)
            for run in resolved:
                position = FragmentPosition().child("Run", run_index)
                if not isinstance(run, Mapping):
                    raise ConfigParseError(
                        f"Run config fragment was not in a recognized format. Given: {run!r}",
                        position=position,
                    )
                hydrated_run = self._hydrate_run(run, position)
                self._validate_at(RUN_SCHEMA, hydrated_run, position)
                hydrated_runs.append(hydrated_run)
                run_index += 1

        hydrated = {**config, "runs": hydrated_runs}
        self._schemas.validate(DOCUMENT_SCHEMA, hydrated)
        logger.debug("hydrated policy document runs=%s", len(hydrated_runs))
        return hydrated

    def _hydrate_run(self, run: Mapping[str, Any], position: FragmentPosition) -> dict[str, Any]:
        hydrated_run = dict(run)
        checks = _as_list(run.get("checks"), "checks", position=position)
        hydrated_checks: list[dict[str, Any]] = []
        check_index = 1
        for raw_check in checks:
            resolved = self._resolve(raw_check, position.child("Check", check_index), CHECK_SCHEMA)
            for check in resolved:
                check_position = position.child("Check", check_index)
                if not isinstance(check, Mapping):
                    raise ConfigParseError(
                        f"Check was not in a recognized include format. Given: {check!r}",
                        position=check_position,
                    )
                hydrated_check = self._hydrate_check(check, check_position)
                self._validate_at(CHECK_SCHEMA, hydrated_check, check_position)
                hydrated_checks.append(hydrated_check)
                check_index += 1
        hydrated_run["checks"] = hydrated_checks
        return hydrated_run

    def _hydrate_check(self, check: Mapping[str, Any], position: FragmentPosition) -> dict[str, Any]:
        hydrated_check = dict(check)
        if check.get("rules") is not None:
            hydrated_check["rules"] = self._hydrate_rules(
                _as_list(check.get("rules"), "rules", position=position), position
            )
        if check.get("actions") is not None:
            hydrated_actions: list[Any] = []
            action_index = 1
            for raw_action in _as_list(check.get("actions"), "actions", position=position):
                resolved = self._resolve(raw_action, position.child("Action", action_index), ACTION_SCHEMA)
                for action in resolved:
                    if isinstance(action, Mapping):
                        self._validate_at(ACTION_SCHEMA, action, position.child("Action", action_index))
                    hydrated_actions.append(action)
                    action_index += 1
            hydrated_check["actions"] = hydrated_actions
        return hydrated_check

    def _hydrate_rules(self, rules: list[Any], position: FragmentPosition) -> list[Any]:
        hydrated_rules: list[Any] = []
        rule_index = 1
        for raw_rule in rules:
            resolved = self._resolve(raw_rule, position.child("Rule", rule_index), RULE_SCHEMA)
            for rule in resolved:
                rule_position = position.child("Rule", rule_index)
                if is_rule_set(rule):
                    rule_set = dict(rule)
                    rule_set["rules"] = self._hydrate_rules(list(rule["rules"]), rule_position)
                    self._validate_at(RULE_SCHEMA, rule_set, rule_position)
                    hydrated_rules.append(rule_set)
                else:
                    # strings are named rule references, resolved when the graph is built
                    if isinstance(rule, Mapping):
                        self._validate_at(RULE_SCHEMA, rule, rule_position)
                    hydrated_rules.append(rule)
                rule_index += 1
        return hydrated_rules

    def _resolve(self, value: Any, position: FragmentPosition, schema_name: str) -> list[Any]:
        try:
            return self._resolver.resolve(value, self._fetched_validator(schema_name))
        except PolicyConfigError as exc:
            if exc.position:
                raise
            raise exc.at(position) from exc

    def _validate_at(self, schema_name: str, payload: Any, position: FragmentPosition) -> None:
        try:
            self._schemas.validate(schema_name, payload)
        except PolicyConfigError as exc:
            raise exc.at(position) from exc

    def _fetched_validator(self, schema_name: str) -> ValidateFn:
        def _validate(data: Any, fetched: bool) -> bool:
            if not fetched:
                return True
            items = data if isinstance(data, list) else [data]
            for item in items:
                if isinstance(item, str) and schema_name in (RULE_SCHEMA, ACTION_SCHEMA):
                    continue
                self._schemas.validate(schema_name, item)
            return True

        return _validate


def _as_list(value: Any, field_name: str, *, position: FragmentPosition | None = None) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigParseError(f"{field_name} must be a list", position=position)
    return list(value)
