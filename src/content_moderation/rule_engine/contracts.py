"""Rule engine result contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from content_moderation.policy_config.contracts import StructuredAction


STATE_DONE = "DONE"
STATE_SKIPPED = "SKIPPED"


class RuleProcessError(ValueError):
    """Raised when a rule kind fails to decide on an activity."""

    def __init__(
        self,
        detail: str,
        *,
        kind: str,
        rule_name: str,
        check_name: str | None = None,
        run_name: str | None = None,
    ) -> None:
        self.detail = detail
        self.kind = kind
        self.rule_name = rule_name
        self.check_name = check_name
        self.run_name = run_name
        super().__init__(self._message())

    def within(self, *, check_name: str | None = None, run_name: str | None = None) -> None:
        if check_name and not self.check_name:
            self.check_name = check_name
        if run_name and not self.run_name:
            self.run_name = run_name
        self.args = (self._message(),)

    def _message(self) -> str:
        scope = [f"rule '{self.rule_name}' ({self.kind})"]
        if self.check_name:
            scope.append(f"check '{self.check_name}'")
        if self.run_name:
            scope.append(f"run '{self.run_name}'")
        return f"{' in '.join(scope)} failed: {self.detail}"


@dataclass(frozen=True)
class RuleOutcome:
    """What a rule kind decided for one activity."""

    triggered: bool
    result: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CriteriaResult:
    criteria: dict[str, Any]
    passed: bool
    name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "criteria": dict(self.criteria), "passed": self.passed}


@dataclass(frozen=True)
class FilterResult:
    mode: str | None
    passed: bool
    results: tuple[CriteriaResult, ...] = ()
    exclude_condition: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "passed": self.passed,
            "excludeCondition": self.exclude_condition,
            "results": [result.as_dict() for result in self.results],
        }


@dataclass(frozen=True)
class RuleResult:
    premise: dict[str, Any]
    premise_hash: str
    kind: str
    name: str
    triggered: bool | None
    result: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    from_cache: bool = False
    state: str = STATE_DONE
    item_is: FilterResult | None = None
    author_is: FilterResult | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": "rule",
            "premise": dict(self.premise),
            "premise_hash": self.premise_hash,
            "kind": self.kind,
            "name": self.name,
            "triggered": self.triggered,
            "result": self.result,
            "data": dict(self.data),
            "from_cache": self.from_cache,
            "state": self.state,
            "itemIs": _optional(self.item_is),
            "authorIs": _optional(self.author_is),
        }


@dataclass(frozen=True)
class RuleSetResult:
    condition: str
    triggered: bool | None
    results: tuple["NodeResult", ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": "ruleSet",
            "condition": self.condition,
            "triggered": self.triggered,
            "results": [result.as_dict() for result in self.results],
        }


NodeResult = Union[RuleResult, RuleSetResult]


@dataclass(frozen=True)
class CheckResult:
    name: str
    triggered: bool | None
    post_behavior: str
    results: tuple[NodeResult, ...] = ()
    actions: tuple[StructuredAction, ...] = ()
    reason: str | None = None
    item_is: FilterResult | None = None
    author_is: FilterResult | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "triggered": self.triggered,
            "post_behavior": self.post_behavior,
            "reason": self.reason,
            "itemIs": _optional(self.item_is),
            "authorIs": _optional(self.author_is),
            "results": [result.as_dict() for result in self.results],
            "actions": [action.as_dict() for action in self.actions],
        }


@dataclass(frozen=True)
class RunResult:
    name: str
    triggered: bool | None
    checks: tuple[CheckResult, ...] = ()
    stopped: bool = False
    reason: str | None = None
    item_is: FilterResult | None = None
    author_is: FilterResult | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "triggered": self.triggered,
            "stopped": self.stopped,
            "reason": self.reason,
            "itemIs": _optional(self.item_is),
            "authorIs": _optional(self.author_is),
            "checks": [check.as_dict() for check in self.checks],
        }


@dataclass(frozen=True)
class PassResult:
    item_id: str
    evaluated_at: float
    runs: tuple[RunResult, ...] = ()
    actions: tuple[tuple[str, StructuredAction], ...] = ()

    @property
    def triggered(self) -> bool:
        return any(run.triggered for run in self.runs)

    def as_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "evaluated_at": self.evaluated_at,
            "triggered": self.triggered,
            "runs": [run.as_dict() for run in self.runs],
            "actions": [{"check": check_name, **action.as_dict()} for check_name, action in self.actions],
        }


def _optional(value: FilterResult | None) -> dict[str, Any] | None:
    return None if value is None else value.as_dict()
