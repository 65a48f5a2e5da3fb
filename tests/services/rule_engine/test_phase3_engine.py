from __future__ import annotations

import pytest

from content_moderation.activity import Activity, Author
from content_moderation.policy_config.builder import StructuredGraphBuilder
from content_moderation.policy_config.contracts import (
    FilterSpec,
    NamedCriteria,
    PostCheckBehavior,
    StructuredAction,
    StructuredCheck,
    StructuredRule,
    StructuredRuleSet,
    StructuredRun,
)
from content_moderation.resources.resources import ResourceCache
from content_moderation.rule_engine.contracts import STATE_SKIPPED, RuleOutcome, RuleProcessError
from content_moderation.rule_engine.engine import RuleEngine
from content_moderation.rule_engine.kinds import RuleContext, RuleKind
from content_moderation.rule_engine.observability import EngineMetrics

NOW = 1_700_000_000.0


class _ScriptedKind(RuleKind):
    kind = "regex"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def process(self, rule: StructuredRule, context: RuleContext) -> RuleOutcome:
        self.calls.append(rule.unique_name)
        if rule.config.get("explode"):
            raise RuntimeError("boom")
        triggered = bool(rule.config.get("outcome"))
        return RuleOutcome(triggered=triggered, result="scripted", data={"outcome": triggered})


def _item(**overrides) -> Activity:
    payload = {
        "id": "t3_item",
        "kind": "submission",
        "author": Author(name="Poster", created_utc=NOW - 10 * 86400),
        "community": "pics",
        "created_utc": NOW - 60,
        "title": "hello",
    }
    payload.update(overrides)
    return Activity(**payload)


def _engine(metrics: EngineMetrics | None = None) -> tuple[RuleEngine, _ScriptedKind]:
    scripted = _ScriptedKind()
    resources = ResourceCache("pics", clock=lambda: NOW)
    return RuleEngine(resources, kinds={"regex": scripted}, metrics=metrics), scripted


def _rule(outcome: bool, name: str | None = None, **overrides) -> StructuredRule:
    config = {"outcome": outcome}
    config.update(overrides.pop("config", {}))
    return StructuredRule(kind="regex", config=config, name=name, **overrides)


def _check(name: str, *rules, **overrides) -> StructuredCheck:
    return StructuredCheck(name=name, rules=tuple(rules), **overrides)


def _only(spec: dict) -> FilterSpec:
    return FilterSpec(include=(NamedCriteria(criteria=spec),))


def test_identical_premises_are_processed_once_per_pass() -> None:
    engine, scripted = _engine()
    check = _check("c1", _rule(True, "First"), _rule(True, "Second"))
    result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item())
    first, second = result.runs[0].checks[0].results
    assert scripted.calls == ["Regex - First"]
    assert first.from_cache is False
    assert second.from_cache is True
    assert second.name == "Regex - First"
    assert first.premise_hash == second.premise_hash


def test_pass_cache_is_shared_across_evaluations_of_the_same_pass() -> None:
    engine, scripted = _engine()
    item = _item()
    runs = [StructuredRun(name="Run1", checks=(_check("c1", _rule(True)),))]
    evaluation_pass = engine.new_pass(item)
    engine.evaluate(runs, item, evaluation_pass=evaluation_pass)
    engine.evaluate(runs, item, evaluation_pass=evaluation_pass)
    assert scripted.calls == ["Regex"]
    assert len(evaluation_pass.premises) == 1
    engine.evaluate(runs, item)
    assert scripted.calls == ["Regex", "Regex"]


def test_pass_for_another_item_is_rejected() -> None:
    engine, _ = _engine()
    evaluation_pass = engine.new_pass(_item(id="t3_other"))
    with pytest.raises(ValueError):
        engine.evaluate([], _item(), evaluation_pass=evaluation_pass)


def test_and_condition_stops_at_first_failure() -> None:
    engine, scripted = _engine()
    check = _check("c1", _rule(True, "a"), _rule(False, "b"), _rule(True, "c", config={"other": 1}))
    result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item())
    check_result = result.runs[0].checks[0]
    assert check_result.triggered is False
    assert scripted.calls == ["Regex - a", "Regex - b"]


def test_or_condition_stops_at_first_success() -> None:
    engine, scripted = _engine()
    check = _check("c1", _rule(False, "a"), _rule(True, "b"), _rule(False, "c", config={"other": 1}), condition="OR")
    result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item())
    assert result.runs[0].checks[0].triggered is True
    assert scripted.calls == ["Regex - a", "Regex - b"]


def test_nested_rule_sets_follow_their_own_condition() -> None:
    engine, _ = _engine()
    rule_set = StructuredRuleSet(rules=(_rule(False, "a"), _rule(True, "b")), condition="OR")
    check = _check("c1", rule_set, _rule(True, "c", config={"other": 1}))
    check_result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item()).runs[0].checks[0]
    assert check_result.triggered is True
    assert check_result.results[0].triggered is True
    assert len(check_result.results[0].results) == 2


def test_skipped_rules_count_neither_way() -> None:
    metrics = EngineMetrics()
    engine, scripted = _engine(metrics)
    skipped = _rule(False, "skipped", item_is=_only({"removed": True}))
    check = _check("c1", skipped, _rule(True, "live"))
    check_result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item()).runs[0].checks[0]
    assert check_result.triggered is True
    assert check_result.results[0].state == STATE_SKIPPED
    assert check_result.results[0].triggered is None
    assert scripted.calls == ["Regex - live"]
    assert metrics.counters["rules_skipped_total"] == 1


def test_check_with_only_skipped_rules_does_not_trigger() -> None:
    engine, scripted = _engine()
    check = _check("c1", _rule(True, "a", item_is=_only({"removed": True})))
    check_result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item()).runs[0].checks[0]
    assert check_result.triggered is False
    assert scripted.calls == []


def test_check_without_rules_triggers_and_dispatches_actions() -> None:
    engine, _ = _engine()
    check = _check("c1", actions=(StructuredAction(kind="report", config={"content": "look"}),))
    result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item())
    assert result.triggered
    assert [(name, action.kind) for name, action in result.actions] == [("c1", "report")]


def test_action_filters_and_enable_gate_dispatch() -> None:
    engine, _ = _engine()
    actions = (
        StructuredAction(kind="remove", config={}),
        StructuredAction(kind="lock", config={}, item_is=_only({"locked": True})),
        StructuredAction(kind="ban", config={}, enable=False),
        StructuredAction(kind="comment", config={}, author_is=_only({"name": "poster"})),
    )
    result = engine.evaluate([StructuredRun(name="Run1", checks=(_check("c1", actions=actions),))], _item())
    assert [action.kind for _, action in result.actions] == ["remove", "comment"]


def test_failed_check_does_not_dispatch_actions() -> None:
    engine, _ = _engine()
    check = _check("c1", _rule(False), actions=(StructuredAction(kind="remove", config={}),))
    result = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item())
    assert result.actions == ()
    assert result.runs[0].triggered is False


def test_check_kind_mismatch_and_disabled_checks_are_skipped() -> None:
    engine, scripted = _engine()
    checks = (
        _check("comments-only", _rule(True, "a"), kind="comment"),
        _check("disabled", _rule(True, "b"), enable=False),
        _check("live", _rule(True, "c")),
    )
    run_result = engine.evaluate([StructuredRun(name="Run1", checks=checks)], _item()).runs[0]
    assert [check.triggered for check in run_result.checks] == [None, None, True]
    assert run_result.checks[0].post_behavior == "next"
    assert scripted.calls == ["Regex - c"]


def test_post_trigger_next_run_skips_remaining_checks() -> None:
    engine, scripted = _engine()
    checks = (_check("first", _rule(True, "a")), _check("second", _rule(True, "b")))
    runs = [
        StructuredRun(name="Run1", checks=checks),
        StructuredRun(name="Run2", checks=(_check("third", _rule(True, "c", config={"other": 1})),)),
    ]
    result = engine.evaluate(runs, _item())
    assert [len(run.checks) for run in result.runs] == [1, 1]
    assert scripted.calls == ["Regex - a", "Regex - c"]


def test_post_behavior_next_continues_within_run() -> None:
    engine, _ = _engine()
    checks = (
        _check("first", _rule(True, "a"), behavior=PostCheckBehavior(post_trigger="next")),
        _check("second", _rule(False, "b")),
        _check("third", _rule(True, "c", config={"other": 1})),
    )
    run_result = engine.evaluate([StructuredRun(name="Run1", checks=checks)], _item()).runs[0]
    assert [check.name for check in run_result.checks] == ["first", "second", "third"]
    assert run_result.triggered is True


def test_post_behavior_stop_ends_the_pass() -> None:
    engine, scripted = _engine()
    runs = [
        StructuredRun(
            name="Run1",
            checks=(
                _check("first", _rule(False, "a"), behavior=PostCheckBehavior(post_fail="stop")),
                _check("second", _rule(True, "b")),
            ),
        ),
        StructuredRun(name="Run2", checks=(_check("third", _rule(True, "c")),)),
    ]
    result = engine.evaluate(runs, _item())
    assert len(result.runs) == 1
    assert result.runs[0].stopped
    assert scripted.calls == ["Regex - a"]
    assert not result.triggered


def test_run_filters_and_enable_gate_runs() -> None:
    metrics = EngineMetrics()
    engine, scripted = _engine(metrics)
    runs = [
        StructuredRun(name="Disabled", checks=(_check("c1", _rule(True, "a")),), enable=False),
        StructuredRun(name="Removed", checks=(_check("c2", _rule(True, "b")),), item_is=_only({"removed": True})),
        StructuredRun(name="Mods", checks=(_check("c3", _rule(True, "c")),), author_is=_only({"isMod": True})),
        StructuredRun(name="Live", checks=(_check("c4", _rule(True, "d")),)),
    ]
    result = engine.evaluate(runs, _item())
    assert [run.triggered for run in result.runs] == [None, None, None, True]
    assert result.runs[1].reason == "item did not pass run itemIs"
    assert result.runs[2].author_is is not None and not result.runs[2].author_is.passed
    assert scripted.calls == ["Regex - d"]
    assert metrics.counters["runs_evaluated_total"] == 1


def test_rule_failure_is_reported_with_scope_and_not_cached() -> None:
    metrics = EngineMetrics()
    engine, _ = _engine(metrics)
    item = _item()
    evaluation_pass = engine.new_pass(item)
    runs = [StructuredRun(name="Main", checks=(_check("c1", _rule(True, "Broken", config={"explode": True})),))]
    with pytest.raises(RuleProcessError) as excinfo:
        engine.evaluate(runs, item, evaluation_pass=evaluation_pass)
    error = excinfo.value
    assert (error.kind, error.rule_name, error.check_name, error.run_name) == ("regex", "Regex - Broken", "c1", "Main")
    assert "boom" in str(error)
    assert "check 'c1'" in str(error)
    assert len(evaluation_pass.premises) == 0
    assert metrics.counters["rule_errors_total"] == 1


def test_unsupported_rule_kind_fails() -> None:
    engine, _ = _engine()
    rule = StructuredRule(kind="history", config={"criteria": [{"total": "> 1"}]})
    with pytest.raises(RuleProcessError) as excinfo:
        engine.evaluate([StructuredRun(name="Run1", checks=(_check("c1", rule),))], _item())
    assert excinfo.value.kind == "history"
    assert "unsupported rule kind" in str(excinfo.value)


def test_metrics_snapshot_counts_pass_activity() -> None:
    metrics = EngineMetrics()
    engine, _ = _engine(metrics)
    check = _check("c1", _rule(True, "a"), _rule(True, "b"))
    engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item())
    snapshot = metrics.snapshot()["metrics"]
    assert snapshot["rules_processed_total"] == 1
    assert snapshot["rules_from_cache_total"] == 1
    assert snapshot["checks_triggered_total"] == 1
    assert snapshot["runs_evaluated_total"] == 1


def test_pass_result_serializes() -> None:
    engine, _ = _engine()
    check = _check("c1", _rule(True, "a"), actions=(StructuredAction(kind="remove", config={}),))
    payload = engine.evaluate([StructuredRun(name="Run1", checks=(check,))], _item()).as_dict()
    assert payload["item_id"] == "t3_item"
    assert payload["evaluated_at"] == NOW
    assert payload["triggered"] is True
    assert payload["actions"][0]["check"] == "c1"
    assert payload["runs"][0]["checks"][0]["results"][0]["state"] == "DONE"


def test_compiled_document_evaluates_end_to_end() -> None:
    document = {
        "runs": [
            {
                "name": "Spam",
                "checks": [
                    {
                        "name": "freebies",
                        "kind": "submission",
                        "rules": [
                            {"name": "Hit", "kind": "regex", "criteria": [{"regex": "x"}], "outcome": True},
                            "hit",
                        ],
                        "actions": [{"kind": "remove"}],
                        "postTrigger": "stop",
                    }
                ],
            },
            {"name": "Never", "checks": [{"name": "c2"}]},
        ]
    }
    runs = StructuredGraphBuilder().build(document)
    engine, scripted = _engine()
    result = engine.evaluate(runs, _item())
    assert scripted.calls == ["Regex - Hit"]
    assert [run.name for run in result.runs] == ["Spam"]
    assert result.runs[0].stopped
    assert [action.kind for _, action in result.actions] == ["remove"]
