"""Rule engine: filter gates, premise cache and run/check flow control."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from typing import Any, Iterable, Mapping, TYPE_CHECKING

from content_moderation.activity import Activity
from content_moderation.policy_config.contracts import (
    BEHAVIOR_NEXT,
    BEHAVIOR_NEXT_RUN,
    BEHAVIOR_STOP,
    CONDITION_OR,
    FilterSpec,
    RuleNode,
    StructuredAction,
    StructuredCheck,
    StructuredRule,
    StructuredRuleSet,
    StructuredRun,
)

from .contracts import (
    STATE_SKIPPED,
    CheckResult,
    FilterResult,
    NodeResult,
    PassResult,
    RuleProcessError,
    RuleResult,
    RuleSetResult,
    RunResult,
)
from .criteria import evaluate_filter, item_filter_test
from .kinds import RULE_KINDS, RuleContext, RuleKind
from .observability import EngineMetrics
from .premise import build_premise

if TYPE_CHECKING:  # pragma: no cover - typing only
    from content_moderation.resources.resources import ResourceCache


logger = logging.getLogger("content_moderation.rule_engine")


class PremiseCache:
    """Rule results keyed by premise hash, scoped to one evaluation pass."""

    def __init__(self) -> None:
        self._results: dict[str, RuleResult] = {}

    def get(self, premise_hash: str) -> RuleResult | None:
        return self._results.get(premise_hash)

    def store(self, result: RuleResult) -> None:
        self._results[result.premise_hash] = result

    def __contains__(self, premise_hash: object) -> bool:
        return premise_hash in self._results

    def __len__(self) -> int:
        return len(self._results)


@dataclass
class EvaluationPass:
    item: Activity
    evaluated_at: float
    premises: PremiseCache = field(default_factory=PremiseCache)


class RuleEngine:
    def __init__(
        self,
        resources: ResourceCache,
        *,
        kinds: Mapping[str, RuleKind] | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self.resources = resources
        self.kinds = dict(RULE_KINDS if kinds is None else kinds)
        self.metrics = metrics or EngineMetrics()

    def new_pass(self, item: Activity) -> EvaluationPass:
        return EvaluationPass(item=item, evaluated_at=self.resources.now())

    def evaluate(
        self,
        runs: Iterable[StructuredRun],
        item: Activity,
        *,
        evaluation_pass: EvaluationPass | None = None,
    ) -> PassResult:
        current = evaluation_pass or self.new_pass(item)
        if current.item.id != item.id:
            raise ValueError("evaluation pass belongs to a different item")
        run_results: list[RunResult] = []
        actions: list[tuple[str, StructuredAction]] = []
        for run in runs:
            try:
                run_result = self.evaluate_run(run, current)
            except RuleProcessError as exc:
                exc.within(run_name=run.name)
                raise
            run_results.append(run_result)
            for check_result in run_result.checks:
                actions.extend((check_result.name, action) for action in check_result.actions)
            if run_result.stopped:
                break
        result = PassResult(
            item_id=item.id,
            evaluated_at=current.evaluated_at,
            runs=tuple(run_results),
            actions=tuple(actions),
        )
        logger.info(
            "evaluated item=%s runs=%s triggered=%s actions=%s",
            item.id,
            len(run_results),
            result.triggered,
            len(actions),
        )
        return result

    def evaluate_run(self, run: StructuredRun, evaluation_pass: EvaluationPass) -> RunResult:
        if not run.enable:
            logger.debug("run skipped run=%s reason=disabled", run.name)
            return RunResult(name=run.name, triggered=None, reason="run is disabled")
        item_is = self._item_gate(run.item_is, evaluation_pass)
        if item_is is not None and not item_is.passed:
            logger.debug("run skipped run=%s reason=itemIs", run.name)
            return RunResult(name=run.name, triggered=None, reason="item did not pass run itemIs", item_is=item_is)
        author_is = self._author_gate(run.author_is, evaluation_pass)
        if author_is is not None and not author_is.passed:
            logger.debug("run skipped run=%s reason=authorIs", run.name)
            return RunResult(
                name=run.name,
                triggered=None,
                reason="author did not pass run authorIs",
                item_is=item_is,
                author_is=author_is,
            )

        self.metrics.record_run_evaluated()
        check_results: list[CheckResult] = []
        stopped = False
        for check in run.checks:
            try:
                check_result = self.evaluate_check(check, evaluation_pass)
            except RuleProcessError as exc:
                exc.within(check_name=check.name)
                raise
            check_results.append(check_result)
            if check_result.post_behavior == BEHAVIOR_NEXT_RUN:
                break
            if check_result.post_behavior == BEHAVIOR_STOP:
                stopped = True
                break
        return RunResult(
            name=run.name,
            triggered=any(result.triggered for result in check_results),
            checks=tuple(check_results),
            stopped=stopped,
            item_is=item_is,
            author_is=author_is,
        )

    def evaluate_check(self, check: StructuredCheck, evaluation_pass: EvaluationPass) -> CheckResult:
        item = evaluation_pass.item
        if not check.enable:
            return _skipped_check(check, "check is disabled")
        if check.kind is not None and check.kind != item.kind:
            return _skipped_check(check, f"check applies to {check.kind} items, not {item.kind}")
        item_is = self._item_gate(check.item_is, evaluation_pass)
        if item_is is not None and not item_is.passed:
            return _skipped_check(check, "item did not pass check itemIs", item_is=item_is)
        author_is = self._author_gate(check.author_is, evaluation_pass)
        if author_is is not None and not author_is.passed:
            return _skipped_check(check, "author did not pass check authorIs", item_is=item_is, author_is=author_is)

        if check.rules:
            outcome, results = self._evaluate_nodes(check.rules, check.condition, evaluation_pass)
            triggered = bool(outcome)
        else:
            triggered, results = True, ()
        if triggered:
            self.metrics.record_check_triggered()
        logger.debug("check=%s item=%s triggered=%s", check.name, item.id, triggered)
        return CheckResult(
            name=check.name,
            triggered=triggered,
            post_behavior=check.behavior.post_trigger if triggered else check.behavior.post_fail,
            results=results,
            actions=self._dispatchable(check.actions, evaluation_pass) if triggered else (),
            item_is=item_is,
            author_is=author_is,
        )

    def evaluate_rule(self, rule: StructuredRule, evaluation_pass: EvaluationPass) -> RuleResult:
        premise = build_premise(rule)
        premise_hash = premise.premise_hash
        item_is = self._item_gate(rule.item_is, evaluation_pass)
        if item_is is not None and not item_is.passed:
            return self._skipped_rule(rule, premise.as_dict(), premise_hash, "item did not pass itemIs", item_is=item_is)
        author_is = self._author_gate(rule.author_is, evaluation_pass)
        if author_is is not None and not author_is.passed:
            return self._skipped_rule(
                rule,
                premise.as_dict(),
                premise_hash,
                "author did not pass authorIs",
                item_is=item_is,
                author_is=author_is,
            )

        cached = evaluation_pass.premises.get(premise_hash)
        if cached is not None:
            self.metrics.record_cache_hit()
            logger.debug("rule=%s premise=%s served from pass cache", rule.unique_name, premise_hash[:12])
            return replace(cached, from_cache=True)

        rule_kind = self.kinds.get(rule.kind)
        if rule_kind is None:
            self.metrics.record_error()
            logger.error("rule=%s has unsupported kind=%s", rule.unique_name, rule.kind)
            raise RuleProcessError("unsupported rule kind", kind=rule.kind, rule_name=rule.unique_name)
        context = RuleContext(item=evaluation_pass.item, resources=self.resources, now=evaluation_pass.evaluated_at)
        try:
            outcome = rule_kind.process(rule, context)
        except RuleProcessError:
            self.metrics.record_error()
            raise
        except Exception as exc:
            self.metrics.record_error()
            logger.error("rule=%s kind=%s failed item=%s: %s", rule.unique_name, rule.kind, evaluation_pass.item.id, exc)
            raise RuleProcessError(str(exc), kind=rule.kind, rule_name=rule.unique_name) from exc

        self.metrics.record_processed()
        result = RuleResult(
            premise=premise.as_dict(),
            premise_hash=premise_hash,
            kind=rule.kind,
            name=rule.unique_name,
            triggered=outcome.triggered,
            result=outcome.result,
            data=dict(outcome.data),
            from_cache=False,
            item_is=item_is,
            author_is=author_is,
        )
        evaluation_pass.premises.store(result)
        return result

    def evaluate_rule_set(self, rule_set: StructuredRuleSet, evaluation_pass: EvaluationPass) -> RuleSetResult:
        triggered, results = self._evaluate_nodes(rule_set.rules, rule_set.condition, evaluation_pass)
        return RuleSetResult(condition=rule_set.condition, triggered=triggered, results=results)

    def _evaluate_nodes(
        self,
        nodes: Iterable[RuleNode],
        condition: str,
        evaluation_pass: EvaluationPass,
    ) -> tuple[bool | None, tuple[NodeResult, ...]]:
        """AND stops at the first False, OR at the first True; skipped nodes count neither way.

        Returns None when every node was skipped.
        """
        results: list[NodeResult] = []
        decided = False
        for node in nodes:
            if isinstance(node, StructuredRuleSet):
                result: NodeResult = self.evaluate_rule_set(node, evaluation_pass)
            else:
                result = self.evaluate_rule(node, evaluation_pass)
            results.append(result)
            if result.triggered is None:
                continue
            decided = True
            if condition == CONDITION_OR and result.triggered:
                return True, tuple(results)
            if condition != CONDITION_OR and not result.triggered:
                return False, tuple(results)
        if not decided:
            return None, tuple(results)
        return condition != CONDITION_OR, tuple(results)

    def _dispatchable(
        self,
        actions: Iterable[StructuredAction],
        evaluation_pass: EvaluationPass,
    ) -> tuple[StructuredAction, ...]:
        """Enabled actions whose own filters pass for this item."""
        selected: list[StructuredAction] = []
        for action in actions:
            if not action.enable:
                continue
            item_is = self._item_gate(action.item_is, evaluation_pass)
            if item_is is not None and not item_is.passed:
                continue
            author_is = self._author_gate(action.author_is, evaluation_pass)
            if author_is is not None and not author_is.passed:
                continue
            selected.append(action)
        return tuple(selected)

    def _item_gate(self, spec: FilterSpec | None, evaluation_pass: EvaluationPass) -> FilterResult | None:
        return evaluate_filter(spec, item_filter_test(evaluation_pass.item, now=evaluation_pass.evaluated_at))

    def _author_gate(self, spec: FilterSpec | None, evaluation_pass: EvaluationPass) -> FilterResult | None:
        item = evaluation_pass.item
        return evaluate_filter(
            spec,
            lambda entry, include: self.resources.test_author_criteria(item, entry.criteria, include),
        )

    def _skipped_rule(
        self,
        rule: StructuredRule,
        premise: dict[str, Any],
        premise_hash: str,
        reason: str,
        *,
        item_is: FilterResult | None = None,
        author_is: FilterResult | None = None,
    ) -> RuleResult:
        self.metrics.record_skipped()
        logger.debug("rule=%s skipped: %s", rule.unique_name, reason)
        return RuleResult(
            premise=premise,
            premise_hash=premise_hash,
            kind=rule.kind,
            name=rule.unique_name,
            triggered=None,
            result=reason,
            state=STATE_SKIPPED,
            item_is=item_is,
            author_is=author_is,
        )


def _skipped_check(
    check: StructuredCheck,
    reason: str,
    *,
    item_is: FilterResult | None = None,
    author_is: FilterResult | None = None,
) -> CheckResult:
    logger.debug("check=%s skipped: %s", check.name, reason)
    return CheckResult(
        name=check.name,
        triggered=None,
        post_behavior=BEHAVIOR_NEXT,
        reason=reason,
        item_is=item_is,
        author_is=author_is,
    )
