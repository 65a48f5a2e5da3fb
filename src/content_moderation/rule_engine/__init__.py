"""Per-item rule evaluation over a structured policy graph."""

from .contracts import (
    STATE_DONE,
    STATE_SKIPPED,
    CheckResult,
    FilterResult,
    PassResult,
    RuleOutcome,
    RuleProcessError,
    RuleResult,
    RuleSetResult,
    RunResult,
)
from .criteria import CriteriaError, author_criteria_matches, evaluate_filter, item_criteria_matches
from .engine import EvaluationPass, PremiseCache, RuleEngine
from .kinds import RULE_KINDS, RuleContext, RuleKind
from .observability import EngineMetrics
from .premise import Premise, build_premise

__all__ = [
    "RULE_KINDS",
    "STATE_DONE",
    "STATE_SKIPPED",
    "CheckResult",
    "CriteriaError",
    "EngineMetrics",
    "EvaluationPass",
    "FilterResult",
    "PassResult",
    "Premise",
    "PremiseCache",
    "RuleContext",
    "RuleEngine",
    "RuleKind",
    "RuleOutcome",
    "RuleProcessError",
    "RuleResult",
    "RuleSetResult",
    "RunResult",
    "author_criteria_matches",
    "build_premise",
    "evaluate_filter",
    "item_criteria_matches",
]
