from __future__ import annotations

import pytest

from content_moderation.policy_config.builder import StructuredGraphBuilder
from content_moderation.policy_config.errors import (
    ConfigParseError,
    NamingConflictError,
    UnresolvedReferenceError,
)
from content_moderation.policy_config.filters import AUTHOR_IS, ITEM_IS, FilterComposer
from content_moderation.policy_config.registry import NamedEntityRegistry


def _rule(name: str, regex: str = "/spam/i") -> dict:
    return {"name": name, "kind": "regex", "criteria": [{"regex": regex}]}


def test_registering_identical_entities_twice_succeeds() -> None:
    registry = NamedEntityRegistry("Rule")
    registry.register(_rule("A"))
    registry.register({"criteria": [{"regex": "/spam/i"}], "kind": "regex", "name": "a"})
    assert len(registry) == 1
    assert "a" in registry
    assert "A" in registry


def test_registering_different_entities_under_one_name_conflicts() -> None:
    registry = NamedEntityRegistry("Rule")
    registry.register(_rule("A"))
    with pytest.raises(NamingConflictError) as excinfo:
        registry.register(_rule("a", regex="/eggs/"))
    assert excinfo.value.name == "a"
    assert "Conflicting name: a" in str(excinfo.value)


def test_unnamed_entities_are_not_registered() -> None:
    registry = NamedEntityRegistry("Rule")
    registry.register({"kind": "regex"})
    registry.register({"kind": "regex", "name": "  "})
    assert len(registry) == 0


def test_extract_recurses_into_rule_sets() -> None:
    registry = NamedEntityRegistry("Rule").extract(
        [{"condition": "OR", "rules": [_rule("Inner"), {"rules": [_rule("Deep")]}]}, "Other"]
    )
    assert set(registry) == {"inner", "deep"}


def test_resolve_is_case_insensitive_and_returns_copies() -> None:
    registry = NamedEntityRegistry("Rule")
    registry.register(_rule("Spam"))
    found = registry.resolve("SPAM")
    found["kind"] = "history"
    assert registry.resolve("spam")["kind"] == "regex"
    inline = {"kind": "history"}
    assert registry.resolve(inline) == inline


def test_resolve_rejects_unsupported_reference_types() -> None:
    registry = NamedEntityRegistry("Rule")
    with pytest.raises(ConfigParseError):
        registry.resolve(42)
    with pytest.raises(ConfigParseError):
        registry.resolve("   ")


def test_unknown_rule_name_is_unresolved() -> None:
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        StructuredGraphBuilder().build({"checks": [{"name": "c1", "rules": ["Repeat1"]}]})
    assert excinfo.value.reference == "Repeat1"
    assert '"Repeat1"' in str(excinfo.value)
    assert str(excinfo.value).startswith("Rule #1 in Check #1 in Run #1:")


def test_named_rule_is_usable_across_runs() -> None:
    document = {
        "runs": [
            {"name": "First", "checks": [{"name": "c1", "rules": [_rule("Spam")]}]},
            {"name": "Second", "checks": [{"name": "c2", "rules": ["spam"]}]},
        ]
    }
    runs = StructuredGraphBuilder().build(document)
    first = runs[0].checks[0].rules[0]
    second = runs[1].checks[0].rules[0]
    assert first == second
    assert second.unique_name == "Regex - Spam"
    assert second.config == {"criteria": [{"regex": "/spam/i"}]}


def test_conflicting_rule_names_across_runs_fail_the_build() -> None:
    document = {
        "runs": [
            {"checks": [{"name": "c1", "rules": [_rule("Spam")]}]},
            {"checks": [{"name": "c2", "rules": [_rule("spam", regex="/eggs/")]}]},
        ]
    }
    with pytest.raises(NamingConflictError) as excinfo:
        StructuredGraphBuilder().build(document)
    assert "Check #1 in Run #2" in str(excinfo.value)


def test_named_actions_are_resolved() -> None:
    document = {
        "checks": [
            {"name": "c1", "actions": [{"name": "Report", "kind": "report", "content": "spam"}]},
            {"name": "c2", "actions": ["report"]},
        ]
    }
    runs = StructuredGraphBuilder().build(document)
    action = runs[0].checks[1].actions[0]
    assert action.kind == "report"
    assert action.name == "Report"
    assert action.config == {"content": "spam"}


def test_named_filter_criteria_are_substituted() -> None:
    document = {
        "checks": [
            {"name": "c1", "authorIs": [{"name": "Mods", "criteria": {"isMod": True}}]},
            {"name": "c2", "authorIs": {"exclude": ["mods"]}},
        ]
    }
    runs = StructuredGraphBuilder().build(document)
    excluded = runs[0].checks[1].author_is
    assert excluded is not None
    assert excluded.include == ()
    assert excluded.exclude[0].criteria == {"isMod": True}
    assert excluded.exclude[0].name == "Mods"


def test_named_criteria_conflicts_are_detected() -> None:
    document = {
        "checks": [
            {"name": "c1", "itemIs": [{"name": "Removed", "criteria": {"removed": True}}]},
            {"name": "c2", "itemIs": [{"name": "removed", "criteria": {"removed": False}}]},
        ]
    }
    with pytest.raises(NamingConflictError):
        StructuredGraphBuilder().build(document)


def test_unknown_criteria_reference_is_unresolved() -> None:
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        StructuredGraphBuilder().build({"checks": [{"name": "c1", "itemIs": ["Nope"]}]})
    assert excinfo.value.reference == "Nope"
    assert "Check #1 in Run #1" in str(excinfo.value)


def test_composer_registers_author_rule_criteria() -> None:
    hydrated = {
        "runs": [
            {
                "checks": [
                    {
                        "name": "c1",
                        "rules": [
                            {
                                "condition": "AND",
                                "rules": [
                                    {"kind": "author", "include": [{"name": "New", "criteria": {"age": "< 7 days"}}]}
                                ],
                            }
                        ],
                    }
                ]
            }
        ]
    }
    composer = FilterComposer().register_document(hydrated)
    spec = composer.compose(["new"], AUTHOR_IS)
    assert spec is not None
    assert spec.include[0].criteria == {"age": "< 7 days"}
    assert composer.compose(None, ITEM_IS) is None
