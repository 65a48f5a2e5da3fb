from __future__ import annotations

import pytest

from content_moderation.policy_config.errors import (
    FETCH_FORBIDDEN,
    ConfigParseError,
    FetchError,
    FragmentPosition,
    SchemaValidationError,
)
from content_moderation.policy_config.fragments import (
    FORMAT_JSON,
    FORMAT_YAML,
    REFERENCE_NAMED_RESOURCE,
    REFERENCE_NONE,
    REFERENCE_URL,
    FetchedFragment,
    FragmentResolver,
    IncludeReference,
    as_include_reference,
    classify_reference,
    parse_fragment_text,
)


def _fetcher(pages: dict[str, str]):
    calls: list[IncludeReference] = []

    def _fetch(include: IncludeReference) -> FetchedFragment:
        calls.append(include)
        if include.path not in pages:
            raise FetchError(f"missing {include.path}", source=include.path)
        return FetchedFragment(text=pages[include.path], source=include.path, format_hint=include.format_hint())

    return _fetch, calls


def test_classify_reference_recognizes_prefixes() -> None:
    assert classify_reference("url:https://example.test/rules.json") == REFERENCE_URL
    assert classify_reference("wiki:botconfig/rules") == REFERENCE_NAMED_RESOURCE
    assert classify_reference("  wiki:page|community") == REFERENCE_NAMED_RESOURCE
    assert classify_reference("Repeat1") == REFERENCE_NONE
    assert classify_reference("url:") == REFERENCE_NONE


def test_plain_names_and_literals_are_not_includes() -> None:
    assert as_include_reference("Repeat1") is None
    assert as_include_reference({"kind": "regex", "criteria": []}) is None
    assert as_include_reference([{"kind": "regex"}]) is None


def test_include_descriptor_carries_ttl_and_wiki_target() -> None:
    include = as_include_reference({"path": "wiki:shared/rules.yaml|othercommunity", "ttl": 120})
    assert include is not None
    assert include.kind == REFERENCE_NAMED_RESOURCE
    assert include.ttl_seconds == 120
    assert include.wiki_target() == ("shared/rules.yaml", "othercommunity")
    assert include.format_hint() == FORMAT_YAML


def test_wiki_target_without_community() -> None:
    include = as_include_reference("wiki:botconfig")
    assert include is not None
    assert include.wiki_target() == ("botconfig", None)
    assert include.format_hint() == FORMAT_JSON


def test_include_descriptor_without_prefix_is_rejected() -> None:
    with pytest.raises(ConfigParseError) as excinfo:
        as_include_reference({"path": "https://example.test/rules.json"})
    assert "url:" in str(excinfo.value)
    assert "wiki:" in str(excinfo.value)


def test_include_descriptor_rejects_negative_ttl() -> None:
    with pytest.raises(ConfigParseError):
        as_include_reference({"path": "url:https://example.test/a.json", "ttl": -1})


def test_parse_falls_back_to_yaml_when_json_fails() -> None:
    data, fmt = parse_fragment_text("kind: regex\nname: Spam\n", format_hint=FORMAT_JSON)
    assert data == {"kind": "regex", "name": "Spam"}
    assert fmt == FORMAT_YAML


def test_parse_prefers_hinted_format() -> None:
    data, fmt = parse_fragment_text('{"kind": "regex"}', format_hint=FORMAT_YAML)
    assert data == {"kind": "regex"}
    assert fmt == FORMAT_YAML


def test_parse_failure_surfaces_both_errors() -> None:
    with pytest.raises(ConfigParseError) as excinfo:
        parse_fragment_text("just some prose", format_hint=FORMAT_JSON)
    message = str(excinfo.value)
    assert "JSON error" in message
    assert "YAML error" in message


def test_literal_values_pass_through_without_fetching() -> None:
    fetch, calls = _fetcher({})
    resolver = FragmentResolver(fetch)
    rule = {"kind": "regex", "criteria": [{"regex": "/spam/i"}]}
    assert resolver.resolve(rule) == [rule]
    assert resolver.resolve([rule, "Repeat1"]) == [rule, "Repeat1"]
    assert resolver.resolve("Repeat1") == ["Repeat1"]
    assert calls == []


def test_remote_fragment_array_expands_in_place() -> None:
    fetch, calls = _fetcher({"url:https://example.test/rules.json": '[{"kind": "regex"}, {"kind": "history"}]'})
    resolver = FragmentResolver(fetch)
    seen: list[tuple[object, bool]] = []

    def _validate(data, fetched):
        seen.append((data, fetched))
        return True

    result = resolver.resolve("url:https://example.test/rules.json", _validate)
    assert result == [{"kind": "regex"}, {"kind": "history"}]
    assert len(calls) == 1
    assert seen == [([{"kind": "regex"}, {"kind": "history"}], True)]


def test_validator_rejection_propagates() -> None:
    fetch, _ = _fetcher({"wiki:rules": '{"kind": "regex"}'})
    resolver = FragmentResolver(fetch)

    def _reject(data, fetched):
        raise SchemaValidationError("rejected")

    with pytest.raises(SchemaValidationError):
        resolver.resolve("wiki:rules", _reject)


def test_fetch_error_reason_is_validated() -> None:
    error = FetchError("denied", reason=FETCH_FORBIDDEN, source="wiki:rules")
    assert error.forbidden
    assert not error.not_found
    with pytest.raises(ValueError):
        FetchError("bad", reason="TEAPOT")


def test_fragment_position_describes_innermost_first() -> None:
    position = FragmentPosition().child("Run", 1).child("Check", 2).child("Rule", 3)
    assert position.describe() == "Rule #3 in Check #2 in Run #1"
    error = ConfigParseError("broken").at(position)
    assert isinstance(error, ConfigParseError)
    assert str(error) == "Rule #3 in Check #2 in Run #1: broken"
    assert not FragmentPosition()
