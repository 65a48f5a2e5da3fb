from __future__ import annotations

from pathlib import Path

import pytest

from content_moderation.settings import (
    EngineSettings,
    EngineSettingsError,
    engine_settings_from_payload,
    load_engine_settings,
)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "engine.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_empty_profile_uses_defaults(tmp_path: Path) -> None:
    settings = load_engine_settings(_write(tmp_path, ""))
    assert settings.profile_id == "local"
    assert settings.cache.enabled
    assert settings.cache.author_ttl_seconds == 60
    assert settings.cache.content_ttl_seconds == 300
    assert settings.fetch.timeout_seconds == 10.0
    assert settings.fetch.user_agent == "content-moderation/0.1"
    assert settings.filter_defaults is None
    assert len(settings.content_digest) == 64


def test_profile_values_and_env_interpolation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MOD_AUTHOR_TTL", "15")
    monkeypatch.delenv("MOD_CACHE_ENABLED", raising=False)
    path = _write(
        tmp_path,
        "\n".join(
            [
                "profile_id: prod",
                "cache:",
                "  enabled: ${MOD_CACHE_ENABLED:-off}",
                "  author_ttl_seconds: ${MOD_AUTHOR_TTL}",
                "  scope_author_to_community: yes",
                "fetch:",
                "  timeout_seconds: 2.5",
                "  user_agent: moderation-bot/2",
                "filterCriteriaDefaults:",
                "  itemIs:",
                "    - criteria:",
                "        removed: false",
                "postCheckBehaviorDefaults:",
                "  postFail: stop",
                "",
            ]
        ),
    )
    settings = load_engine_settings(path)
    assert settings.profile_id == "prod"
    assert settings.cache.enabled is False
    assert settings.cache.author_ttl_seconds == 15
    assert settings.cache.scope_author_to_community is True
    assert settings.fetch.timeout_seconds == 2.5
    assert settings.fetch.user_agent == "moderation-bot/2"
    assert settings.filter_defaults == {"itemIs": [{"criteria": {"removed": False}}]}
    assert settings.post_check_defaults == {"postFail": "stop"}


def test_digest_is_stable_and_content_sensitive() -> None:
    first = engine_settings_from_payload({"cache": {"author_ttl_seconds": 30}})
    second = engine_settings_from_payload({"cache": {"author_ttl_seconds": 30}})
    third = engine_settings_from_payload({"cache": {"author_ttl_seconds": 31}})
    assert first.content_digest == second.content_digest
    assert first.content_digest != third.content_digest
    assert engine_settings_from_payload({"content_digest": "pinned"}).content_digest == "pinned"


def test_default_instance_has_no_digest() -> None:
    assert EngineSettings().content_digest == ""


@pytest.mark.parametrize(
    "payload",
    [
        {"cache": []},
        {"cache": {"author_ttl_seconds": -1}},
        {"cache": {"criteria_ttl_seconds": "soon"}},
        {"cache": {"content_ttl_seconds": True}},
        {"cache": {"enabled": "maybe"}},
        {"fetch": {"timeout_seconds": 0}},
        {"fetch": {"timeout_seconds": "fast"}},
        {"filterCriteriaDefaults": {"runIs": []}},
        {"filterCriteriaDefaults": []},
        {"postCheckBehaviorDefaults": {"postSkip": "next"}},
    ],
)
def test_invalid_profiles_are_rejected(payload: dict) -> None:
    with pytest.raises(EngineSettingsError):
        engine_settings_from_payload(payload)


def test_profile_must_be_a_mapping(tmp_path: Path) -> None:
    with pytest.raises(EngineSettingsError):
        load_engine_settings(_write(tmp_path, "- one\n- two\n"))
