"""Engine settings profile loader."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import re
from typing import Any, Mapping

import yaml

from .canonical import canonical_hash


_ENV_PATTERN = re.compile(r"^\$\{([^}:]+)(?::-([^}]*))?\}$")

POST_BEHAVIOR_KEYS = ("postTrigger", "postFail")
FILTER_DEFAULT_KEYS = ("authorIs", "itemIs")


class EngineSettingsError(ValueError):
    """Raised when the engine settings profile is invalid."""


@dataclass(frozen=True)
class CacheSettings:
    enabled: bool = True
    author_ttl_seconds: int = 60
    content_ttl_seconds: int = 300
    criteria_ttl_seconds: int = 60
    user_notes_ttl_seconds: int = 60
    scope_author_to_community: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "author_ttl_seconds": self.author_ttl_seconds,
            "content_ttl_seconds": self.content_ttl_seconds,
            "criteria_ttl_seconds": self.criteria_ttl_seconds,
            "user_notes_ttl_seconds": self.user_notes_ttl_seconds,
            "scope_author_to_community": self.scope_author_to_community,
        }


@dataclass(frozen=True)
class FetchSettings:
    timeout_seconds: float = 10.0
    user_agent: str = "content-moderation/0.1"

    def as_dict(self) -> dict[str, Any]:
        return {"timeout_seconds": self.timeout_seconds, "user_agent": self.user_agent}


@dataclass(frozen=True)
class EngineSettings:
    profile_id: str = "local"
    cache: CacheSettings = field(default_factory=CacheSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    filter_defaults: dict[str, Any] | None = None
    post_check_defaults: dict[str, Any] | None = None
    content_digest: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "profile_id": self.profile_id,
            "cache": self.cache.as_dict(),
            "fetch": self.fetch.as_dict(),
            "filterCriteriaDefaults": self.filter_defaults,
            "postCheckBehaviorDefaults": self.post_check_defaults,
        }


def load_engine_settings(path: Path) -> EngineSettings:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise EngineSettingsError("engine settings file must be a mapping")
    return engine_settings_from_payload(data)


def engine_settings_from_payload(data: Mapping[str, Any]) -> EngineSettings:
    profile_id = str(_resolve_env_token(data.get("profile_id")) or "local").strip() or "local"

    cache_payload = _section(data, "cache")
    cache = CacheSettings(
        enabled=_as_bool(cache_payload.get("enabled"), "cache.enabled", True),
        author_ttl_seconds=_ttl(cache_payload.get("author_ttl_seconds"), "cache.author_ttl_seconds", 60),
        content_ttl_seconds=_ttl(cache_payload.get("content_ttl_seconds"), "cache.content_ttl_seconds", 300),
        criteria_ttl_seconds=_ttl(cache_payload.get("criteria_ttl_seconds"), "cache.criteria_ttl_seconds", 60),
        user_notes_ttl_seconds=_ttl(
            cache_payload.get("user_notes_ttl_seconds"), "cache.user_notes_ttl_seconds", 60
        ),
        scope_author_to_community=_as_bool(
            cache_payload.get("scope_author_to_community"), "cache.scope_author_to_community", False
        ),
    )

    fetch_payload = _section(data, "fetch")
    timeout = _resolve_env_token(fetch_payload.get("timeout_seconds"))
    try:
        timeout_seconds = 10.0 if timeout in (None, "") else float(timeout)
    except (TypeError, ValueError) as exc:
        raise EngineSettingsError("fetch.timeout_seconds must be a number") from exc
    if timeout_seconds <= 0:
        raise EngineSettingsError("fetch.timeout_seconds must be > 0")
    user_agent = str(_resolve_env_token(fetch_payload.get("user_agent")) or "").strip()
    fetch = FetchSettings(timeout_seconds=timeout_seconds, user_agent=user_agent or FetchSettings.user_agent)

    filter_defaults = data.get("filterCriteriaDefaults")
    if filter_defaults is not None:
        if not isinstance(filter_defaults, dict):
            raise EngineSettingsError("filterCriteriaDefaults must be a mapping")
        unknown = sorted(set(filter_defaults) - set(FILTER_DEFAULT_KEYS))
        if unknown:
            raise EngineSettingsError(f"filterCriteriaDefaults has unknown keys: {','.join(unknown)}")

    post_defaults = data.get("postCheckBehaviorDefaults")
    if post_defaults is not None:
        if not isinstance(post_defaults, dict):
            raise EngineSettingsError("postCheckBehaviorDefaults must be a mapping")
        unknown = sorted(set(post_defaults) - set(POST_BEHAVIOR_KEYS))
        if unknown:
            raise EngineSettingsError(f"postCheckBehaviorDefaults has unknown keys: {','.join(unknown)}")
        post_defaults = {key: _resolve_env_token(value) for key, value in post_defaults.items()}

    settings = EngineSettings(
        profile_id=profile_id,
        cache=cache,
        fetch=fetch,
        filter_defaults=filter_defaults,
        post_check_defaults=post_defaults,
    )
    content_digest = str(data.get("content_digest") or "").strip() or canonical_hash(settings.as_dict())
    return EngineSettings(
        profile_id=settings.profile_id,
        cache=settings.cache,
        fetch=settings.fetch,
        filter_defaults=settings.filter_defaults,
        post_check_defaults=settings.post_check_defaults,
        content_digest=content_digest,
    )


def _section(data: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise EngineSettingsError(f"{key} must be a mapping")
    return value


def _ttl(value: Any, label: str, default: int) -> int:
    value = _resolve_env_token(value)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise EngineSettingsError(f"{label} must be a non-negative integer")
    try:
        ttl = int(value)
    except (TypeError, ValueError) as exc:
        raise EngineSettingsError(f"{label} must be a non-negative integer") from exc
    if ttl < 0:
        raise EngineSettingsError(f"{label} must be a non-negative integer")
    return ttl


def _as_bool(value: Any, label: str, default: bool) -> bool:
    value = _resolve_env_token(value)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise EngineSettingsError(f"{label} must be a boolean")


def _resolve_env_token(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    token = value.strip()
    match = _ENV_PATTERN.fullmatch(token)
    if not match:
        return value
    key = match.group(1)
    default = match.group(2) or ""
    return os.getenv(key, default)
