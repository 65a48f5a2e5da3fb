"""TTL-memoised access to author history, remote content and criteria results."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from content_moderation.activity import (
    Activity,
    ActivitySource,
    ActivityWindow,
    UserNote,
    UserNotesSource,
)
from content_moderation.canonical import canonical_hash
from content_moderation.policy_config.errors import ConfigParseError
from content_moderation.policy_config.fragments import (
    REFERENCE_NAMED_RESOURCE,
    REFERENCE_NONE,
    FetchedFragment,
    IncludeReference,
    classify_reference,
)
from content_moderation.rule_engine.criteria import author_criteria_matches
from content_moderation.settings import CacheSettings, EngineSettings

from .cache import MISSING, TTLCache
from .fetch import RemoteContentFetcher


logger = logging.getLogger("content_moderation.resources")


class ResourceError(ValueError):
    """Raised when a resource is requested without the collaborator that supplies it."""


class ResourceCache:
    """Per-community resource access shared by hydration and the rule engine.

    Every lookup is memoised in one ``TTLCache`` under a namespaced key. With
    caching disabled each call goes to the live source.
    """

    def __init__(
        self,
        community: str,
        *,
        activity_source: ActivitySource | None = None,
        user_notes_source: UserNotesSource | None = None,
        fetcher: RemoteContentFetcher | None = None,
        settings: CacheSettings | None = None,
        cache: TTLCache[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.community = community
        self.settings = settings or CacheSettings()
        self._activity_source = activity_source
        self._user_notes_source = user_notes_source
        self._fetcher = fetcher or RemoteContentFetcher()
        self._cache: TTLCache[str, Any] = cache if cache is not None else TTLCache(self.settings.author_ttl_seconds)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        community: str,
        *,
        activity_source: ActivitySource | None = None,
        user_notes_source: UserNotesSource | None = None,
        wiki_source: Any = None,
        session: Any = None,
    ) -> "ResourceCache":
        fetcher = RemoteContentFetcher(
            timeout_seconds=settings.fetch.timeout_seconds,
            user_agent=settings.fetch.user_agent,
            session=session,
            wiki_source=wiki_source,
        )
        return cls(
            community,
            activity_source=activity_source,
            user_notes_source=user_notes_source,
            fetcher=fetcher,
            settings=settings.cache,
        )

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def now(self) -> float:
        return self._clock()

    def get_author_activities(self, author_name: str, window: ActivityWindow) -> list[Activity]:
        if self._activity_source is None:
            raise ResourceError("no activity source configured")
        key_parts: dict[str, Any] = {"window": window.as_dict(), "author": author_name.lower()}
        if self.settings.scope_author_to_community:
            key_parts["community"] = self.community.lower()
        key = f"authorActivities-{canonical_hash(key_parts)}"
        return self._memoised(
            key,
            self.settings.author_ttl_seconds,
            lambda: list(self._activity_source.fetch_author_activities(author_name, window)),
        )

    def get_content(self, value: str, community: str | None = None) -> str:
        """Literal text unchanged; ``wiki:``/``url:`` references fetched live and memoised."""
        kind = classify_reference(value)
        if kind == REFERENCE_NONE:
            return value
        include = IncludeReference(path=value.strip(), kind=kind)
        return self._fetch_text(include, self.settings.content_ttl_seconds, community=community)

    def fetch_fragment(self, include: IncludeReference) -> FetchedFragment:
        """Hydration fetch; an include ``ttl`` overrides the content TTL."""
        ttl = self.settings.content_ttl_seconds if include.ttl_seconds is None else include.ttl_seconds
        text = self._fetch_text(include, ttl)
        return FetchedFragment(text=text, source=include.path, format_hint=include.format_hint())

    def get_user_notes(self, author_name: str) -> list[UserNote]:
        if self._user_notes_source is None:
            raise ResourceError("no user notes source configured")
        key = f"userNotes-{self.community.lower()}-{author_name.lower()}"
        return self._memoised(
            key,
            self.settings.user_notes_ttl_seconds,
            lambda: list(self._user_notes_source.get_notes(author_name)),
        )

    def test_author_criteria(self, item: Activity, criteria: Mapping[str, Any], include: bool = True) -> bool:
        """Whether the item's author passes ``criteria``: matched when including, unmatched when excluding."""
        key = "authorCrit-" + canonical_hash(
            {"itemId": item.id, "criteria": dict(criteria), "include": bool(include)}
        )

        def _evaluate() -> bool:
            matched = author_criteria_matches(
                item.author,
                criteria,
                now=self.now(),
                notes=lambda: self.get_user_notes(item.author.name),
            )
            return matched if include else not matched

        return self._memoised(key, self.settings.criteria_ttl_seconds, _evaluate)

    def _fetch_text(self, include: IncludeReference, ttl: int, *, community: str | None = None) -> str:
        if include.kind == REFERENCE_NAMED_RESOURCE:
            page, target = include.wiki_target()
            target = target or community or self.community
            key = f"wiki-{target.lower()}-{page}"
            return self._memoised(key, ttl, lambda: self._fetcher.fetch_wiki(page, target))
        if include.kind == REFERENCE_NONE:
            raise ConfigParseError(f"not a remote resource: {include.path}")
        url = include.location
        return self._memoised(f"url-{url}", ttl, lambda: self._fetcher.fetch_url(url))

    def _memoised(self, key: str, ttl: int, load: Callable[[], Any]) -> Any:
        if not self.enabled or ttl <= 0:
            return load()
        cached = self._cache.get(key, MISSING)
        if cached is not MISSING:
            logger.debug("resource cache hit key=%s", key)
            return cached
        value = load()
        self._cache.set(key, value, ttl)
        return value
