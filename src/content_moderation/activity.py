"""Content items, authors and the collaborator interfaces that supply them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from .comparisons import ComparisonError, parse_duration


ACTIVITY_SUBMISSION = "submission"
ACTIVITY_COMMENT = "comment"
ACTIVITY_KINDS = {ACTIVITY_SUBMISSION, ACTIVITY_COMMENT}

DEFAULT_WINDOW_COUNT = 100


class ActivityContractError(ValueError):
    """Raised when activity/author payloads are invalid."""


@dataclass(frozen=True)
class Author:
    name: str
    created_utc: float | None = None
    link_karma: int = 0
    comment_karma: int = 0
    is_moderator: bool = False
    verified: bool = False
    flair_text: str | None = None
    flair_css_class: str | None = None

    @property
    def total_karma(self) -> int:
        return self.link_karma + self.comment_karma

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Author":
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ActivityContractError("author.name is required")
        created = payload.get("created_utc")
        return cls(
            name=name,
            created_utc=None if created is None else float(created),
            link_karma=int(payload.get("link_karma") or 0),
            comment_karma=int(payload.get("comment_karma") or 0),
            is_moderator=bool(payload.get("is_moderator", False)),
            verified=bool(payload.get("verified", False)),
            flair_text=payload.get("flair_text"),
            flair_css_class=payload.get("flair_css_class"),
        )


@dataclass(frozen=True)
class Activity:
    id: str
    kind: str
    author: Author
    community: str
    created_utc: float
    score: int = 0
    title: str | None = None
    body: str = ""
    url: str | None = None
    domain: str | None = None
    is_self: bool = False
    removed: bool = False
    locked: bool = False
    approved: bool = False
    spam: bool = False
    deleted: bool = False
    nsfw: bool = False
    spoiler: bool = False
    stickied: bool = False
    distinguished: bool = False
    reports: int = 0
    flair_text: str | None = None
    is_submitter: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Activity":
        activity_id = str(payload.get("id") or "").strip()
        if not activity_id:
            raise ActivityContractError("activity.id is required")
        kind = str(payload.get("kind") or "").strip().lower()
        if kind not in ACTIVITY_KINDS:
            raise ActivityContractError(f"activity.kind must be one of {sorted(ACTIVITY_KINDS)}")
        author = payload.get("author")
        if not isinstance(author, Mapping):
            raise ActivityContractError("activity.author must be a mapping")
        return cls(
            id=activity_id,
            kind=kind,
            author=Author.from_payload(author),
            community=str(payload.get("community") or ""),
            created_utc=float(payload.get("created_utc") or 0),
            score=int(payload.get("score") or 0),
            title=payload.get("title"),
            body=str(payload.get("body") or ""),
            url=payload.get("url"),
            domain=payload.get("domain"),
            is_self=bool(payload.get("is_self", False)),
            removed=bool(payload.get("removed", False)),
            locked=bool(payload.get("locked", False)),
            approved=bool(payload.get("approved", False)),
            spam=bool(payload.get("spam", False)),
            deleted=bool(payload.get("deleted", False)),
            nsfw=bool(payload.get("nsfw", False)),
            spoiler=bool(payload.get("spoiler", False)),
            stickied=bool(payload.get("stickied", False)),
            distinguished=bool(payload.get("distinguished", False)),
            reports=int(payload.get("reports") or 0),
            flair_text=payload.get("flair_text"),
            is_submitter=bool(payload.get("is_submitter", False)),
        )


@dataclass(frozen=True)
class UserNote:
    note_type: str
    created_utc: float
    text: str = ""


@dataclass(frozen=True)
class ActivityWindow:
    count: int | None = DEFAULT_WINDOW_COUNT
    duration_seconds: float | None = None
    activity_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "duration_seconds": self.duration_seconds,
            "activity_type": self.activity_type,
        }

    def select(self, activities: list[Activity], *, now: float, exclude_id: str | None = None) -> list[Activity]:
        """Newest-first activities inside this window."""
        selected = sorted(
            (
                activity
                for activity in activities
                if activity.id != exclude_id
                and (self.activity_type is None or activity.kind == self.activity_type)
                and (self.duration_seconds is None or now - activity.created_utc <= self.duration_seconds)
            ),
            key=lambda activity: activity.created_utc,
            reverse=True,
        )
        if self.count is not None:
            selected = selected[: self.count]
        return selected


def parse_window(value: Any, *, activity_type: str | None = None) -> ActivityWindow:
    if value is None:
        return ActivityWindow(activity_type=activity_type)
    if isinstance(value, bool):
        raise ActivityContractError(f"invalid activity window: {value!r}")
    if isinstance(value, int):
        return ActivityWindow(count=_positive(value), activity_type=activity_type)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return ActivityWindow(count=_positive(int(text)), activity_type=activity_type)
        return ActivityWindow(count=None, duration_seconds=_duration(text), activity_type=activity_type)
    if isinstance(value, Mapping):
        count = value.get("count")
        duration = value.get("duration")
        if count is None and duration is None:
            raise ActivityContractError("activity window requires count or duration")
        return ActivityWindow(
            count=None if count is None else _positive(int(count)),
            duration_seconds=None if duration is None else _duration(duration),
            activity_type=activity_type,
        )
    raise ActivityContractError(f"invalid activity window: {value!r}")


class ActivitySource(Protocol):
    def fetch_author_activities(self, author_name: str, window: ActivityWindow) -> list[Activity]:
        ...


class WikiSource(Protocol):
    def read_page(self, community: str, page: str) -> str:
        ...


class UserNotesSource(Protocol):
    def get_notes(self, author_name: str) -> list[UserNote]:
        ...


def _positive(value: int) -> int:
    if value < 1:
        raise ActivityContractError("activity window count must be >= 1")
    return value


def _duration(value: Any) -> float:
    try:
        return parse_duration(value)
    except ComparisonError as exc:
        raise ActivityContractError(str(exc)) from exc
