"""Config fragment classification, parsing and resolution (Phase 1)."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, Mapping

import yaml

from .errors import ConfigParseError


logger = logging.getLogger("content_moderation.policy_config.fragments")

REFERENCE_NONE = "none"
REFERENCE_URL = "url"
REFERENCE_NAMED_RESOURCE = "named-resource"

URL_PREFIX = "url:"
WIKI_PREFIX = "wiki:"

FORMAT_JSON = "json"
FORMAT_YAML = "yaml"

INCLUDE_KEYS = {"path", "ttl"}

ValidateFn = Callable[[Any, bool], bool]


@dataclass(frozen=True)
class IncludeReference:
    path: str
    kind: str
    ttl_seconds: int | None = None

    @property
    def location(self) -> str:
        """The path with its resource prefix removed."""
        if self.kind == REFERENCE_URL:
            return self.path.strip()[len(URL_PREFIX):].strip()
        if self.kind == REFERENCE_NAMED_RESOURCE:
            return self.path.strip()[len(WIKI_PREFIX):].strip()
        return self.path

    def wiki_target(self) -> tuple[str, str | None]:
        """(page, community) for a named-resource reference; community may be omitted."""
        if self.kind != REFERENCE_NAMED_RESOURCE:
            raise ConfigParseError(f"not a named-resource reference: {self.path}")
        page, _, community = self.location.partition("|")
        page = page.strip()
        if not page:
            raise ConfigParseError(f"named-resource reference has an empty page: {self.path}")
        return page, (community.strip() or None)

    def format_hint(self) -> str:
        lowered = self.location.split("?", 1)[0].split("|", 1)[0].lower()
        if lowered.endswith((".yaml", ".yml")):
            return FORMAT_YAML
        return FORMAT_JSON


@dataclass(frozen=True)
class FetchedFragment:
    text: str
    source: str
    format_hint: str = FORMAT_JSON


FetchFn = Callable[[IncludeReference], FetchedFragment]


def classify_reference(value: str) -> str:
    text = str(value or "").strip()
    if text.startswith(URL_PREFIX) and len(text) > len(URL_PREFIX):
        return REFERENCE_URL
    if text.startswith(WIKI_PREFIX) and len(text) > len(WIKI_PREFIX):
        return REFERENCE_NAMED_RESOURCE
    return REFERENCE_NONE


def is_include_descriptor(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and isinstance(value.get("path"), str)
        and set(value.keys()) <= INCLUDE_KEYS
    )


def as_include_reference(value: Any) -> IncludeReference | None:
    """Classify ``value``; ``None`` means it is a literal (or a plain name)."""
    if isinstance(value, str):
        kind = classify_reference(value)
        if kind == REFERENCE_NONE:
            logger.debug("fragment is not a remote resource: %s", value)
            return None
        logger.debug("detected %s fragment from string: %s", kind, value)
        return IncludeReference(path=value.strip(), kind=kind)
    if is_include_descriptor(value):
        path = str(value["path"]).strip()
        kind = classify_reference(path)
        if kind == REFERENCE_NONE:
            raise ConfigParseError(
                "Could not detect config fragment path as a valid resource. "
                f"Resource must be prefixed with either '{URL_PREFIX}' or '{WIKI_PREFIX}' -- {path}"
            )
        return IncludeReference(path=path, kind=kind, ttl_seconds=_ttl(value.get("ttl")))
    return None


def parse_fragment_text(text: str, *, format_hint: str = FORMAT_JSON) -> tuple[Any, str]:
    """Parse ``text`` as the hinted format, falling back to the other one."""
    order = (FORMAT_YAML, FORMAT_JSON) if format_hint == FORMAT_YAML else (FORMAT_JSON, FORMAT_YAML)
    failures: list[str] = []
    for fmt in order:
        try:
            data = json.loads(text) if fmt == FORMAT_JSON else yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as exc:
            failures.append(f"{fmt.upper()} error: {_first_line(exc)}")
            continue
        if not isinstance(data, (Mapping, list)):
            failures.append(f"{fmt.upper()} error: content did not parse to an object or array")
            continue
        return data, fmt
    raise ConfigParseError("Could not parse fragment as JSON or YAML. " + " | ".join(failures))


class FragmentResolver:
    """Turns a literal, a prefixed string or an include descriptor into a list of fragments."""

    def __init__(self, fetch: FetchFn) -> None:
        self._fetch = fetch

    def resolve(self, value: Any, validate: ValidateFn | None = None) -> list[Any]:
        include = as_include_reference(value)
        if include is None:
            if validate is not None:
                validate(value, False)
            if isinstance(value, list):
                return list(value)
            return [value]

        fetched = self._fetch(include)
        data, fmt = parse_fragment_text(fetched.text, format_hint=fetched.format_hint)
        logger.info("hydrated %s fragment from %s (%s)", include.kind, fetched.source, fmt)
        if validate is not None:
            validate(data, True)
        if isinstance(data, list):
            return data
        return [data]


def _ttl(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigParseError(f"include ttl must be a non-negative integer, got {value!r}")
    return value


def _first_line(exc: Exception) -> str:
    return str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
