"""Named rule/action/criteria registries for one hydration pass (Phase 3)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

from content_moderation.canonical import canonical_equal

from .errors import ConfigParseError, NamingConflictError, UnresolvedReferenceError
from .hydrator import is_rule_set


@dataclass(frozen=True)
class EntityReference:
    name: str

    @property
    def key(self) -> str:
        return normalize_name(self.name)


@dataclass(frozen=True)
class InlineEntity:
    payload: dict[str, Any]


def as_entity_ref(value: Any) -> EntityReference | InlineEntity:
    if isinstance(value, str):
        name = value.strip()
        if not name:
            raise ConfigParseError("named reference must be non-empty")
        return EntityReference(name=name)
    if isinstance(value, Mapping):
        return InlineEntity(payload=dict(value))
    raise ConfigParseError(f"expected a name or an inline object, got {type(value).__name__}")


def normalize_name(name: str) -> str:
    return str(name).strip().lower()


class NamedEntityRegistry:
    """Case-insensitive registry where re-registration must be structurally identical."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._entities: dict[str, dict[str, Any]] = {}

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entities)

    def items(self) -> Iterable[tuple[str, dict[str, Any]]]:
        return self._entities.items()

    def register(self, entity: Mapping[str, Any]) -> None:
        name = entity.get("name")
        if not isinstance(name, str) or not name.strip():
            return
        key = normalize_name(name)
        candidate = _without_name(entity)
        existing = self._entities.get(key)
        if existing is None:
            self._entities[key] = dict(entity)
            return
        try:
            same = canonical_equal(_without_name(existing), candidate)
        except (TypeError, ValueError) as exc:
            raise ConfigParseError(f"{self.label} {name} is not representable as JSON: {exc}") from exc
        if not same:
            raise NamingConflictError(
                f"{self.label} names must be unique (case-insensitive). Conflicting name: {name}",
                name=name,
            )

    def extract(self, items: Iterable[Any]) -> "NamedEntityRegistry":
        """Register every named mapping in ``items``, recursing into rule sets."""
        for item in items:
            if is_rule_set(item):
                self.extract(item["rules"])
            elif isinstance(item, Mapping):
                self.register(item)
        return self

    def get(self, name: str) -> dict[str, Any] | None:
        return self._entities.get(normalize_name(name))

    def resolve(self, ref: Any) -> dict[str, Any]:
        entity_ref = as_entity_ref(ref)
        if isinstance(entity_ref, InlineEntity):
            return entity_ref.payload
        found = self._entities.get(entity_ref.key)
        if found is None:
            raise UnresolvedReferenceError(
                f'No named {self.label} with the name "{entity_ref.name}" was found',
                reference=entity_ref.name,
            )
        return dict(found)


def _without_name(entity: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in entity.items() if key != "name"}
