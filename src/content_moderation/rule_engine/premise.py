"""Premise identity for rule results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from content_moderation.canonical import canonical_hash
from content_moderation.policy_config.contracts import FilterSpec, StructuredRule


@dataclass(frozen=True)
class Premise:
    kind: str
    config: dict[str, Any]
    author_is: dict[str, Any] | None = None
    item_is: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "config": dict(self.config),
            "authorIs": self.author_is,
            "itemIs": self.item_is,
        }

    @property
    def premise_hash(self) -> str:
        return canonical_hash(self.as_dict())


def build_premise(rule: StructuredRule) -> Premise:
    """Rules differing only by name share a premise."""
    return Premise(
        kind=rule.kind,
        config=dict(rule.config),
        author_is=_filter_identity(rule.author_is),
        item_is=_filter_identity(rule.item_is),
    )


def _filter_identity(value: FilterSpec | None) -> dict[str, Any] | None:
    return None if value is None else value.premise_dict()
