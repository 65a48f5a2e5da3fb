"""Canonical JSON + content digests shared by policy and engine components."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def canonical_json(value: Any) -> str:
    """Key-order independent JSON text; integral floats are written as ints."""
    return json.dumps(
        _normalize(value),
        sort_keys=True,
        ensure_ascii=True,
        separators=(",", ":"),
        allow_nan=False,
    )


def canonical_hash(value: Any) -> str:
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def canonical_equal(left: Any, right: Any) -> bool:
    return canonical_json(left) == canonical_json(right)


def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, Mapping):
        return {str(key): _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    as_dict = getattr(value, "as_dict", None)
    if callable(as_dict):
        return _normalize(as_dict())
    raise TypeError(f"value of type {type(value).__name__} has no canonical JSON form")
