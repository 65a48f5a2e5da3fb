"""Policy document JSON Schema registry + validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import yaml
from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.exceptions import NoSuchResource
from referencing.jsonschema import DRAFT202012

from .errors import SchemaValidationError


SCHEMA_ROOT = Path(__file__).resolve().parent / "schemas"

DOCUMENT_SCHEMA = "document.schema.yaml"
RUN_SCHEMA = "run.schema.yaml"
CHECK_SCHEMA = "check.schema.yaml"
RULE_SCHEMA = "rule.schema.yaml"
ACTION_SCHEMA = "action.schema.yaml"


@dataclass
class SchemaRegistry:
    root: Path = field(default=SCHEMA_ROOT)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self._cache: dict[str, dict[str, Any]] = {}
        self._paths: dict[str, Path] = {}
        self._resources: dict[str, Resource[Any]] = {}
        self._validators: dict[str, Draft202012Validator] = {}

    def load(self, name: str) -> dict[str, Any]:
        if name in self._cache:
            return self._cache[name]
        path = (self.root / name).resolve()
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        self._cache[name] = data
        self._paths[name] = path
        return data

    def validate(self, name: str, payload: Any) -> None:
        validator = self._validator(name)
        errors = sorted(validator.iter_errors(payload), key=lambda e: [str(part) for part in e.path])
        if errors:
            messages = "; ".join(_describe(error) for error in errors)
            raise SchemaValidationError(f"Schema validation failed for {name}: {messages}")

    def _validator(self, name: str) -> Draft202012Validator:
        if name in self._validators:
            return self._validators[name]
        schema = self.load(name)
        base_uri = self._paths[name].as_uri()
        registry = Registry(retrieve=self._retrieve_resource)
        registry = registry.with_resource(
            base_uri,
            Resource.from_contents(schema, default_specification=DRAFT202012),
        )
        schema_with_id = dict(schema)
        schema_with_id.setdefault("$id", base_uri)
        validator = Draft202012Validator(schema_with_id, registry=registry)
        self._validators[name] = validator
        return validator

    def _retrieve_resource(self, uri: str) -> Resource[Any]:
        if uri in self._resources:
            return self._resources[uri]
        path = self._uri_to_path(uri)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        resource = Resource.from_contents(data, default_specification=DRAFT202012)
        self._resources[uri] = resource
        return resource

    def _uri_to_path(self, uri: str) -> Path:
        parsed = urlparse(uri)
        if parsed.scheme not in ("", "file"):
            raise NoSuchResource(uri)
        path_str = unquote(parsed.path)
        if path_str.startswith("/") and len(path_str) > 2 and path_str[2] == ":":
            path_str = path_str.lstrip("/")
        path = Path(path_str)
        if not path.exists():
            path = self.root / path.name
        if not path.exists():
            raise NoSuchResource(uri)
        return path


def _describe(error: Any) -> str:
    location = "/".join(str(part) for part in error.absolute_path) or "<root>"
    data = error.instance
    if isinstance(data, dict) and data.get("name") is not None:
        return f"at {location} (object named '{data['name']}'): {error.message}"
    return f"at {location}: {error.message}"
