"""Policy hydration error kinds (Phase 1)."""

from __future__ import annotations

from dataclasses import dataclass


FETCH_NOT_FOUND = "NOT_FOUND"
FETCH_FORBIDDEN = "FORBIDDEN"
FETCH_NETWORK = "NETWORK"
FETCH_REASONS = {FETCH_NOT_FOUND, FETCH_FORBIDDEN, FETCH_NETWORK}


@dataclass(frozen=True)
class FragmentPosition:
    """1-based location of a fragment inside a document, outermost first."""

    path: tuple[tuple[str, int], ...] = ()

    def child(self, label: str, index: int) -> "FragmentPosition":
        return FragmentPosition(path=self.path + ((label, index),))

    def describe(self) -> str:
        return " in ".join(f"{label} #{index}" for label, index in reversed(self.path))

    def __bool__(self) -> bool:
        return bool(self.path)


class PolicyConfigError(ValueError):
    """Raised when a policy document cannot be hydrated or structured."""

    def __init__(self, message: str, *, position: FragmentPosition | None = None) -> None:
        self.detail = message
        self.position = position or FragmentPosition()
        if self.position:
            message = f"{self.position.describe()}: {message}"
        super().__init__(message)

    def at(self, position: FragmentPosition) -> "PolicyConfigError":
        """Copy of this error, same kind, attributed to ``position``."""
        return self._with_position(position)

    def _with_position(self, position: FragmentPosition) -> "PolicyConfigError":
        return type(self)(self.detail, position=position)


class ConfigParseError(PolicyConfigError):
    """Raised for malformed include syntax or unrecognized fragment shapes."""


class DocumentShapeError(ConfigParseError):
    """Raised when a document defines both top-level runs and checks."""


class SchemaValidationError(PolicyConfigError):
    """Raised when a fragment or document fails its declared schema."""


class NamingConflictError(PolicyConfigError):
    """Raised when one name is registered for structurally different entities."""

    def __init__(self, message: str, *, name: str = "", position: FragmentPosition | None = None) -> None:
        self.name = name
        super().__init__(message, position=position)

    def _with_position(self, position: FragmentPosition) -> "PolicyConfigError":
        return NamingConflictError(self.detail, name=self.name, position=position)


class UnresolvedReferenceError(PolicyConfigError):
    """Raised when a named reference has no registered entity."""

    def __init__(self, message: str, *, reference: str = "", position: FragmentPosition | None = None) -> None:
        self.reference = reference
        super().__init__(message, position=position)

    def _with_position(self, position: FragmentPosition) -> "PolicyConfigError":
        return UnresolvedReferenceError(self.detail, reference=self.reference, position=position)


class FetchError(PolicyConfigError):
    """Raised when a remote fragment or content page cannot be retrieved."""

    def __init__(
        self,
        message: str,
        *,
        reason: str = FETCH_NETWORK,
        source: str = "",
        position: FragmentPosition | None = None,
    ) -> None:
        if reason not in FETCH_REASONS:
            raise ValueError(f"unsupported fetch reason: {reason}")
        self.reason = reason
        self.source = source
        super().__init__(message, position=position)

    @property
    def not_found(self) -> bool:
        return self.reason == FETCH_NOT_FOUND

    @property
    def forbidden(self) -> bool:
        return self.reason == FETCH_FORBIDDEN

    def _with_position(self, position: FragmentPosition) -> "PolicyConfigError":
        return FetchError(self.detail, reason=self.reason, source=self.source, position=position)
