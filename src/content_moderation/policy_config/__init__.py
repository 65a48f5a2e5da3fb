"""Policy document hydration and structured graph compilation."""

from .builder import StructuredGraphBuilder, no_remote_fetch
from .contracts import (
    CONDITION_AND,
    CONDITION_OR,
    DEFAULT_POST_FAIL,
    DEFAULT_POST_TRIGGER,
    POST_BEHAVIORS,
    FilterDefaults,
    FilterSpec,
    NamedCriteria,
    PostCheckBehavior,
    StructuredAction,
    StructuredCheck,
    StructuredRule,
    StructuredRuleSet,
    StructuredRun,
    graph_as_dict,
)
from .errors import (
    ConfigParseError,
    DocumentShapeError,
    FetchError,
    FragmentPosition,
    NamingConflictError,
    PolicyConfigError,
    SchemaValidationError,
    UnresolvedReferenceError,
)
from .fragments import FetchedFragment, FragmentResolver, IncludeReference, parse_fragment_text
from .hydrator import SYNTHETIC_RUN_NAME, Hydrator
from .registry import NamedEntityRegistry
from .schemas import SchemaRegistry

__all__ = [
    "CONDITION_AND",
    "CONDITION_OR",
    "DEFAULT_POST_FAIL",
    "DEFAULT_POST_TRIGGER",
    "POST_BEHAVIORS",
    "SYNTHETIC_RUN_NAME",
    "ConfigParseError",
    "DocumentShapeError",
    "FetchError",
    "FetchedFragment",
    "FilterDefaults",
    "FilterSpec",
    "FragmentPosition",
    "FragmentResolver",
    "Hydrator",
    "IncludeReference",
    "NamedCriteria",
    "NamedEntityRegistry",
    "NamingConflictError",
    "PolicyConfigError",
    "PostCheckBehavior",
    "SchemaRegistry",
    "SchemaValidationError",
    "StructuredAction",
    "StructuredCheck",
    "StructuredGraphBuilder",
    "StructuredRule",
    "StructuredRuleSet",
    "StructuredRun",
    "UnresolvedReferenceError",
    "graph_as_dict",
    "no_remote_fetch",
    "parse_fragment_text",
]
