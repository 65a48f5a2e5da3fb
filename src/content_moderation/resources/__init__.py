"""Cached access to author history, remote content and user notes."""

from .cache import MISSING, TTLCache
from .fetch import RemoteContentFetcher
from .resources import ResourceCache, ResourceError

__all__ = ["MISSING", "RemoteContentFetcher", "ResourceCache", "ResourceError", "TTLCache"]
