"""Resolution cache APIs."""

from .keys import TagQuery, cache_key
from .resolution import CachedResult, ResolutionCache
from .store import StoredEntry, TagCacheStore

__all__ = ["CachedResult", "ResolutionCache", "StoredEntry", "TagCacheStore", "TagQuery", "cache_key"]
