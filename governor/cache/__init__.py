"""Response caching: key derivation, route policies and the cache-aside store."""

from governor.cache.keys import RequestDescriptor, build_cache_key
from governor.cache.policy import CachePolicy, CachePolicyTable, CacheRoute
from governor.cache.response_cache import CachedResponse, CacheEntry, ResponseCache

__all__ = [
    "CachePolicy",
    "CachePolicyTable",
    "CacheRoute",
    "CacheEntry",
    "CachedResponse",
    "RequestDescriptor",
    "ResponseCache",
    "build_cache_key",
]
