"""Persistent response caching for hawkcli.

This package stores serialized API responses in a SQLite table (small
bodies inline, large ones as sharded blob files) with per-operation TTLs.

* :func:`cache_key` -- deterministic key for one operation call.
* :class:`CacheStore` -- the on-disk store.
* :class:`CachedClient` -- facade that serves reads from the store and
  invalidates it after mutations.

The cache is controlled by the ``cache`` section of the config file
(:class:`~hawkcli.models.CacheSettings`) and the ``--no-cache`` flag.
"""

from hawkcli.cache.client import CachedClient
from hawkcli.cache.key import cache_key
from hawkcli.cache.store import CacheStats, CacheStore, ClearStats

__all__ = ["CacheStats", "CacheStore", "CachedClient", "ClearStats", "cache_key"]
