# src/docforge/contracts/cache.py
"""CacheStore protocol for memoized processor artifacts.

Implemented by:
- core/cache.py InMemoryCacheStore (single process, tests)
- core/cache.py FilesystemCacheStore (persists across runs)

Both satisfy the same contract; ResultCache adds locking and version checks
on top of whichever store it is given.
"""

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from docforge.contracts.models import CacheEntry


@runtime_checkable
class CacheStore(Protocol):
    """Key/value store for cache entries.

    Keys are SHA-256 hex digests produced by derive_cache_key().
    """

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry stored under key, or None if absent."""
        ...

    def put(self, key: str, entry: CacheEntry) -> None:
        """Store entry under key, replacing any previous entry."""
        ...

    def delete(self, key: str) -> bool:
        """Delete entry under key.

        Returns:
            True if an entry was deleted, False if none existed
        """
        ...

    def entries(self) -> Iterator[tuple[str, CacheEntry]]:
        """Iterate over (key, entry) pairs currently stored."""
        ...
