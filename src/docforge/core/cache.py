# src/docforge/core/cache.py
"""
ResultCache: memoized processor artifacts.

The cache key is a stable hash of everything that affects a processor's
output: processor key, the exact payload that would be sent, backend
identity, template version and configuration version. Editing a prompt
or a processor declaration therefore changes the key, and a miss evicts
the processor's entries written under other template versions.

Stores:
- InMemoryCacheStore: process-local dict
- FilesystemCacheStore: JSON files under base_path/ab/<key>.json
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

from docforge.contracts.cache import CacheStore
from docforge.contracts.models import CacheEntry
from docforge.core.canonical import CANONICAL_VERSION, stable_hash, text_hash
from docforge.core.logging import get_logger

__all__ = [
    "FilesystemCacheStore",
    "InMemoryCacheStore",
    "ResultCache",
    "derive_cache_key",
]

logger = get_logger(__name__)

# SHA-256 hex digest: exactly 64 lowercase hex characters
_SHA256_HEX_PATTERN = re.compile(r"^[a-f0-9]{64}$")

# Stripes for ResultCache key locks
_LOCK_STRIPES = 64


def derive_cache_key(
    *,
    processor_key: str,
    payload: str,
    backend_id: str,
    template_version: str,
    config_version: str,
) -> str:
    """Stable cache key for one generation.

    Args:
        processor_key: Processor identity
        payload: Context text that will be sent (after any fallback)
        backend_id: Backend the task is bound to
        template_version: Hash of the processor's prompt template
        config_version: Hash of the processor declaration and cache settings version

    Returns:
        SHA-256 hex digest
    """
    return stable_hash(
        {
            "canonical_version": CANONICAL_VERSION,
            "processor_key": processor_key,
            "payload_hash": text_hash(payload),
            "backend_id": backend_id,
            "template_version": template_version,
            "config_version": config_version,
        }
    )


class InMemoryCacheStore:
    """Process-local cache store."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def entries(self) -> Iterator[tuple[str, CacheEntry]]:
        with self._lock:
            snapshot = list(self._entries.items())
        return iter(snapshot)


class FilesystemCacheStore:
    """Filesystem-backed cache store.

    Uses the first 2 characters of the key as a subdirectory for better file
    distribution. Writes go through a temporary file and os.replace() so a
    reader never sees a half-written entry.

    Structure: base_path/ab/abcdef123....json
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for_key(self, key: str) -> Path:
        """Filesystem path for a cache key.

        Raises:
            ValueError: If key is not a SHA-256 hex digest or escapes base_path
        """
        if not _SHA256_HEX_PATTERN.match(key):
            raise ValueError(f"Invalid cache key: must be 64 lowercase hex characters, got {repr(key)[:50]}")
        path = self.base_path / key[:2] / f"{key}.json"
        if not path.resolve().is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Invalid cache key: path traversal detected for {repr(key)[:50]}")
        return path

    def get(self, key: str) -> CacheEntry | None:
        path = self._path_for_key(key)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry.from_dict(data)
        except FileNotFoundError:
            # Absent, or deleted by another worker since it was listed
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            # Unreadable entry: evict so the artifact is regenerated
            logger.warning("cache_entry_corrupt", key=key, error=str(e))
            path.unlink(missing_ok=True)
            return None

    def put(self, key: str, entry: CacheEntry) -> None:
        path = self._path_for_key(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(entry.to_dict(), handle, sort_keys=True)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> bool:
        path = self._path_for_key(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def entries(self) -> Iterator[tuple[str, CacheEntry]]:
        for path in sorted(self.base_path.glob("??/*.json")):
            key = path.stem
            if not _SHA256_HEX_PATTERN.match(key):
                continue
            entry = self.get(key)
            if entry is not None:
                yield key, entry


class ResultCache:
    """Version-checked cache over a CacheStore.

    Operations on one key are serialized through a fixed set of striped
    locks, so memory stays bounded however many keys a long-lived cache sees.

    Example:
        cache = ResultCache(InMemoryCacheStore())
        key = derive_cache_key(processor_key="risk", payload=text, backend_id="large",
                               template_version=tv, config_version=cv)
        entry = cache.get(key, template_version=tv, config_version=cv)
        if entry is None:
            cache.put(key, CacheEntry(...))
    """

    def __init__(self, store: CacheStore) -> None:
        self._store = store
        self._locks = tuple(threading.Lock() for _ in range(_LOCK_STRIPES))
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def store(self) -> CacheStore:
        return self._store

    def _lock_for(self, key: str) -> threading.Lock:
        # Keys sharing a stripe serialize; the lock set never grows
        return self._locks[hash(key) % _LOCK_STRIPES]

    def get(
        self,
        key: str,
        *,
        template_version: str | None = None,
        config_version: str | None = None,
    ) -> CacheEntry | None:
        """Return the entry for key, or None on a miss.

        When versions are given, an entry recorded under different versions
        is evicted and reported as a miss.
        """
        with self._lock_for(key):
            entry = self._store.get(key)
            if entry is not None and (
                (template_version is not None and entry.template_version != template_version)
                or (config_version is not None and entry.config_version != config_version)
            ):
                logger.debug("cache_version_mismatch", key=key, processor_key=entry.processor_key)
                self._store.delete(key)
                entry = None
        with self._stats_lock:
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock_for(key):
            self._store.put(key, entry)

    def invalidate(self, predicate: Callable[[str, CacheEntry], bool]) -> int:
        """Delete every entry for which predicate(key, entry) is true.

        Returns:
            Number of entries deleted
        """
        removed = 0
        for key, entry in list(self._store.entries()):
            if predicate(key, entry):
                with self._lock_for(key):
                    if self._store.delete(key):
                        removed += 1
        return removed

    def invalidate_stale(self, processor_key: str, *, template_version: str, config_version: str) -> int:
        """Evict a processor's entries written under other versions."""
        return self.invalidate(
            lambda _key, entry: entry.processor_key == processor_key
            and (entry.template_version != template_version or entry.config_version != config_version)
        )
