"""
Content-addressable stage-output caches.

Keys are opaque digests built by the pipeline; values are stage output text.
Backends raise CacheError on failure and leave recovery to the caller.
"""

import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import diskcache

from steptrans.core.exceptions import CacheError, ConfigurationError

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".cache"


class Cache(ABC):
    """Stage-output cache interface. `get` returns None on a miss."""

    cache_type = "base"

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def stats(self) -> Dict[str, Any]:
        return {"type": self.cache_type}


class MemoryCache(Cache):
    """
    Process-local cache, used for tests and as the FileCache front tier.

    With `max_entries` set, the least recently used entry is evicted once
    the cache is full.
    """

    cache_type = "memory"

    def __init__(self, ttl: Optional[int] = None, max_entries: Optional[int] = None):
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self.ttl and time.time() - entry["timestamp"] > self.ttl:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            # Re-insert so dict order tracks recency
            self._entries[key] = self._entries.pop(key)
            return entry["value"]

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = {"value": value, "timestamp": time.time()}
            if self.max_entries:
                while len(self._entries) > self.max_entries:
                    del self._entries[next(iter(self._entries))]

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {"type": self.cache_type, "size": len(self), "hits": self.hits, "misses": self.misses}


class FileCache(Cache):
    """
    Flat directory of `<key>.cache` JSON files.

    Each file holds {"key", "value", "timestamp"} and is written to a temp
    file in the same directory then renamed, so readers never see a partial
    entry. Entries read or written are also kept in a memory tier.
    """

    cache_type = "file"

    def __init__(self, cache_dir: str = ".cache/steptrans", ttl: Optional[int] = None,
                 memory_entries: int = 10000, logger=None):
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self.logger = logger or logging.getLogger(__name__)
        self.memory = MemoryCache(ttl=ttl, max_entries=memory_entries)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache directory {self.cache_dir}: {e}", cache_type="file", operation="init")
        self.logger.debug(f"Using file cache at {self.cache_dir}")

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}{CACHE_SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        value = self.memory.get(key)
        if value is not None:
            return value

        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheError(f"Cannot read cache entry {path.name}: {e}", cache_type="file", operation="get")
        if not isinstance(entry, dict):
            raise CacheError(f"Malformed cache entry {path.name}", cache_type="file", operation="get")

        if self.ttl and time.time() - entry.get("timestamp", 0) > self.ttl:
            self.delete(key)
            return None

        value = entry.get("value")
        if value is not None:
            self.memory.set(key, value)
        return value

    def set(self, key: str, value: str) -> None:
        entry = {"key": key, "value": value, "timestamp": time.time()}
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp-", suffix=CACHE_SUFFIX)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry, f, ensure_ascii=False)
            os.replace(tmp_name, self._path(key))
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CacheError(f"Cannot write cache entry {key[:12]}: {e}", cache_type="file", operation="set")
        self.memory.set(key, value)

    def delete(self, key: str) -> None:
        self.memory.delete(key)
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheError(f"Cannot delete cache entry {key[:12]}: {e}", cache_type="file", operation="delete")

    def clear(self) -> None:
        self.memory.clear()
        for path in self.cache_dir.glob(f"*{CACHE_SUFFIX}"):
            try:
                path.unlink()
            except OSError as e:
                raise CacheError(f"Cannot clear {path.name}: {e}", cache_type="file", operation="clear")

    def stats(self) -> Dict[str, Any]:
        files = [p for p in self.cache_dir.glob(f"*{CACHE_SUFFIX}") if not p.name.startswith(".tmp-")]
        return {
            "type": self.cache_type,
            "size": len(files),
            "bytes": sum(p.stat().st_size for p in files),
            "location": str(self.cache_dir),
            "memory_hits": self.memory.hits,
        }


class DiskCache(Cache):
    """diskcache-backed cache with optional expiration."""

    cache_type = "disk"

    def __init__(self, cache_dir: str = ".cache/steptrans-disk", ttl: Optional[int] = 604800, logger=None):
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self.logger = logger or logging.getLogger(__name__)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.disk_cache = diskcache.Cache(str(self.cache_dir))
        except Exception as e:
            raise CacheError(f"Failed to initialize disk cache: {e}", cache_type="disk", operation="init")
        self.logger.debug(f"Using disk cache at {self.cache_dir} (TTL: {ttl}s)")

    def get(self, key: str) -> Optional[str]:
        try:
            # diskcache handles expiration
            return self.disk_cache.get(key)
        except Exception as e:
            raise CacheError(f"Cache get failed: {e}", cache_type="disk", operation="get")

    def set(self, key: str, value: str) -> None:
        try:
            self.disk_cache.set(key, value, expire=self.ttl or None)
        except Exception as e:
            raise CacheError(f"Cache set failed: {e}", cache_type="disk", operation="set")

    def delete(self, key: str) -> None:
        try:
            self.disk_cache.delete(key)
        except Exception as e:
            raise CacheError(f"Cache delete failed: {e}", cache_type="disk", operation="delete")

    def clear(self) -> None:
        self.disk_cache.clear()

    def close(self) -> None:
        self.disk_cache.close()

    def stats(self) -> Dict[str, Any]:
        return {"type": self.cache_type, "size": len(self.disk_cache), "location": str(self.cache_dir)}


def create_cache(backend: str = "file", cache_dir: Optional[str] = None,
                 ttl: Optional[int] = None, logger=None) -> Cache:
    """
    Create a cache backend by name.

    Raises:
        ConfigurationError: Unknown backend
    """
    backend = (backend or "file").lower()
    if backend == "memory":
        return MemoryCache(ttl=ttl)
    if backend == "file":
        return FileCache(cache_dir or ".cache/steptrans", ttl=ttl, logger=logger)
    if backend == "disk":
        return DiskCache(cache_dir or ".cache/steptrans-disk", ttl=ttl, logger=logger)
    raise ConfigurationError(
        f"Unknown cache backend '{backend}'",
        config_key="cache_backend",
        invalid_value=backend,
        valid_values=["file", "disk", "memory"]
    )


def prune_cache(cache_dir: str, max_age_days: float = 30) -> int:
    """
    Delete `.cache` files older than max_age_days from a FileCache directory.

    Returns:
        Number of files removed
    """
    directory = Path(cache_dir)
    if not directory.is_dir():
        return 0
    cutoff = time.time() - max_age_days * 86400
    removed = 0
    for path in directory.glob(f"*{CACHE_SUFFIX}"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except FileNotFoundError:
            continue
    logger.info(f"Pruned {removed} cache files older than {max_age_days} days from {directory}")
    return removed
