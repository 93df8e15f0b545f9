"""
TTL Cache Store for Simpleton CLI

Generic key -> value store backing the LLM response cache and the
file/project caches.

Features:
- Per-entry TTL (expired entries behave exactly like missing ones)
- Byte-size estimation from the JSON encoding of each value
- Size-bounded eviction, oldest entries first
- Periodic sweep of expired entries (asyncio task)
- Optional JSON snapshot persistence
"""

import asyncio
import contextlib
import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable

from .errors import CacheSnapshotError

logger = logging.getLogger(__name__)


DEFAULT_MAX_SIZE_BYTES = 100 * 1024 * 1024  # 100MB
DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_CLEANUP_INTERVAL_SECONDS = 5 * 60
UNKNOWN_SIZE_ESTIMATE = 1024  # Used when a value cannot be JSON encoded
SNAPSHOT_VERSION = 1


@dataclass
class CacheEntry:
    """A cached value and the bookkeeping needed to expire and evict it."""

    data: Any
    created_at: float  # Epoch seconds, set once at insertion
    ttl: float  # Seconds
    size_bytes: int

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "created_at": self.created_at,
            "ttl": self.ttl,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CacheEntry":
        return cls(
            data=raw["data"],
            created_at=float(raw["created_at"]),
            ttl=float(raw["ttl"]),
            size_bytes=int(raw["size_bytes"]),
        )


@dataclass
class CacheStats:
    """Point-in-time statistics for a cache store."""

    hits: int = 0
    misses: int = 0
    total_size: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "total_size": self.total_size,
            "entry_count": self.entry_count,
        }


def estimate_size(value: Any) -> int:
    """Best-effort size of a value: UTF-8 length of its JSON encoding."""
    try:
        return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError):
        return UNKNOWN_SIZE_ESTIMATE


def generate_key(*parts: str) -> str:
    """Stable cache key from several identifying parts."""
    combined = "|".join(parts)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:32]


class TTLCacheStore:
    """
    Size-bounded key/value cache with per-entry TTL.

    All methods are synchronous, so a get/set pair never interleaves with
    another cache operation on the same event loop.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE_BYTES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        enable_persistent: bool = False,
        snapshot_path: str | None = None,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache store.

        Args:
            max_size: Soft cap on the summed size estimate of all entries (bytes)
            default_ttl: TTL applied when set() is called without one (seconds)
            enable_persistent: Restore entries from snapshot_path on construction
            snapshot_path: Default file for save_snapshot/load_snapshot
            cleanup_interval: Seconds between sweeps once the cleanup task runs
            clock: Source of the current time (epoch seconds)
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.snapshot_path = snapshot_path
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._cleanup_task: asyncio.Task | None = None

        if enable_persistent and snapshot_path:
            try:
                self.load_snapshot(snapshot_path)
            except CacheSnapshotError as e:
                logger.warning(f"Starting with an empty cache: {e}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def get(self, key: str) -> Any | None:
        """Get a value, or None when missing or expired."""
        entry = self._entries.get(key)

        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            self._remove(key)
            self._misses += 1
            return None

        self._hits += 1
        return entry.data

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, evicting the oldest entries if the size cap requires it."""
        size = estimate_size(value)

        # Replacing a key must not count its old size against the new one
        self._remove(key)
        self._ensure_space(size)

        self._entries[key] = CacheEntry(
            data=value,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
            size_bytes=size,
        )
        self._total_size += size

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns whether anything was removed."""
        return self._remove(key)

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        self._entries.clear()
        self._total_size = 0
        self._hits = 0
        self._misses = 0

    def evict_oldest(self, count: int) -> int:
        """Evict up to `count` entries with the smallest created_at."""
        evicted = 0
        for key, _ in self._by_age()[:max(count, 0)]:
            self._remove(key)
            evicted += 1
        return evicted

    def cleanup(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        return len(expired)

    def get_stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            total_size=self._total_size,
            entry_count=len(self._entries),
        )

    # -------------------------------------------------------------------------
    # Periodic sweep
    # -------------------------------------------------------------------------

    def start_cleanup_task(self) -> None:
        """Start sweeping expired entries every cleanup_interval seconds."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def stop_cleanup_task(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.cleanup()
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_snapshot(self, path: str | None = None) -> int:
        """
        Write all live entries to a JSON snapshot.

        Returns:
            Number of entries written

        Raises:
            CacheSnapshotError: If the snapshot path cannot be written
        """
        path = path or self.snapshot_path
        if not path:
            raise CacheSnapshotError("No snapshot path configured")

        now = self._clock()
        entries = {}
        for key, entry in self._entries.items():
            if entry.is_expired(now):
                continue
            try:
                json.dumps(entry.data)
            except (TypeError, ValueError):
                logger.debug(f"Skipping non-serializable cache entry {key}")
                continue
            entries[key] = entry.to_dict()

        data = {"version": SNAPSHOT_VERSION, "entries": entries}

        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            # Write atomically
            tmp_file = f"{path}.tmp"
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_file, path)
        except OSError as e:
            raise CacheSnapshotError(f"Failed to save cache snapshot to {path}: {e}") from e

        return len(entries)

    def load_snapshot(self, path: str | None = None) -> int:
        """
        Restore entries from a JSON snapshot, skipping expired ones.

        A missing or corrupt snapshot leaves the cache as it was.

        Returns:
            Number of entries restored

        Raises:
            CacheSnapshotError: If the snapshot path exists but cannot be read
        """
        path = path or self.snapshot_path
        if not path or not os.path.exists(path):
            return 0

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring corrupt cache snapshot {path}: {e}")
            return 0
        except OSError as e:
            raise CacheSnapshotError(f"Failed to load cache snapshot from {path}: {e}") from e

        if not isinstance(data, dict) or data.get("version") != SNAPSHOT_VERSION:
            logger.warning(f"Ignoring incompatible cache snapshot {path}")
            return 0

        raw_entries = data.get("entries")
        if not isinstance(raw_entries, dict):
            logger.warning(f"Ignoring corrupt cache snapshot {path}: no entries")
            return 0

        now = self._clock()
        restored: list[tuple[str, CacheEntry]] = []
        for key, raw in raw_entries.items():
            try:
                entry = CacheEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                continue
            if not entry.is_expired(now):
                restored.append((key, entry))

        # Oldest first so eviction order survives the round trip
        restored.sort(key=lambda item: item[1].created_at)
        for key, entry in restored:
            self._remove(key)
            self._ensure_space(entry.size_bytes)
            self._entries[key] = entry
            self._total_size += entry.size_bytes

        return len(restored)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_size -= entry.size_bytes
        return True

    def _by_age(self) -> list[tuple[str, CacheEntry]]:
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(self._entries.items(), key=lambda item: item[1].created_at)

    def _ensure_space(self, new_entry_size: int) -> None:
        if self._total_size + new_entry_size <= self.max_size:
            return

        for key, _ in self._by_age():
            self._remove(key)
            logger.debug(f"Evicted cache entry {key} to make room for {new_entry_size} bytes")
            if self._total_size + new_entry_size <= self.max_size:
                break
