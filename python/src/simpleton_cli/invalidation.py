"""
Invalidation wrappers over the TTL cache store.

Each wrapper keys entries by a stable identity (absolute path, fixed name)
and checks the live resource before trusting a hit:

- FileContentCache: file (mtime, size) must match the cached checkpoint
- DirectoryListingCache: directory mtime must match the cached checkpoint
- ServerStatusCache: TTL only (30s)

TTL still applies as a secondary bound for the stat-checked caches.
Callers pass put() the stat taken before reading; a stat taken after the
read could store content older than its checkpoint.

Known limitations:
- An edit that keeps both mtime and size identical (within the filesystem's
  timestamp resolution) is not detected.
- A directory's mtime changes when direct children are added, removed or
  renamed. Changes deeper in the tree, and some network filesystems, do not
  update it.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any

import aiofiles.os

from .cache_store import TTLCacheStore, generate_key

logger = logging.getLogger(__name__)


FILE_CONTENT_TTL_SECONDS = 5 * 60
DIRECTORY_LISTING_TTL_SECONDS = 10 * 60
SERVER_STATUS_TTL_SECONDS = 30


@dataclass
class FileCacheRecord:
    """File content plus the stat checkpoint taken when it was cached."""

    content: str
    mtime_ns: int
    size: int


@dataclass
class DirectoryListingRecord:
    """Directory listing plus the directory's mtime when it was cached."""

    files: list[str] = field(default_factory=list)
    mtime_ns: int = 0
    path: str = ""


class FileContentCache:
    """File contents keyed by absolute path, invalidated on (mtime, size) change."""

    def __init__(self, store: TTLCacheStore, ttl: float = FILE_CONTENT_TTL_SECONDS):
        self.store = store
        self.ttl = ttl
        self.stale_evictions = 0

    @staticmethod
    def key_for(path: str) -> str:
        return generate_key("file-content", os.path.abspath(path))

    async def get(self, path: str) -> str | None:
        """Return cached content if the file is unchanged, else None."""
        key = self.key_for(path)
        raw = self.store.get(key)
        if raw is None:
            return None

        try:
            record = FileCacheRecord(**raw)
        except TypeError:
            self.store.delete(key)
            return None

        try:
            stat = await aiofiles.os.stat(path)
        except OSError:
            # File doesn't exist anymore
            self._evict(key, path, "vanished")
            return None

        if stat.st_mtime_ns != record.mtime_ns or stat.st_size != record.size:
            self._evict(key, path, "modified")
            return None

        return record.content

    async def put(self, path: str, content: str, stat: os.stat_result | None = None) -> None:
        """
        Cache content under a stat checkpoint.

        Pass the stat taken before the content was read, so an edit that
        lands between the stat and the read is caught on the next get().
        Without one the file is stat-ed now (OSError if it is gone).
        """
        if stat is None:
            stat = await aiofiles.os.stat(path)
        record = FileCacheRecord(content=content, mtime_ns=stat.st_mtime_ns, size=stat.st_size)
        self.store.set(self.key_for(path), asdict(record), self.ttl)

    def invalidate(self, path: str) -> bool:
        return self.store.delete(self.key_for(path))

    def _evict(self, key: str, path: str, reason: str) -> None:
        self.store.delete(key)
        self.stale_evictions += 1
        logger.debug(f"Dropped cached content for {path} ({reason})")


class DirectoryListingCache:
    """Project file listings keyed by directory, invalidated on directory mtime change."""

    def __init__(self, store: TTLCacheStore, ttl: float = DIRECTORY_LISTING_TTL_SECONDS):
        self.store = store
        self.ttl = ttl
        self.stale_evictions = 0

    @staticmethod
    def key_for(directory: str) -> str:
        return generate_key("project-files", os.path.abspath(directory))

    async def get(self, directory: str) -> list[str] | None:
        key = self.key_for(directory)
        raw = self.store.get(key)
        if raw is None:
            return None

        try:
            record = DirectoryListingRecord(**raw)
        except TypeError:
            self.store.delete(key)
            return None

        try:
            stat = await aiofiles.os.stat(directory)
        except OSError:
            self._evict(key, directory, "vanished")
            return None

        if stat.st_mtime_ns != record.mtime_ns:
            self._evict(key, directory, "modified")
            return None

        return list(record.files)

    async def put(
        self, directory: str, files: list[str], stat: os.stat_result | None = None
    ) -> None:
        if stat is None:
            stat = await aiofiles.os.stat(directory)
        record = DirectoryListingRecord(
            files=list(files),
            mtime_ns=stat.st_mtime_ns,
            path=os.path.abspath(directory),
        )
        self.store.set(self.key_for(directory), asdict(record), self.ttl)

    def invalidate(self, directory: str) -> bool:
        return self.store.delete(self.key_for(directory))

    def _evict(self, key: str, directory: str, reason: str) -> None:
        self.store.delete(key)
        self.stale_evictions += 1
        logger.debug(f"Dropped cached listing for {directory} ({reason})")


class ServerStatusCache:
    """Very short-lived cache for the model server's status."""

    KEY = "server-status"

    def __init__(self, store: TTLCacheStore, ttl: float = SERVER_STATUS_TTL_SECONDS):
        self.store = store
        self.ttl = ttl

    def get(self) -> dict[str, Any] | None:
        return self.store.get(self.KEY)

    def put(self, status: dict[str, Any]) -> None:
        self.store.set(self.KEY, status, self.ttl)

    def invalidate(self) -> bool:
        return self.store.delete(self.KEY)
