"""
Session wiring for Simpleton CLI.

A Session owns every cache and client for one run: the LLM client with
its private response cache, and one shared store backing file contents,
project listings and server status. Nothing is module-global.
"""

import logging

from .cache_store import TTLCacheStore
from .config import SimpletonConfig
from .errors import CacheSnapshotError
from .file_manager import FileManager
from .invalidation import DirectoryListingCache, FileContentCache, ServerStatusCache
from .llm_client import LLMClient
from .profiling import PerformanceMonitor
from .server_status import ServerStatusChecker

logger = logging.getLogger(__name__)


class Session:
    """Owns the LLM client, the shared cache and the collaborators built on them."""

    def __init__(
        self,
        config: SimpletonConfig | None = None,
        monitor: PerformanceMonitor | None = None,
    ):
        self.config = config if config is not None else SimpletonConfig()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()

        self.cache = TTLCacheStore(
            max_size=self.config.cache_max_bytes,
            default_ttl=self.config.cache_default_ttl_seconds,
            enable_persistent=self.config.enable_persistent_cache,
            snapshot_path=self.config.snapshot_path,
            cleanup_interval=self.config.cleanup_interval_seconds,
        )
        self.client = LLMClient.from_config(self.config, monitor=self.monitor)

        self.file_cache = FileContentCache(self.cache)
        self.listing_cache = DirectoryListingCache(self.cache)
        self.status_cache = ServerStatusCache(self.cache)

        self.files = FileManager(content_cache=self.file_cache, listing_cache=self.listing_cache)
        self.status = ServerStatusChecker(self.client, self.status_cache)

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Start periodic sweeps of expired cache entries."""
        self.cache.start_cleanup_task()
        self.client.start()

    async def close(self) -> None:
        """Stop sweeps, persist the shared cache if enabled, close the pool."""
        try:
            await self.cache.stop_cleanup_task()

            if self.config.enable_persistent_cache:
                try:
                    saved = self.cache.save_snapshot()
                    logger.debug(f"Saved {saved} cache entries to {self.config.snapshot_path}")
                except CacheSnapshotError as e:
                    logger.warning(f"Cache not persisted: {e}")
        finally:
            await self.client.aclose()
