"""
File Manager for Simpleton CLI

Filesystem access used by the agent: reading, writing and listing
project files. Reads and listings go through the invalidation caches
when they are provided.

- Async file I/O with aiofiles (non-blocking)
- Directory walks run in a worker thread
- Symlink loop detection
- Walk errors are tolerated and counted
"""

import asyncio
import fnmatch
import logging
import os
import shutil
from pathlib import Path
from stat import S_ISDIR

import aiofiles
import aiofiles.os

from .errors import FileManagerError
from .invalidation import DirectoryListingCache, FileContentCache

logger = logging.getLogger(__name__)


DEFAULT_PATTERNS = (
    "*.js", "*.ts", "*.jsx", "*.tsx", "*.json", "*.md", "*.txt",
    "*.yml", "*.yaml", "*.html", "*.css", "*.scss", "*.py",
)

DEFAULT_IGNORED_DIRS = frozenset({
    "node_modules", "dist", "build", ".git", "coverage", ".next", ".nuxt",
})


class FileManager:
    """
    Reads, writes and lists files for the agent.

    Features:
    - Cached reads invalidated by (mtime, size)
    - Cached project listings invalidated by directory mtime
    - Extension patterns and skipped directories for listings
    """

    def __init__(
        self,
        content_cache: FileContentCache | None = None,
        listing_cache: DirectoryListingCache | None = None,
        patterns: tuple[str, ...] = DEFAULT_PATTERNS,
        ignored_dirs: frozenset[str] = DEFAULT_IGNORED_DIRS,
    ):
        self.content_cache = content_cache
        self.listing_cache = listing_cache
        self.patterns = patterns
        self.ignored_dirs = ignored_dirs
        self.walk_errors = 0

    async def read_file(self, path: str) -> str:
        """Read a text file, serving unchanged files from cache."""
        if self.content_cache is not None:
            cached = await self.content_cache.get(path)
            if cached is not None:
                return cached

        try:
            # Checkpoint first; a later edit then shows up as a mismatch
            stat = await aiofiles.os.stat(path)
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise FileManagerError(f"Failed to read file {path}: {e}") from e

        if self.content_cache is not None:
            await self.content_cache.put(path, content, stat=stat)

        return content

    async def write_file(self, path: str, content: str) -> None:
        """Write a text file, creating parent directories as needed."""
        try:
            directory = os.path.dirname(path)
            if directory:
                await aiofiles.os.makedirs(directory, exist_ok=True)
            async with aiofiles.open(path, mode="w", encoding="utf-8") as f:
                await f.write(content)
        except OSError as e:
            raise FileManagerError(f"Failed to write file {path}: {e}") from e

        if self.content_cache is not None:
            self.content_cache.invalidate(path)

    async def list_files(self, directory: str) -> list[str]:
        """Sorted paths (relative to directory) of files matching the patterns."""
        if self.listing_cache is not None:
            cached = await self.listing_cache.get(directory)
            if cached is not None:
                return cached

        try:
            stat = await aiofiles.os.stat(directory)
        except OSError as e:
            raise FileManagerError(f"Failed to list files in {directory}: {e}") from e
        if not S_ISDIR(stat.st_mode):
            raise FileManagerError(f"Failed to list files in {directory}: not a directory")

        files = await asyncio.to_thread(self._walk_directory_sync, Path(directory))

        if self.listing_cache is not None:
            await self.listing_cache.put(directory, files, stat=stat)

        return files

    async def file_exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(path)

    async def get_file_stats(self, path: str) -> os.stat_result:
        try:
            return await aiofiles.os.stat(path)
        except OSError as e:
            raise FileManagerError(f"Failed to get stats for {path}: {e}") from e

    async def delete_file(self, path: str) -> None:
        try:
            if await aiofiles.os.path.isdir(path):
                await asyncio.to_thread(shutil.rmtree, path)
            else:
                await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FileManagerError(f"Failed to delete file {path}: {e}") from e

        if self.content_cache is not None:
            self.content_cache.invalidate(path)

    async def copy_file(self, source: str, destination: str) -> None:
        try:
            directory = os.path.dirname(destination)
            if directory:
                await aiofiles.os.makedirs(directory, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, source, destination)
        except OSError as e:
            raise FileManagerError(
                f"Failed to copy file from {source} to {destination}: {e}"
            ) from e

        if self.content_cache is not None:
            self.content_cache.invalidate(destination)

    def should_skip_directory(self, dir_name: str) -> bool:
        return dir_name in self.ignored_dirs

    def should_include_file(self, file_name: str) -> bool:
        return any(fnmatch.fnmatch(file_name, pattern) for pattern in self.patterns)

    def _walk_directory_sync(self, root: Path) -> list[str]:
        """Walk the tree once, with symlink loop detection."""
        results: list[str] = []
        visited: set[str] = set()
        stack = [root]

        while stack:
            directory = stack.pop()
            try:
                resolved = str(directory.resolve())
                if resolved in visited:
                    continue  # Symlink loop detected
                visited.add(resolved)
                items = list(directory.iterdir())
            except OSError as e:
                self.walk_errors += 1
                logger.debug(f"Skipping unreadable directory {directory}: {e}")
                continue

            for item in items:
                try:
                    if item.is_dir():
                        if not self.should_skip_directory(item.name):
                            stack.append(item)
                    elif item.is_file() and self.should_include_file(item.name):
                        results.append(item.relative_to(root).as_posix())
                except OSError as e:
                    self.walk_errors += 1
                    logger.debug(f"Skipping {item}: {e}")

        return sorted(results)
