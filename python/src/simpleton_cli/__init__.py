"""
Simpleton CLI core

Local coding assistant plumbing for OpenAI-compatible model servers
running on your own machine (Ollama and friends).

This package holds the parts with real systems behaviour:
- LLMClient: pooled HTTP client with response cache, streaming and batching
- TTLCacheStore: size-bounded TTL cache with optional JSON snapshots
- FileContentCache / DirectoryListingCache: mtime-checked cache wrappers
- FileManager: cached file reads and project listings
- PerformanceMonitor: per-operation timings fed by the client
- Session: wires one client and one shared cache together
"""

__version__ = "1.0.0"

from .cache_store import CacheStats, TTLCacheStore
from .config import SimpletonConfig, get_config
from .errors import (
    CacheSnapshotError,
    FileManagerError,
    LLMClientError,
    LLMErrorKind,
    SimpletonError,
)
from .file_manager import FileManager
from .invalidation import DirectoryListingCache, FileContentCache, ServerStatusCache
from .llm_client import LLMClient, fingerprint_request
from .models import (
    BatchRequest,
    ChatCompletionResponse,
    ChatMessage,
    ChatResult,
    ClientStatistics,
    ConnectionTestResult,
)
from .profiling import PerformanceMonitor
from .session import Session

__all__ = [
    "LLMClient",
    "fingerprint_request",
    "TTLCacheStore",
    "CacheStats",
    "FileContentCache",
    "DirectoryListingCache",
    "ServerStatusCache",
    "FileManager",
    "PerformanceMonitor",
    "Session",
    "SimpletonConfig",
    "get_config",
    "BatchRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "ChatResult",
    "ClientStatistics",
    "ConnectionTestResult",
    "SimpletonError",
    "LLMClientError",
    "LLMErrorKind",
    "CacheSnapshotError",
    "FileManagerError",
]
