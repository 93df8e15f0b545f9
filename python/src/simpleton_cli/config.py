"""
Configuration for Simpleton CLI

Environment Variables:
- SIMPLETON_ENDPOINT: OpenAI-compatible base URL (default: http://localhost:11434/v1)
- SIMPLETON_MODEL: Model to request (default: deepseek-coder:1.3b-q4_K_M)
- SIMPLETON_REQUEST_TIMEOUT: Seconds allowed for a non-streaming completion (default: 120)
- SIMPLETON_CONNECTION_TEST_TIMEOUT_MS: Deadline for the connectivity check (default: 10000)
- SIMPLETON_PERSISTENT_CACHE: Persist the file/project cache between runs (default: true)
- SIMPLETON_CACHE_DIR: Where the cache snapshot lives (default: ~/.ai-cli/cache)

Local model servers:
- Ollama exposes the OpenAI-compatible API at http://localhost:11434/v1
- Inference is GPU-bound and queued server side, so the pool is kept small
"""

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from dotenv import load_dotenv

load_dotenv()


DEFAULT_ENDPOINT = "http://localhost:11434/v1"
DEFAULT_MODEL = "deepseek-coder:1.3b-q4_K_M"

MIB = 1024 * 1024


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class SimpletonConfig:
    """Configuration for the LLM client and its caches."""

    # Model server
    endpoint: str = field(default_factory=lambda: os.getenv("SIMPLETON_ENDPOINT", DEFAULT_ENDPOINT))
    model: str = field(default_factory=lambda: os.getenv("SIMPLETON_MODEL", DEFAULT_MODEL))

    # Timeouts
    request_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("SIMPLETON_REQUEST_TIMEOUT", "120"))
    )
    connection_test_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("SIMPLETON_CONNECTION_TEST_TIMEOUT_MS", "10000"))
    )

    # Connection pool (one endpoint, small local server)
    max_connections: int = 5
    max_keepalive_connections: int = 2
    keepalive_expiry_seconds: float = 60.0

    # Response cache for identical non-streaming requests
    response_cache_ttl_seconds: float = 5 * 60
    response_cache_max_entries: int = 100
    response_cache_evict_batch: int = 20
    response_cache_max_bytes: int = 10 * MIB

    # Shared file/project cache
    cache_max_bytes: int = 50 * MIB
    cache_default_ttl_seconds: float = 10 * 60
    enable_persistent_cache: bool = field(
        default_factory=lambda: _env_bool("SIMPLETON_PERSISTENT_CACHE", "true")
    )
    cache_dir: str = field(
        default_factory=lambda: os.path.expanduser(
            os.getenv("SIMPLETON_CACHE_DIR", os.path.join("~", ".ai-cli", "cache"))
        )
    )
    cleanup_interval_seconds: float = 5 * 60

    batch_concurrency: int = 3

    @property
    def snapshot_path(self) -> str:
        """Location of the persisted file/project cache."""
        return os.path.join(self.cache_dir, "cache.json")

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.endpoint:
            errors.append("SIMPLETON_ENDPOINT must not be empty")
        elif urlparse(self.endpoint).scheme not in ("http", "https"):
            errors.append(f"Endpoint '{self.endpoint}' must be an http(s) URL")

        if not self.model:
            errors.append("SIMPLETON_MODEL must not be empty")

        if self.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be positive")

        if self.connection_test_timeout_ms <= 0:
            errors.append("connection_test_timeout_ms must be positive")

        if self.max_connections < 1:
            errors.append("max_connections must be at least 1")

        if self.max_keepalive_connections > self.max_connections:
            errors.append("max_keepalive_connections cannot exceed max_connections")

        if self.response_cache_max_entries < 1:
            errors.append("response_cache_max_entries must be at least 1")

        if self.batch_concurrency < 1:
            errors.append("batch_concurrency must be at least 1")

        return errors


def get_config() -> SimpletonConfig:
    """Get a configuration instance built from the environment."""
    return SimpletonConfig()
