"""
Model-server status and model recommendation.

The status is checked through the models route and kept in a 30 second
cache, so repeated checks during a session do not hit the server.
"""

import logging
from dataclasses import asdict, dataclass, field
from urllib.parse import urlparse

from .config import SimpletonConfig
from .errors import LLMClientError
from .invalidation import ServerStatusCache
from .llm_client import LLMClient

logger = logging.getLogger(__name__)


# Priority order for recommended coding models (including variations)
RECOMMENDED_MODELS = [
    "mistral:7b",
    "deepseek-coder:1.3b-q4_K_M",
    "deepseek-coder:6.7b-q4_K_M",
    "deepseek-coder:latest",
    "deepseek-coder",
    "deepseek-r1:32b",
    "deepseek-r1:latest",
    "deepseek-r1",
    "codellama:7b-q4_K_M",
    "codellama:7b",
    "codellama:latest",
    "codellama",
    "llama2:7b",
    "llama2:latest",
    "llama2",
    "gemma3:latest",
    "gemma3",
    "devstral:24b-small-2505-q4_K_M",
    "devstral:latest",
    "devstral",
]

CODING_KEYWORDS = ["coder", "code", "deepseek", "codellama", "devstral"]

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


@dataclass
class ServerStatus:
    is_running: bool = False
    installed_models: list[str] = field(default_factory=list)
    current_model: str | None = None


@dataclass
class ConfigurationReport:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


def recommend_model(installed_models: list[str]) -> str | None:
    """Pick the best installed model for coding, or None if nothing is installed."""
    for model in RECOMMENDED_MODELS:
        if model in installed_models:
            return model

    for keyword in CODING_KEYWORDS:
        for model in installed_models:
            if keyword in model.lower():
                return model

    return installed_models[0] if installed_models else None


class ServerStatusChecker:
    """Checks whether the model server is up and which models it has."""

    def __init__(self, client: LLMClient, cache: ServerStatusCache):
        self.client = client
        self.cache = cache

    async def check(self, force: bool = False) -> ServerStatus:
        if not force:
            cached = self.cache.get()
            if cached is not None:
                return ServerStatus(**cached)

        status = ServerStatus()
        try:
            status.installed_models = await self.client.list_models()
            status.is_running = True
        except LLMClientError as e:
            logger.debug(f"Model server not reachable: {e}")

        if self.client.model in status.installed_models:
            status.current_model = self.client.model

        self.cache.put(asdict(status))
        return status

    async def recommended_model(self) -> str | None:
        status = await self.check()
        if not status.is_running:
            return None
        return recommend_model(status.installed_models)


async def validate_configuration(
    config: SimpletonConfig,
    checker: ServerStatusChecker,
) -> ConfigurationReport:
    """Collect configuration problems and what to do about them."""
    issues = list(config.validate())
    recommendations: list[str] = []

    status = await checker.check()
    if not status.is_running:
        issues.append("Model server is not running")
        recommendations.append("Start the model server (e.g. `ollama serve`)")
    elif config.model not in status.installed_models:
        issues.append(f"Configured model '{config.model}' is not installed")
        recommendations.append(f"Install the model: ollama pull {config.model}")

    if urlparse(config.endpoint).hostname not in LOCAL_HOSTS:
        issues.append("Endpoint is not pointing to a local model server")
        recommendations.append("Set endpoint to http://localhost:11434/v1")

    return ConfigurationReport(
        is_valid=not issues,
        issues=issues,
        recommendations=recommendations,
    )
