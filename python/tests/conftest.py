"""
Pytest configuration and fixtures for Simpleton CLI tests.
"""

import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
import respx

from simpleton_cli.cache_store import TTLCacheStore
from simpleton_cli.config import SimpletonConfig
from simpleton_cli.llm_client import LLMClient

ENDPOINT = "http://localhost:11434/v1"
CHAT_URL = f"{ENDPOINT}/chat/completions"
MODELS_URL = f"{ENDPOINT}/models"
TEST_MODEL = "foo:7b"


class FakeClock:
    """Manually advanced replacement for time.time()."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def simpleton_config(temp_dir: Path) -> SimpletonConfig:
    """Create a test configuration that never touches the real home directory."""
    return SimpletonConfig(
        endpoint=ENDPOINT,
        model=TEST_MODEL,
        enable_persistent_cache=False,
        cache_dir=str(temp_dir / "cache"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_store(clock: FakeClock) -> TTLCacheStore:
    """Create a small cache store driven by the fake clock."""
    return TTLCacheStore(max_size=10_000, default_ttl=60, clock=clock)


@pytest_asyncio.fixture
async def llm_client(simpleton_config: SimpletonConfig) -> AsyncGenerator[LLMClient, None]:
    """Create an LLM client and close its pool afterwards."""
    client = LLMClient(ENDPOINT, TEST_MODEL, config=simpleton_config)
    yield client
    await client.aclose()


@pytest.fixture
def mock_server() -> Generator[respx.MockRouter, None, None]:
    """Intercept all HTTP traffic to the model server."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def sample_files(temp_dir: Path) -> dict[str, Path]:
    """Create a small project tree."""
    files = {}

    project = temp_dir / "project"
    (project / "src" / "utils").mkdir(parents=True)
    (project / "node_modules" / "left-pad").mkdir(parents=True)

    files["index"] = project / "src" / "index.ts"
    files["index"].write_text("export const answer = 42;\n")

    files["helpers"] = project / "src" / "utils" / "helpers.js"
    files["helpers"].write_text("module.exports = { add: (a, b) => a + b };\n")

    files["readme"] = project / "README.md"
    files["readme"].write_text("# Sample Project\n")

    files["binary"] = project / "logo.png"
    files["binary"].write_bytes(b"\x89PNG\r\n")

    files["vendored"] = project / "node_modules" / "left-pad" / "index.js"
    files["vendored"].write_text("module.exports = () => {};\n")

    files["project"] = project
    return files


def make_completion(content: str = "This is a test response from the LLM.", total_tokens: int = 150) -> dict:
    """Build an OpenAI-compatible chat completion payload."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1234567890,
        "model": TEST_MODEL,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {
            "prompt_tokens": total_tokens - 50,
            "completion_tokens": 50,
            "total_tokens": total_tokens,
        },
    }


def sse_frame(content: str) -> str:
    """One streamed delta frame."""
    return (
        'data: {"id":"chatcmpl-test","object":"chat.completion.chunk","created":1234567890,'
        f'"model":"{TEST_MODEL}","choices":[{{"index":0,"delta":{{"content":"{content}"}},'
        '"finish_reason":null}]}\n\n'
    )


@pytest.fixture
def mock_llm_response() -> dict:
    return make_completion()
