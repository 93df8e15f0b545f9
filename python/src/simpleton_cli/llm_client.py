"""
LLM Client for Simpleton CLI.

Talks to a locally hosted OpenAI-compatible model server (Ollama etc.):
- Pooled keep-alive connections to a single endpoint (httpx)
- Response cache for identical non-streaming requests
- Streaming completions decoded from server-sent events
- Windowed batch execution
- Latency / token / error statistics
- Connectivity check with its own deadline

Errors are classified (model not found, unavailable, too large, rate
limited, connection refused, host not found, timeout) and raised to the
caller. Nothing is retried inside the client.

Response caching assumes identical requests may share an answer. That
is not true for sampling temperatures above zero; pass use_cache=False
where a fresh generation matters.
"""

import asyncio
import contextlib
import hashlib
import json
import logging
import socket
from typing import Any, AsyncIterator, Sequence

import httpx

from .cache_store import CacheStats, TTLCacheStore
from .config import SimpletonConfig
from .errors import (
    LLMClientError,
    LLMConnectionError,
    LLMErrorKind,
    LLMTimeoutError,
    ModelNotFoundError,
    PayloadTooLargeError,
    RateLimitedError,
    ServiceUnavailableError,
)
from .models import (
    BatchRequest,
    ChatCompletionResponse,
    ChatResult,
    ClientStatistics,
    ConnectionTestResult,
    MessageLike,
    Usage,
    normalize_messages,
)
from .profiling import LatencyTracker, PerformanceMonitor
from .streaming import SSEDecoder, decode_sse_stream

logger = logging.getLogger(__name__)


CHAT_COMPLETIONS_PATH = "/chat/completions"
MODELS_PATH = "/models"

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4000

_REFUSED_MARKERS = ("connection refused", "econnrefused", "actively refused")
_HOST_NOT_FOUND_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
    "enotfound",
)


def fingerprint_request(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
) -> str:
    """
    Deterministic cache key for a chat request.

    Message order is significant; dict key order is not.
    """
    canonical = json.dumps(
        {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


def classify_transport_error(exc: BaseException) -> LLMErrorKind:
    """Tell refused connections, unknown hosts and timeouts apart."""
    if isinstance(exc, httpx.TimeoutException):
        return LLMErrorKind.TIMEOUT

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return LLMErrorKind.CONNECTION_REFUSED
        if isinstance(current, socket.gaierror):
            return LLMErrorKind.HOST_NOT_FOUND
        current = current.__cause__ or current.__context__

    text = str(exc).lower()
    if any(marker in text for marker in _REFUSED_MARKERS):
        return LLMErrorKind.CONNECTION_REFUSED
    if any(marker in text for marker in _HOST_NOT_FOUND_MARKERS):
        return LLMErrorKind.HOST_NOT_FOUND
    return LLMErrorKind.GENERIC


class LLMClient:
    """Chat-completion client bound to one endpoint and one model."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        config: SimpletonConfig | None = None,
        response_cache: TTLCacheStore | None = None,
        monitor: PerformanceMonitor | None = None,
    ):
        if config is None:
            config = SimpletonConfig(endpoint=endpoint, model=model)
        self.config = config
        self._endpoint = endpoint.rstrip("/")
        self._model = model

        # One keep-alive pool per client
        self._http_client = httpx.AsyncClient(
            base_url=self._endpoint,
            timeout=httpx.Timeout(self.config.request_timeout_seconds),
            limits=httpx.Limits(
                max_connections=self.config.max_connections,
                max_keepalive_connections=self.config.max_keepalive_connections,
                keepalive_expiry=self.config.keepalive_expiry_seconds,
            ),
            headers={"Content-Type": "application/json"},
        )

        if response_cache is None:
            response_cache = TTLCacheStore(
                max_size=self.config.response_cache_max_bytes,
                default_ttl=self.config.response_cache_ttl_seconds,
                cleanup_interval=self.config.cleanup_interval_seconds,
            )
        self._response_cache = response_cache
        self.monitor = monitor
        self._stats = ClientStatistics()

    @classmethod
    def from_config(
        cls,
        config: SimpletonConfig,
        monitor: PerformanceMonitor | None = None,
    ) -> "LLMClient":
        return cls(config.endpoint, config.model, config=config, monitor=monitor)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def model(self) -> str:
        return self._model

    async def __aenter__(self) -> "LLMClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def start(self) -> None:
        """Start sweeping expired responses (needs a running event loop)."""
        self._response_cache.start_cleanup_task()

    async def aclose(self) -> None:
        """Stop the cache sweep and close pooled connections."""
        await self._response_cache.stop_cleanup_task()
        await self._http_client.aclose()

    # -------------------------------------------------------------------------
    # Chat completions
    # -------------------------------------------------------------------------

    async def chat_completion(
        self,
        messages: Sequence[MessageLike],
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        use_cache: bool = True,
    ) -> ChatCompletionResponse:
        """
        Run a non-streaming chat completion.

        Args:
            messages: Non-empty, ordered role-tagged messages
            temperature: Sampling temperature
            max_tokens: Maximum response tokens
            use_cache: Reuse/store the response for identical requests

        Returns:
            The parsed completion

        Raises:
            LLMClientError: Classified network or server failure
        """
        request = self._build_request(messages, temperature, max_tokens, stream=False)

        cache_key = None
        if use_cache:
            cache_key = fingerprint_request(
                request["model"], request["messages"], temperature, max_tokens
            )
            cached = self._response_cache.get(cache_key)
            if cached is not None:
                self._stats.cache_hits += 1
                return ChatCompletionResponse.from_dict(cached)

        self._stats.request_count += 1
        try:
            with LatencyTracker("chat_completion", monitor=self.monitor) as tracker:
                response = await self._http_client.post(CHAT_COMPLETIONS_PATH, json=request)
                tracker.success = not response.is_error
        except httpx.TransportError as e:
            self._stats.error_count += 1
            raise self._transport_error(e) from e

        self._stats.record_response_time(tracker.elapsed_ms)

        if response.is_error:
            self._stats.error_count += 1
            raise self._status_error(response)

        try:
            data = response.json()
        except ValueError as e:
            self._stats.error_count += 1
            raise LLMClientError(
                f"LLM API returned invalid JSON: {e}", status_code=response.status_code
            ) from e

        try:
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")
            completion = ChatCompletionResponse.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            self._stats.error_count += 1
            raise LLMClientError(
                "LLM API returned an unexpected payload", status_code=response.status_code
            ) from e

        self._stats.total_tokens += completion.usage.total_tokens

        if cache_key is not None:
            self._store_response(cache_key, data)

        return completion

    async def try_chat_completion(
        self,
        messages: Sequence[MessageLike],
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        use_cache: bool = True,
    ) -> ChatResult:
        """Like chat_completion, but returns the classified error instead of raising it."""
        try:
            response = await self.chat_completion(
                messages, temperature=temperature, max_tokens=max_tokens, use_cache=use_cache
            )
        except LLMClientError as e:
            return ChatResult(error=e)
        return ChatResult(response=response)

    async def stream_chat_completion(
        self,
        messages: Sequence[MessageLike],
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> AsyncIterator[str]:
        """
        Stream content tokens of a chat completion.

        Streamed answers are never cached and have no read timeout; the
        consumer is the only cancellation point. Closing the generator
        early (break + aclose) releases the connection.
        """
        request = self._build_request(messages, temperature, max_tokens, stream=True)
        http_request = self._http_client.build_request(
            "POST",
            CHAT_COMPLETIONS_PATH,
            json=request,
            timeout=httpx.Timeout(None, connect=self.config.request_timeout_seconds),
        )

        self._stats.request_count += 1
        try:
            with LatencyTracker("stream_chat_completion", monitor=self.monitor) as tracker:
                response = await self._http_client.send(http_request, stream=True)
                tracker.success = not response.is_error
        except httpx.TransportError as e:
            self._stats.error_count += 1
            raise self._transport_error(e) from e

        self._stats.record_response_time(tracker.elapsed_ms)

        decoder = SSEDecoder()
        try:
            if response.is_error:
                await response.aread()
                self._stats.error_count += 1
                raise self._status_error(response)

            async with contextlib.aclosing(
                decode_sse_stream(response.aiter_text(), decoder)
            ) as tokens:
                async for token in tokens:
                    yield token
        except httpx.TransportError as e:
            self._stats.error_count += 1
            raise self._transport_error(e) from e
        finally:
            await response.aclose()
            self._stats.malformed_frames += decoder.malformed_frames
            if decoder.usage:
                try:
                    self._stats.total_tokens += Usage.from_dict(decoder.usage).total_tokens
                except (TypeError, ValueError):
                    self._stats.malformed_frames += 1

    async def batch_chat_completion(
        self,
        requests: Sequence[BatchRequest],
        concurrency: int | None = None,
    ) -> list[ChatCompletionResponse]:
        """
        Run independent completions, at most `concurrency` in flight.

        Requests are issued in consecutive windows; a window starts only
        after the previous one has fully resolved. Results keep input
        order. The first failure cancels the rest of its window and
        propagates; no partial results are returned.
        """
        concurrency = concurrency or self.config.batch_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        results: list[ChatCompletionResponse] = []
        for start in range(0, len(requests), concurrency):
            window = requests[start:start + concurrency]
            tasks = [
                asyncio.ensure_future(self.chat_completion(
                    req.messages,
                    temperature=req.temperature,
                    max_tokens=req.max_tokens,
                    use_cache=req.use_cache,
                ))
                for req in window
            ]
            try:
                window_results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                # Wait for cancellation and collect any second failure
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            results.extend(window_results)

        return results

    # -------------------------------------------------------------------------
    # Connectivity
    # -------------------------------------------------------------------------

    async def test_connection(self, timeout_ms: int | None = None) -> ConnectionTestResult:
        """
        Check the models route with its own deadline.

        Never raises for timeouts, refused connections, unknown hosts or
        HTTP errors; the error string says which one happened.
        """
        if timeout_ms is None:
            timeout_ms = self.config.connection_test_timeout_ms
        timeout_seconds = timeout_ms / 1000

        try:
            response = await asyncio.wait_for(
                self._http_client.get(MODELS_PATH, timeout=httpx.Timeout(timeout_seconds)),
                timeout=timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ConnectionTestResult(success=False, error="Connection timed out", timed_out=True)
        except httpx.TransportError as e:
            error = self._transport_error(e)
            return ConnectionTestResult(success=False, error=error.message)

        if response.status_code == 200:
            return ConnectionTestResult(success=True)

        return ConnectionTestResult(
            success=False,
            error=f"HTTP {response.status_code}: {response.reason_phrase}",
        )

    async def list_models(self) -> list[str]:
        """Model ids the server reports as installed."""
        try:
            response = await self._http_client.get(MODELS_PATH)
        except httpx.TransportError as e:
            raise self._transport_error(e) from e

        if response.is_error:
            raise self._status_error(response, model_route=False)

        try:
            data = response.json()
        except ValueError as e:
            raise LLMClientError(f"Models listing returned invalid JSON: {e}") from e

        models = data.get("data") if isinstance(data, dict) else None
        return [
            str(item["id"])
            for item in models or []
            if isinstance(item, dict) and "id" in item
        ]

    # -------------------------------------------------------------------------
    # Statistics and cache
    # -------------------------------------------------------------------------

    def get_stats(self) -> ClientStatistics:
        """Snapshot of the client statistics."""
        return ClientStatistics(**vars(self._stats))

    def reset_stats(self) -> None:
        self._stats = ClientStatistics()

    def clear_cache(self) -> None:
        """Drop cached responses. Statistics are kept."""
        self._response_cache.clear()

    def get_cache_stats(self) -> CacheStats:
        return self._response_cache.get_stats()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _build_request(
        self,
        messages: Sequence[MessageLike],
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": normalize_messages(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }

    def _store_response(self, key: str, data: dict[str, Any]) -> None:
        self._response_cache.set(key, data, self.config.response_cache_ttl_seconds)

        # Count bound on top of the byte bound
        if len(self._response_cache) > self.config.response_cache_max_entries:
            evicted = self._response_cache.evict_oldest(self.config.response_cache_evict_batch)
            logger.debug(f"Response cache over {self.config.response_cache_max_entries} entries, evicted {evicted}")

    @staticmethod
    def _server_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        return response.text or response.reason_phrase

    def _status_error(self, response: httpx.Response, model_route: bool = True) -> LLMClientError:
        status = response.status_code
        server_message = self._server_message(response)
        details = {"status_code": status, "server_message": server_message}

        if status == 404 and model_route:
            return ModelNotFoundError(
                f"Model '{self._model}' not found. Please check if the model is installed.",
                **details,
            )
        if status == 503:
            return ServiceUnavailableError(
                "LLM service is temporarily unavailable. Please try again later.", **details
            )
        if status == 413:
            return PayloadTooLargeError(
                "Request too large. Try reducing the message length or max_tokens.", **details
            )
        if status == 429:
            return RateLimitedError(
                "Rate limit exceeded. Please wait a moment before trying again.", **details
            )
        return LLMClientError(f"LLM API error ({status}): {server_message}", **details)

    def _transport_error(self, exc: httpx.TransportError) -> LLMClientError:
        kind = classify_transport_error(exc)

        if kind is LLMErrorKind.TIMEOUT:
            return LLMTimeoutError(f"Request to {self._endpoint} timed out")
        if kind is LLMErrorKind.CONNECTION_REFUSED:
            return LLMConnectionError(
                f"Connection refused - model server not running at {self._endpoint}",
                kind=kind,
            )
        if kind is LLMErrorKind.HOST_NOT_FOUND:
            return LLMConnectionError(
                f"Host not found - check endpoint URL ({self._endpoint})",
                kind=kind,
            )
        return LLMConnectionError(f"Connection to {self._endpoint} failed: {exc}", kind=kind)
