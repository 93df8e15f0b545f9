"""Exceptions raised by the Simpleton CLI core."""

from enum import Enum
from typing import Any


class SimpletonError(Exception):
    """Base exception for all Simpleton errors."""


class LLMErrorKind(str, Enum):
    """Classification of a failed model-server call."""

    MODEL_NOT_FOUND = "model_not_found"
    SERVICE_UNAVAILABLE = "service_unavailable"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    RATE_LIMITED = "rate_limited"
    CONNECTION_REFUSED = "connection_refused"
    HOST_NOT_FOUND = "host_not_found"
    TIMEOUT = "timeout"
    GENERIC = "generic"


class LLMClientError(SimpletonError):
    """A chat-completion or connectivity check failed."""

    kind = LLMErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        *,
        kind: LLMErrorKind | None = None,
        status_code: int | None = None,
        server_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.status_code = status_code
        self.server_message = server_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "server_message": self.server_message,
        }


class ModelNotFoundError(LLMClientError):
    """HTTP 404: the configured model is not installed on the server."""

    kind = LLMErrorKind.MODEL_NOT_FOUND


class ServiceUnavailableError(LLMClientError):
    """HTTP 503."""

    kind = LLMErrorKind.SERVICE_UNAVAILABLE


class PayloadTooLargeError(LLMClientError):
    """HTTP 413."""

    kind = LLMErrorKind.PAYLOAD_TOO_LARGE


class RateLimitedError(LLMClientError):
    """HTTP 429."""

    kind = LLMErrorKind.RATE_LIMITED


class LLMConnectionError(LLMClientError):
    """The endpoint could not be reached (refused, unknown host, reset)."""


class LLMTimeoutError(LLMClientError):
    """The request did not complete before its deadline."""

    kind = LLMErrorKind.TIMEOUT


class CacheSnapshotError(SimpletonError):
    """A cache snapshot could not be written to or read from its path."""


class FileManagerError(SimpletonError):
    """A filesystem operation failed."""
