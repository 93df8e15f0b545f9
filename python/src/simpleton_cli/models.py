"""
Record types for the LLM client.

Wire shapes follow the OpenAI-compatible chat-completions contract:
request {model, messages:[{role, content}], temperature, max_tokens, stream},
response {id, object, created, model, choices[].message, usage}.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from .errors import LLMClientError

Role = Literal["system", "user", "assistant"]

EMA_ALPHA = 0.1  # Weight of the newest sample in avg_response_time


@dataclass
class ChatMessage:
    """A role-tagged chat message."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


MessageLike = ChatMessage | Mapping[str, Any]


def normalize_messages(messages: Sequence[MessageLike]) -> list[dict[str, str]]:
    """Convert messages to wire dicts, preserving order."""
    if not messages:
        raise ValueError("messages must contain at least one message")

    result = []
    for msg in messages:
        if isinstance(msg, ChatMessage):
            result.append(msg.to_dict())
        else:
            result.append({"role": str(msg["role"]), "content": str(msg["content"])})
    return result


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> "Usage":
        raw = raw or {}
        return cls(
            prompt_tokens=int(raw.get("prompt_tokens") or 0),
            completion_tokens=int(raw.get("completion_tokens") or 0),
            total_tokens=int(raw.get("total_tokens") or 0),
        )


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: str | None = None


@dataclass
class ChatCompletionResponse:
    """A non-streaming chat completion, with the raw payload kept verbatim."""

    id: str
    object: str
    created: int
    model: str
    choices: list[ChatChoice]
    usage: Usage
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def content(self) -> str:
        """Text of the first choice ('' when the server returned none)."""
        return self.choices[0].message.content if self.choices else ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ChatCompletionResponse":
        choices = []
        for i, choice in enumerate(raw.get("choices") or []):
            message = choice.get("message") or {}
            choices.append(ChatChoice(
                index=int(choice.get("index", i)),
                message=ChatMessage(
                    role=message.get("role", "assistant"),
                    content=message.get("content") or "",
                ),
                finish_reason=choice.get("finish_reason"),
            ))

        return cls(
            id=str(raw.get("id", "")),
            object=str(raw.get("object", "chat.completion")),
            created=int(raw.get("created") or 0),
            model=str(raw.get("model", "")),
            choices=choices,
            usage=Usage.from_dict(raw.get("usage")),
            raw=dict(raw),
        )

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


@dataclass
class ClientStatistics:
    """Running counters for one LLM client instance."""

    request_count: int = 0
    total_tokens: int = 0
    avg_response_time: float = 0.0  # Milliseconds, exponentially smoothed
    error_count: int = 0
    cache_hits: int = 0
    malformed_frames: int = 0
    latency_samples: int = 0

    def record_response_time(self, duration_ms: float) -> None:
        if self.latency_samples == 0:
            self.avg_response_time = duration_ms
        else:
            self.avg_response_time = (
                EMA_ALPHA * duration_ms + (1 - EMA_ALPHA) * self.avg_response_time
            )
        self.latency_samples += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_count": self.request_count,
            "total_tokens": self.total_tokens,
            "avg_response_time_ms": round(self.avg_response_time, 1),
            "error_count": self.error_count,
            "cache_hits": self.cache_hits,
            "malformed_frames": self.malformed_frames,
        }


@dataclass
class ConnectionTestResult:
    success: bool
    error: str | None = None
    timed_out: bool = False


@dataclass
class BatchRequest:
    """One entry of a batch_chat_completion call."""

    messages: Sequence[MessageLike]
    temperature: float = 0.7
    max_tokens: int = 4000
    use_cache: bool = True


@dataclass
class ChatResult:
    """Tagged result: either a response or the classified error."""

    response: ChatCompletionResponse | None = None
    error: LLMClientError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
