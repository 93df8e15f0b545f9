"""
Server-sent-event decoding for streamed chat completions.

The transport delivers arbitrary text chunks; frames are `data: {json}`
lines that may be split anywhere, so a carry-over buffer holds the
trailing partial line between chunks. `data: [DONE]` ends the stream.
"""

import json
from typing import Any, AsyncIterable, AsyncIterator

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Incremental decoder from raw text chunks to content tokens."""

    def __init__(self):
        self._buffer = ""
        self.done = False
        self.malformed_frames = 0
        self.usage: dict[str, Any] | None = None

    def feed(self, chunk: str) -> list[str]:
        """Consume a chunk and return the tokens of every line it completes."""
        if self.done:
            return []

        self._buffer += chunk
        lines = self._buffer.split("\n")
        # Keep the last incomplete line in buffer
        self._buffer = lines.pop()

        tokens = []
        for line in lines:
            token = self._decode_line(line)
            if self.done:
                self._buffer = ""
                break
            if token:
                tokens.append(token)
        return tokens

    def flush(self) -> list[str]:
        """Decode a final line the transport ended without a newline."""
        if self.done or not self._buffer:
            return []
        line, self._buffer = self._buffer, ""
        token = self._decode_line(line)
        return [token] if token else []

    def _decode_line(self, line: str) -> str | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            self.done = True
            return None

        try:
            frame = json.loads(data)
            delta = frame["choices"][0]["delta"] if frame.get("choices") else {}
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            # One bad frame must not abort a long generation
            self.malformed_frames += 1
            return None

        if isinstance(frame.get("usage"), dict):
            self.usage = frame["usage"]

        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) and content else None


async def decode_sse_stream(
    chunks: AsyncIterable[str],
    decoder: SSEDecoder | None = None,
) -> AsyncIterator[str]:
    """Yield content tokens from an async iterable of text chunks."""
    if decoder is None:
        decoder = SSEDecoder()
    async for chunk in chunks:
        for token in decoder.feed(chunk):
            yield token
        if decoder.done:
            return
    for token in decoder.flush():
        yield token
