"""
Tests for server-sent-event decoding.
"""

import pytest

from simpleton_cli.streaming import SSEDecoder, decode_sse_stream

from conftest import sse_frame


STREAM = (
    sse_frame("Hel")
    + sse_frame("lo, ")
    + ": keep-alive comment\n\n"
    + sse_frame("world")
    + "data: [DONE]\n\n"
)


async def _chunks(parts):
    for part in parts:
        yield part


async def _collect(parts, decoder=None) -> list[str]:
    return [token async for token in decode_sse_stream(_chunks(parts), decoder)]


class TestSSEDecoder:
    """Tests for incremental frame reassembly."""

    def test_whole_stream_in_one_chunk(self):
        decoder = SSEDecoder()

        assert decoder.feed(STREAM) == ["Hel", "lo, ", "world"]
        assert decoder.done is True
        assert decoder.malformed_frames == 0

    def test_every_split_point_yields_same_tokens(self):
        for split in range(len(STREAM) + 1):
            decoder = SSEDecoder()
            tokens = decoder.feed(STREAM[:split]) + decoder.feed(STREAM[split:])

            assert tokens == ["Hel", "lo, ", "world"], f"split at {split}"
            assert decoder.done is True

    def test_one_character_chunks(self):
        decoder = SSEDecoder()
        tokens = []
        for char in STREAM:
            tokens.extend(decoder.feed(char))

        assert tokens == ["Hel", "lo, ", "world"]

    def test_crlf_line_endings(self):
        decoder = SSEDecoder()
        stream = sse_frame("a").replace("\n", "\r\n") + "data: [DONE]\r\n\r\n"

        assert decoder.feed(stream) == ["a"]
        assert decoder.done is True

    def test_done_stops_decoding(self):
        decoder = SSEDecoder()

        tokens = decoder.feed(sse_frame("a") + "data: [DONE]\n\n" + sse_frame("late"))

        assert tokens == ["a"]
        assert decoder.feed(sse_frame("later")) == []

    def test_malformed_frame_is_skipped_and_counted(self):
        decoder = SSEDecoder()

        tokens = decoder.feed(
            sse_frame("a")
            + "data: {not json\n\n"
            + 'data: {"choices": "nope"}\n\n'
            + sse_frame("b")
        )

        assert tokens == ["a", "b"]
        assert decoder.malformed_frames == 2

    def test_role_only_and_empty_deltas_yield_nothing(self):
        decoder = SSEDecoder()

        tokens = decoder.feed(
            'data: {"choices":[{"index":0,"delta":{"role":"assistant"}}]}\n\n'
            'data: {"choices":[{"index":0,"delta":{"content":""}}]}\n\n'
        )

        assert tokens == []
        assert decoder.malformed_frames == 0

    def test_usage_frame_is_captured(self):
        decoder = SSEDecoder()

        decoder.feed(
            'data: {"choices":[],"usage":{"prompt_tokens":5,"completion_tokens":7,"total_tokens":12}}\n\n'
        )

        assert decoder.usage == {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12}

    def test_flush_decodes_unterminated_last_line(self):
        decoder = SSEDecoder()

        assert decoder.feed(sse_frame("a") + sse_frame("b").rstrip("\n")) == ["a"]
        assert decoder.flush() == ["b"]
        assert decoder.flush() == []

    def test_flush_after_done_is_empty(self):
        decoder = SSEDecoder()
        decoder.feed("data: [DONE]")

        assert decoder.flush() == []
        assert decoder.done is True


class TestDecodeSSEStream:
    """Tests for the async wrapper."""

    @pytest.mark.asyncio
    async def test_tokens_across_chunks(self):
        parts = [STREAM[i:i + 7] for i in range(0, len(STREAM), 7)]

        assert await _collect(parts) == ["Hel", "lo, ", "world"]

    @pytest.mark.asyncio
    async def test_stops_reading_after_done(self):
        consumed = []

        async def chunks():
            for part in (sse_frame("a"), "data: [DONE]\n\n", sse_frame("never")):
                consumed.append(part)
                yield part

        tokens = [token async for token in decode_sse_stream(chunks())]

        assert tokens == ["a"]
        assert len(consumed) == 2

    @pytest.mark.asyncio
    async def test_stream_without_done_is_flushed(self):
        decoder = SSEDecoder()

        tokens = await _collect([sse_frame("a"), sse_frame("b").rstrip("\n")], decoder)

        assert tokens == ["a", "b"]
        assert decoder.done is False
