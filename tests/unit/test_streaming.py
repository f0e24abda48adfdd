"""
Unit tests for the streaming decoder.
"""

import aiohttp
import pytest

from inference_core.llm.interfaces.llm_provider_interface import LLMConnectionError
from inference_core.llm.streaming import (
    StreamDecoder,
    StreamFraming,
    extract_text,
    extract_usage,
    is_final_frame
)


async def _lines(*lines, error=None):
    for line in lines:
        yield line.encode("utf-8")
    if error is not None:
        raise error


async def _decode(framing, *lines, error=None, prompt_tokens=0):
    decoder = StreamDecoder(framing, provider_id="test", prompt_tokens=prompt_tokens)
    return [chunk async for chunk in decoder.decode(_lines(*lines, error=error))]


class TestStreamDecoderSSE:
    """SSE framing."""

    @pytest.mark.asyncio
    async def test_single_final_frame_then_done(self):
        chunks = await _decode(
            StreamFraming.SSE,
            'data:{"choices":[{"delta":{"content":"Hi"},"finish_reason":"stop"}]}',
            '',
            'data: [DONE]'
        )
        assert len(chunks) == 1
        assert chunks[0].text == "Hi"
        assert chunks[0].is_final is True
        assert chunks[0].usage is not None

    @pytest.mark.asyncio
    async def test_done_sentinel_marks_last_fragment_final(self):
        chunks = await _decode(
            StreamFraming.SSE,
            'data: {"choices":[{"delta":{"content":"Hel"},"finish_reason":null}]}',
            '',
            'data: {"choices":[{"delta":{"content":"lo"},"finish_reason":null}]}',
            '',
            'data: [DONE]'
        )
        assert [c.text for c in chunks] == ["Hel", "lo"]
        assert [c.is_final for c in chunks] == [False, True]
        assert chunks[-1].usage.completion_tokens == 2

    @pytest.mark.asyncio
    async def test_bare_done_sentinel(self):
        chunks = await _decode(
            StreamFraming.SSE,
            'data: {"choices":[{"delta":{"content":"x"},"finish_reason":null}]}',
            '[DONE]'
        )
        assert [c.text for c in chunks] == ["x"]
        assert chunks[0].is_final

    @pytest.mark.asyncio
    async def test_final_frame_without_text_carries_usage(self):
        chunks = await _decode(
            StreamFraming.SSE,
            'data: {"choices":[{"delta":{"content":"A"},"finish_reason":null}]}',
            'data: {"choices":[{"delta":{},"finish_reason":"stop"}],'
            '"usage":{"prompt_tokens":5,"completion_tokens":7,"total_tokens":12}}',
            'data: [DONE]'
        )
        assert len(chunks) == 1
        assert chunks[0].text == "A"
        assert chunks[0].is_final
        assert chunks[0].usage.prompt_tokens == 5
        assert chunks[0].usage.completion_tokens == 7
        assert chunks[0].usage.total_tokens == 12

    @pytest.mark.asyncio
    async def test_comments_fields_and_malformed_lines_are_skipped(self):
        chunks = await _decode(
            StreamFraming.SSE,
            ': keep-alive',
            'event: message',
            'data: {not json',
            'data: {"choices":[{"delta":{"content":"ok"},"finish_reason":"stop"}]}'
        )
        assert [c.text for c in chunks] == ["ok"]

    @pytest.mark.asyncio
    async def test_frames_without_text_are_dropped(self):
        chunks = await _decode(
            StreamFraming.SSE,
            'data: {"choices":[{"delta":{"role":"assistant"},"finish_reason":null}]}',
            'data: {"choices":[{"delta":{"content":"a"},"finish_reason":null}]}',
            'data: {"choices":[{"delta":{"content":"b"},"finish_reason":"length"}]}'
        )
        assert [c.text for c in chunks] == ["a", "b"]
        assert [c.is_final for c in chunks] == [False, True]

    @pytest.mark.asyncio
    async def test_llamacpp_stop_flag(self):
        chunks = await _decode(
            StreamFraming.SSE,
            'data: {"content":"def","stop":false}',
            'data: {"content":"","stop":true,"tokens_predicted":3,"tokens_evaluated":9,'
            '"timings":{"predicted_per_second":33.5}}'
        )
        assert [c.text for c in chunks] == ["def"]
        assert chunks[0].is_final
        assert chunks[0].usage.completion_tokens == 3
        assert chunks[0].usage.prompt_tokens == 9
        assert chunks[0].usage.tokens_per_second == 33.5

    @pytest.mark.asyncio
    async def test_empty_body_yields_single_empty_final_chunk(self):
        chunks = await _decode(StreamFraming.SSE, prompt_tokens=11)
        assert len(chunks) == 1
        assert chunks[0].text == ""
        assert chunks[0].is_final
        assert chunks[0].usage.prompt_tokens == 11
        assert chunks[0].usage.completion_tokens == 0

    @pytest.mark.asyncio
    async def test_transport_failure_raises_instead_of_fake_chunk(self):
        decoder = StreamDecoder(StreamFraming.SSE, provider_id="test")
        received = []
        with pytest.raises(LLMConnectionError):
            async for chunk in decoder.decode(_lines(
                'data: {"choices":[{"delta":{"content":"a"},"finish_reason":null}]}',
                'data: {"choices":[{"delta":{"content":"b"},"finish_reason":null}]}',
                error=aiohttp.ClientPayloadError("connection reset")
            )):
                received.append(chunk)
        assert [c.text for c in received] == ["a"]
        assert not any(c.is_final for c in received)


class TestStreamDecoderNDJSON:
    """Newline-delimited JSON framing."""

    @pytest.mark.asyncio
    async def test_done_flag_with_explicit_throughput(self):
        chunks = await _decode(
            StreamFraming.NDJSON,
            '{"content":"func","done":false}',
            '{"content":"()","done":true,"tokens_per_second":45.2}'
        )
        assert len(chunks) == 2
        assert chunks[0].text == "func"
        assert chunks[0].is_final is False
        assert chunks[0].usage is None
        assert chunks[1].text == "()"
        assert chunks[1].is_final is True
        assert chunks[1].usage.tokens_per_second == 45.2
        assert chunks[1].usage.completion_tokens == 2

    @pytest.mark.asyncio
    async def test_ollama_eval_counters(self):
        chunks = await _decode(
            StreamFraming.NDJSON,
            '{"message":{"role":"assistant","content":"x = 1"},"done":false}',
            '{"message":{"role":"assistant","content":""},"done":true,"done_reason":"stop",'
            '"prompt_eval_count":8,"eval_count":20,"eval_duration":2000000000}'
        )
        assert [c.text for c in chunks] == ["x = 1"]
        usage = chunks[0].usage
        assert usage.prompt_tokens == 8
        assert usage.completion_tokens == 20
        assert usage.total_tokens == 28
        assert usage.tokens_per_second == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_finished_flag(self):
        chunks = await _decode(
            StreamFraming.NDJSON,
            '{"token":{"text":"a"}}',
            '{"token":{"text":"b"},"finished":true}'
        )
        assert [c.text for c in chunks] == ["a", "b"]
        assert chunks[-1].is_final


class TestFrameHelpers:
    """Frame inspection helpers."""

    def test_extract_text_prefers_chat_delta(self):
        frame = {"choices": [{"delta": {"content": "delta"}, "text": "text"}], "content": "plain"}
        assert extract_text(frame) == "delta"

    def test_extract_text_shapes(self):
        assert extract_text({"choices": [{"text": "completion"}]}) == "completion"
        assert extract_text({"message": {"content": "chat"}}) == "chat"
        assert extract_text({"content": "plain"}) == "plain"
        assert extract_text({"token": {"text": "nested"}}) == "nested"
        assert extract_text({"response": "generate"}) == "generate"
        assert extract_text({"other": 1}) == ""

    def test_is_final_frame(self):
        assert is_final_frame({"choices": [{"finish_reason": "stop"}]})
        assert is_final_frame({"done": True})
        assert is_final_frame({"finished": True})
        assert not is_final_frame({"choices": [{"finish_reason": None}]})
        assert not is_final_frame({"done": False})

    def test_extract_usage_falls_back_to_counts(self):
        usage = extract_usage({}, fallback_completion_tokens=10, fallback_prompt_tokens=4, elapsed=2.0)
        assert usage.completion_tokens == 10
        assert usage.prompt_tokens == 4
        assert usage.total_tokens == 14
        assert usage.tokens_per_second == 5.0
