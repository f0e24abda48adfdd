"""
Streaming response decoding.

Backends stream completions in one of two framings: Server-Sent Events
(``data: <json>`` lines ending with a ``[DONE]`` sentinel, used by
OpenAI-compatible servers, vLLM and llama.cpp) or newline-delimited JSON
(one object per line with a ``done`` flag, used by Ollama). StreamDecoder
normalizes both into a finite sequence of TokenChunk objects whose last
element is final and carries usage.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional, Union

import aiohttp

from inference_core.llm.interfaces.llm_provider_interface import (
    LLMUsage,
    TokenChunk,
    LLMConnectionError
)


DONE_SENTINEL = "[DONE]"

_SSE_FIELDS = ("event:", "id:", "retry:")


class StreamFraming(Enum):
    """Line framing of a streamed response body."""
    SSE = "sse"
    NDJSON = "ndjson"


def safe_int(value: Any) -> Optional[int]:
    """Coerce an optional numeric field to int, returning None when absent or invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def safe_float(value: Any) -> Optional[float]:
    """Coerce an optional numeric field to float, returning None when absent or invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first_choice(frame: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    choices = frame.get('choices')
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


def extract_text(frame: Dict[str, Any]) -> str:
    """
    Extract generated text from a frame.

    Known shapes are tried in order and the first match wins: chat delta,
    completion text, chat message, plain content, nested token, and Ollama's
    generate ``response`` field.
    """
    choice = _first_choice(frame)
    if choice is not None:
        delta = choice.get('delta')
        if isinstance(delta, dict) and isinstance(delta.get('content'), str):
            return delta['content']
        if isinstance(choice.get('text'), str):
            return choice['text']
        message = choice.get('message')
        if isinstance(message, dict) and isinstance(message.get('content'), str):
            return message['content']

    message = frame.get('message')
    if isinstance(message, dict) and isinstance(message.get('content'), str):
        return message['content']
    if isinstance(frame.get('content'), str):
        return frame['content']

    token = frame.get('token')
    if isinstance(token, dict) and isinstance(token.get('text'), str):
        return token['text']
    if isinstance(token, str):
        return token

    if isinstance(frame.get('response'), str):
        return frame['response']
    return ""


def extract_finish_reason(frame: Dict[str, Any]) -> Optional[str]:
    """Finish reason reported by a frame, if any."""
    choice = _first_choice(frame)
    if choice is not None and choice.get('finish_reason') is not None:
        return str(choice['finish_reason'])
    for key in ('finish_reason', 'done_reason', 'stop_type'):
        if frame.get(key) is not None:
            return str(frame[key])
    return None


def is_final_frame(frame: Dict[str, Any]) -> bool:
    """A frame is final when it reports a finish reason or sets a completion flag."""
    choice = _first_choice(frame)
    if choice is not None and choice.get('finish_reason') is not None:
        return True
    if frame.get('finish_reason') is not None:
        return True
    return any(frame.get(flag) is True for flag in ('done', 'finished', 'stop'))


def extract_usage(
    frame: Dict[str, Any],
    fallback_completion_tokens: int = 0,
    fallback_prompt_tokens: int = 0,
    elapsed: float = 0.0
) -> LLMUsage:
    """
    Build usage from whatever accounting a frame or reply carries.

    Recognized sources, in order: an OpenAI ``usage`` object, Ollama eval
    counters, llama.cpp token counters. Missing counts fall back to the given
    values. Throughput comes from an explicit field, Ollama's eval timing,
    llama.cpp timings, or finally completion tokens over elapsed wall time.

    Args:
        frame: Decoded JSON object
        fallback_completion_tokens: Completion tokens counted locally
        fallback_prompt_tokens: Locally estimated prompt tokens
        elapsed: Wall clock seconds spent generating

    Returns:
        Usage with total equal to prompt plus completion
    """
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    tokens_per_second: Optional[float] = None

    usage = frame.get('usage')
    if isinstance(usage, dict):
        prompt_tokens = safe_int(usage.get('prompt_tokens'))
        completion_tokens = safe_int(usage.get('completion_tokens'))
        tokens_per_second = safe_float(usage.get('tokens_per_second'))

    # Ollama
    if completion_tokens is None and 'eval_count' in frame:
        completion_tokens = safe_int(frame.get('eval_count'))
        prompt_tokens = safe_int(frame.get('prompt_eval_count'))
        eval_duration = safe_int(frame.get('eval_duration'))
        if completion_tokens and eval_duration and eval_duration > 0:
            tokens_per_second = completion_tokens / (eval_duration / 1e9)

    # llama.cpp
    if completion_tokens is None and 'tokens_predicted' in frame:
        completion_tokens = safe_int(frame.get('tokens_predicted'))
        prompt_tokens = safe_int(frame.get('tokens_evaluated'))
    timings = frame.get('timings')
    if tokens_per_second is None and isinstance(timings, dict):
        tokens_per_second = safe_float(timings.get('predicted_per_second'))

    if tokens_per_second is None:
        tokens_per_second = safe_float(frame.get('tokens_per_second'))

    if completion_tokens is None:
        completion_tokens = fallback_completion_tokens
    if prompt_tokens is None:
        prompt_tokens = fallback_prompt_tokens
    if tokens_per_second is None:
        tokens_per_second = completion_tokens / elapsed if elapsed > 0 and completion_tokens else 0.0

    return LLMUsage.from_counts(prompt_tokens, completion_tokens, tokens_per_second)


class StreamDecoder:
    """
    Decode a streamed response body into token chunks.

    The decoder holds at most one chunk back so that the sentinel, the end of
    the body, or a final frame without text can still mark the last fragment
    as final. Nothing else is buffered; chunks are yielded as lines arrive.
    """

    def __init__(
        self,
        framing: StreamFraming,
        provider_id: Optional[str] = None,
        prompt_tokens: int = 0
    ):
        """
        Initialize the decoder.

        Args:
            framing: SSE or NDJSON
            provider_id: Provider name used in logs and errors
            prompt_tokens: Estimated prompt size used when the backend reports no usage
        """
        self.framing = framing
        self.provider_id = provider_id
        self.prompt_tokens = prompt_tokens
        self.logger = logging.getLogger(__name__)

    def _extract_payload(self, line: str) -> Optional[str]:
        """Return the JSON payload of a line, or None when the line carries none."""
        if not line or line.startswith(':'):
            return None
        if line.startswith('data:'):
            return line[5:].strip() or None
        if self.framing == StreamFraming.SSE and line.startswith(_SSE_FIELDS):
            return None
        return line

    async def decode(self, lines: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[TokenChunk]:
        """
        Decode lines into token chunks.

        Args:
            lines: Response body lines, e.g. ``response.content`` of an aiohttp response

        Yields:
            Token chunks in emission order; exactly one final chunk ends the sequence

        Raises:
            LLMConnectionError: If reading the body fails
        """
        pending: Optional[str] = None
        fragments = 0
        started = time.monotonic()

        try:
            async for raw in lines:
                line = raw.decode('utf-8', errors='replace') if isinstance(raw, bytes) else raw
                payload = self._extract_payload(line.strip())
                if payload is None:
                    continue
                if payload == DONE_SENTINEL:
                    break

                try:
                    frame = json.loads(payload)
                except ValueError:
                    self.logger.warning(f"Skipping malformed stream line from {self.provider_id}: {payload[:200]}")
                    continue
                if not isinstance(frame, dict):
                    continue

                text = extract_text(frame)
                if text:
                    fragments += 1

                if is_final_frame(frame):
                    usage = extract_usage(
                        frame, fragments, self.prompt_tokens, time.monotonic() - started
                    )
                    if text:
                        if pending is not None:
                            yield TokenChunk(pending)
                        yield TokenChunk(text, is_final=True, usage=usage)
                    else:
                        yield TokenChunk(pending or "", is_final=True, usage=usage)
                    return

                if not text:
                    continue
                if pending is not None:
                    yield TokenChunk(pending)
                pending = text
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Stream read from {self.provider_id} failed: {e}")
            raise LLMConnectionError(
                f"Stream from {self.provider_id} interrupted: {e}", provider_id=self.provider_id
            ) from e

        # Sentinel or end of body without a final frame.
        usage = extract_usage({}, fragments, self.prompt_tokens, time.monotonic() - started)
        yield TokenChunk(pending or "", is_final=True, usage=usage)
