"""
Unit tests for the llama.cpp server provider.
"""

import pytest
from aioresponses import aioresponses
from yarl import URL

from inference_core.llm.providers.llamacpp.llamacpp_provider import (
    LlamaCppLLMProvider,
    DEFAULT_CONTEXT_WINDOW,
    IM_END,
    format_chatml
)
from inference_core.llm.interfaces.llm_provider_interface import (
    LLMProtocolError,
    LLMRequest,
    Message
)

BASE_URL = "http://localhost:8080"


@pytest.fixture
def llamacpp_provider(llamacpp_descriptor):
    return LlamaCppLLMProvider(llamacpp_descriptor)


class TestLlamaCppLLMProvider:
    """Unit tests for the llama.cpp provider."""

    def test_format_chatml(self):
        prompt = format_chatml([Message.system("Be brief."), Message.user("Hi")])
        assert prompt == (
            "<|im_start|>system\nBe brief.<|im_end|>\n"
            "<|im_start|>user\nHi<|im_end|>\n"
            "<|im_start|>assistant\n"
        )

    def test_body_shape(self, llamacpp_provider):
        request = LLMRequest(
            messages=[Message.user("Hi")],
            temperature=0.4,
            max_tokens=32,
            top_p=0.7,
            repetition_penalty=1.2,
            stop=["</code>"]
        )
        body = llamacpp_provider._build_body(request, stream=False)

        assert body["prompt"].endswith("<|im_start|>assistant\n")
        assert body["n_predict"] == 32
        assert body["temperature"] == 0.4
        assert body["top_p"] == 0.7
        assert body["stream"] is False
        assert body["stop"] == [IM_END, "</code>"]
        assert body["repeat_penalty"] == 1.2

    @pytest.mark.asyncio
    async def test_complete_success(self, llamacpp_provider, simple_request):
        with aioresponses() as m:
            m.post(f"{BASE_URL}/completion", payload={
                "content": "return s[::-1]",
                "tokens_predicted": 12,
                "tokens_evaluated": 30,
                "stopped_eos": True,
                "timings": {"predicted_per_second": 25.5}
            })
            response = await llamacpp_provider.complete(simple_request)
            sent = m.requests[("POST", URL(f"{BASE_URL}/completion"))][0].kwargs["json"]

        assert response.content == "return s[::-1]"
        assert response.usage.completion_tokens == 12
        assert response.usage.prompt_tokens == 30
        assert response.usage.total_tokens == 42
        assert response.usage.tokens_per_second == 25.5
        assert response.finish_reason == "stop"
        assert sent["n_predict"] == 256
        assert "<|im_start|>system\nYou are a careful Python developer.<|im_end|>" in sent["prompt"]
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_complete_length_limit(self, llamacpp_provider, simple_request):
        with aioresponses() as m:
            m.post(f"{BASE_URL}/completion", payload={"content": "partial", "stopped_limit": True})
            response = await llamacpp_provider.complete(simple_request)

        assert response.finish_reason == "length"
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_complete_unreported_stop(self, llamacpp_provider, simple_request):
        with aioresponses() as m:
            m.post(f"{BASE_URL}/completion", payload={"content": "x = 1"})
            response = await llamacpp_provider.complete(simple_request)

        assert response.finish_reason is None
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_complete_missing_content(self, llamacpp_provider, simple_request):
        with aioresponses() as m:
            m.post(f"{BASE_URL}/completion", payload={"error": "slot busy"})
            with pytest.raises(LLMProtocolError):
                await llamacpp_provider.complete(simple_request)
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_complete_streaming(self, llamacpp_provider, simple_request):
        body = (
            'data: {"content":"ret","stop":false}\n\n'
            'data: {"content":"urn","stop":false}\n\n'
            'data: {"content":"","stop":true,"tokens_predicted":2,"tokens_evaluated":40,'
            '"timings":{"predicted_per_second":50.0}}\n\n'
        )
        with aioresponses() as m:
            m.post(f"{BASE_URL}/completion", body=body)
            chunks = [chunk async for chunk in llamacpp_provider.complete_streaming(simple_request)]

        assert [c.text for c in chunks] == ["ret", "urn"]
        assert chunks[-1].is_final
        assert chunks[-1].usage.prompt_tokens == 40
        assert chunks[-1].usage.tokens_per_second == 50.0
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health_ok(self, llamacpp_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", payload={"status": "ok"})
            health = await llamacpp_provider.probe_health()

        assert health.is_healthy
        assert health.active_model == "codellama-13b"
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health_not_ready(self, llamacpp_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", payload={"status": "no slot available"})
            health = await llamacpp_provider.probe_health()

        assert health.reachable is True
        assert health.model_loaded is False
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health_loading(self, llamacpp_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", status=503, payload={"error": {"message": "Loading model"}})
            health = await llamacpp_provider.probe_health()

        assert health.reachable is False
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_describe_model(self, llamacpp_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/props", payload={"default_generation_settings": {"n_ctx": 8192}})
            m.get(f"{BASE_URL}/slots", payload=[{"id": 0, "state": 0}])
            info = await llamacpp_provider.describe_model()

        assert info.context_window == 8192
        assert info.is_loaded is True
        assert info.model_id == "codellama-13b"
        await llamacpp_provider.disconnect()

    @pytest.mark.asyncio
    async def test_describe_model_unavailable(self, llamacpp_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/props", status=500, body="error")
            m.get(f"{BASE_URL}/slots", status=501, body="slots endpoint disabled")
            info = await llamacpp_provider.describe_model()

        assert info.context_window == DEFAULT_CONTEXT_WINDOW
        assert info.is_loaded is False
        await llamacpp_provider.disconnect()
