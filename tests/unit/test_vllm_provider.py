"""
Unit tests for the vLLM provider.
"""

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from inference_core.llm.providers.vllm.vllm_provider import VLLMProvider
from inference_core.llm.interfaces.llm_provider_interface import LLMRequest, Message

BASE_URL = "http://localhost:8000"
MODELS = {
    "object": "list",
    "data": [{
        "id": "Qwen/Qwen2.5-Coder-32B-Instruct",
        "object": "model",
        "max_model_len": 32768,
        "quantization": "awq"
    }]
}


@pytest.fixture
def vllm_provider(vllm_descriptor):
    return VLLMProvider(vllm_descriptor)


class TestVLLMProvider:
    """Unit tests for the vLLM provider."""

    def test_repetition_penalty_field(self, vllm_provider):
        request = LLMRequest(messages=[Message.user("x")], repetition_penalty=1.05)
        body = vllm_provider._build_body(request, stream=False)

        assert body["repetition_penalty"] == 1.05
        assert "frequency_penalty" not in body

    @pytest.mark.asyncio
    async def test_complete_uses_chat_completions(self, vllm_provider, simple_request):
        url = f"{BASE_URL}/v1/chat/completions"
        with aioresponses() as m:
            m.post(url, payload={
                "model": "Qwen/Qwen2.5-Coder-32B-Instruct",
                "choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4}
            })
            response = await vllm_provider.complete(simple_request)
            sent = m.requests[("POST", URL(url))][0].kwargs["json"]

        assert response.content == "ok"
        assert sent["model"] == "Qwen/Qwen2.5-Coder-32B-Instruct"
        assert response.metadata["provider"] == "vllm"
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", status=200)
            m.get(f"{BASE_URL}/v1/models", payload=MODELS)
            health = await vllm_provider.probe_health()

        assert health.is_healthy
        assert health.active_model == "Qwen/Qwen2.5-Coder-32B-Instruct"
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health_no_models(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", status=200)
            m.get(f"{BASE_URL}/v1/models", payload={"data": []})
            health = await vllm_provider.probe_health()

        assert health.reachable is True
        assert health.model_loaded is False
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health_unhealthy_status(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", status=503)
            health = await vllm_provider.probe_health()

        assert health.reachable is False
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_probe_health_connection_refused(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/health", exception=aiohttp.ClientConnectionError("refused"))
            health = await vllm_provider.probe_health()

        assert health.reachable is False
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_describe_model(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/v1/models", payload=MODELS)
            info = await vllm_provider.describe_model()

        assert info.model_id == "Qwen/Qwen2.5-Coder-32B-Instruct"
        assert info.context_window == 32768
        assert info.quantization == "awq"
        assert info.is_loaded is True
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_describe_model_unavailable(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/v1/models", status=500, body="down")
            info = await vllm_provider.describe_model()

        assert info.context_window == VLLMProvider.default_context_window
        assert info.is_loaded is False
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_ensure_model_loaded(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/v1/models", payload=MODELS)
            assert await vllm_provider.ensure_model_loaded() is True
        await vllm_provider.disconnect()

    @pytest.mark.asyncio
    async def test_ensure_model_loaded_wrong_model(self, vllm_provider):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/v1/models", payload={"data": [{"id": "other-model"}]})
            assert await vllm_provider.ensure_model_loaded() is False
        await vllm_provider.disconnect()
