"""
Throughput benchmark for a single provider.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any

from inference_core.llm.interfaces.llm_provider_interface import (
    LLMRequest,
    LLMResponse,
    LLMConfigurationError,
    Message
)

logger = logging.getLogger(__name__)

BENCHMARK_SYSTEM_PROMPT = "You are a senior software engineer. Reply with code only."

BENCHMARK_PROMPT = (
    "Write a function that parses an ISO-8601 date string and returns the "
    "day of the week. Include input validation and a short docstring."
)


@dataclass
class BenchmarkResult:
    """Outcome of one benchmark run."""
    provider_id: str
    model_id: str
    response: LLMResponse
    tokens_per_second: float
    wall_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider_id': self.provider_id,
            'model_id': self.model_id,
            'tokens_per_second': self.tokens_per_second,
            'completion_tokens': self.response.usage.completion_tokens,
            'duration': self.response.duration,
            'wall_time': self.wall_time
        }


def benchmark_request() -> LLMRequest:
    """The fixed coding request every benchmark sends."""
    return LLMRequest(
        messages=[Message.system(BENCHMARK_SYSTEM_PROMPT), Message.user(BENCHMARK_PROMPT)],
        temperature=0.2,
        max_tokens=512,
        top_p=0.95
    )


async def run_benchmark(manager, provider_id: Optional[str] = None) -> BenchmarkResult:
    """
    Measure generation throughput of one provider.

    The request goes straight to the provider without failover, so the
    numbers always belong to the provider that was asked for.

    Args:
        manager: LLMClientManager holding the provider
        provider_id: Provider to benchmark; the primary when omitted

    Returns:
        Benchmark result

    Raises:
        LLMConfigurationError: If the provider is not registered
        LLMError: If the completion fails
    """
    if provider_id is None:
        provider = manager.primary
    else:
        provider = manager.get_provider(provider_id)
        if provider is None:
            raise LLMConfigurationError(f"Provider '{provider_id}' is not registered")

    model_info = await provider.describe_model()
    logger.info(f"Benchmarking '{provider.provider_id}' ({model_info.model_id})")

    start_time = time.time()
    response = await provider.complete(benchmark_request())
    wall_time = time.time() - start_time

    tokens_per_second = response.usage.tokens_per_second
    if tokens_per_second <= 0 and response.duration > 0:
        tokens_per_second = response.usage.completion_tokens / response.duration

    logger.info(f"Benchmark for '{provider.provider_id}': {tokens_per_second:.1f} tokens/s")
    return BenchmarkResult(
        provider_id=provider.provider_id,
        model_id=model_info.model_id,
        response=response,
        tokens_per_second=tokens_per_second,
        wall_time=wall_time
    )
