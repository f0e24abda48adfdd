"""
Inference backend adapters.

One adapter per wire protocol: Ollama, vLLM, llama.cpp and generic
OpenAI-compatible servers.
"""

from .base import HTTPProviderBase
from .ollama import OllamaLLMProvider
from .openai import OpenAICompatibleLLMProvider
from .vllm import VLLMProvider
from .llamacpp import LlamaCppLLMProvider

__all__ = [
    'HTTPProviderBase',
    'OllamaLLMProvider',
    'OpenAICompatibleLLMProvider',
    'VLLMProvider',
    'LlamaCppLLMProvider'
]
