"""
vLLM provider.

This module provides integration with vLLM's OpenAI-compatible server.
"""

from .vllm_provider import VLLMProvider

__all__ = ['VLLMProvider']
