"""
OpenAI-compatible provider.

This module provides integration with any local server implementing the
OpenAI chat-completions protocol.
"""

from .openai_provider import OpenAICompatibleLLMProvider

__all__ = ['OpenAICompatibleLLMProvider']
