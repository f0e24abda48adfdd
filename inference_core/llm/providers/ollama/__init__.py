"""
Ollama provider for local model inference.

This module provides integration with Ollama's native chat, tag listing,
model metadata and pull APIs.
"""

from .ollama_provider import OllamaLLMProvider

__all__ = ['OllamaLLMProvider']
