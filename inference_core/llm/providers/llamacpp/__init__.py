"""
llama.cpp provider.

This module provides integration with the llama.cpp HTTP server.
"""

from .llamacpp_provider import LlamaCppLLMProvider

__all__ = ['LlamaCppLLMProvider']
