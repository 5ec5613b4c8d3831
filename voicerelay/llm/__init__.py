"""
LLM Provider Abstraction Layer for voicerelay

Unified streaming interface over OpenAI-compatible chat completion endpoints
(hosted OpenAI, or local servers such as Ollama and vLLM).
"""

from voicerelay.llm.base import LLMProvider
from voicerelay.llm.factory import LLMProviderFactory
from voicerelay.llm.openai_compatible import OpenAICompatibleProvider
from voicerelay.llm.types import (
    LLMMessage,
    LLMRequest,
    LLMError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMConnectionError,
    LLMAuthenticationError,
)

__all__ = [
    "LLMProvider",
    "LLMProviderFactory",
    "OpenAICompatibleProvider",
    "LLMMessage",
    "LLMRequest",
    "LLMError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMConnectionError",
    "LLMAuthenticationError",
]
