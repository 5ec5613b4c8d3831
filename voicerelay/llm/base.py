"""
Abstract base class for LLM providers.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional
from voicerelay.llm.types import LLMRequest


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    All LLM providers must implement streaming generation, health checks and close.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    def generate_stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """
        Generate streaming response from LLM.

        Args:
            request: LLMRequest with messages, temperature, model, etc.

        Yields:
            str: Text chunks as they arrive from LLM

        Raises:
            LLMTimeoutError: Request timeout
            LLMRateLimitError: Rate limit exceeded
            LLMConnectionError: Network/connection error
            LLMAuthenticationError: Authentication failure
            LLMError: Other LLM errors
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight availability check (e.g. GET /models)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying HTTP client."""
        pass

    @property
    def provider_name(self) -> str:
        """Return provider name (for logging)."""
        return self.__class__.__name__.replace("Provider", "").lower()
