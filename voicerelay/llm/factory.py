"""
Factory for creating LLM provider instances.
"""

import os
from typing import Optional

from voicerelay.config.logging_config import get_logger
from voicerelay.llm.base import LLMProvider
from voicerelay.llm.openai_compatible import OpenAICompatibleProvider

logger = get_logger(__name__)

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_LOCAL_BASE_URL = "http://localhost:11434/v1"


class LLMProviderFactory:
    """
    Factory for creating LLM provider instances.

    Supports:
    - 'openai': OpenAI or any hosted OpenAI-compatible API (requires OPENAI_API_KEY)
    - 'local': Local OpenAI-compatible LLM (LOCAL_LLM_BASE_URL, default Ollama)
    """

    @staticmethod
    def create_provider(
        provider_name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 60.0,
    ) -> LLMProvider:
        """
        Create LLM provider instance.

        Args:
            provider_name: Provider name ('openai' or 'local')
            api_key: API key (or None to read from environment)
            base_url: API base URL (or None to read from environment)
            timeout_s: First-token read timeout

        Returns:
            LLMProvider: Initialized provider instance

        Raises:
            ValueError: Invalid provider name or missing configuration
        """
        provider_name = provider_name.lower().strip()

        if provider_name == "openai":
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError(
                    "OpenAI API key not found. "
                    "Set OPENAI_API_KEY environment variable or pass api_key parameter."
                )

            base_url = base_url or os.getenv("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL
            logger.info("🤖 LLM Factory: Creating OpenAI provider")
            return OpenAICompatibleProvider(base_url=base_url, api_key=api_key, name="openai", timeout_s=timeout_s)

        elif provider_name == "local":
            base_url = base_url or os.getenv("LOCAL_LLM_BASE_URL")
            if not base_url:
                base_url = DEFAULT_LOCAL_BASE_URL
                logger.warning(f"🤖 LLM Factory: LOCAL_LLM_BASE_URL not set, using default: {base_url}")

            logger.info(f"🤖 LLM Factory: Creating Local LLM provider (base_url={base_url})")
            # Local models may be slow to produce a first token
            return OpenAICompatibleProvider(
                base_url=base_url,
                api_key=api_key,
                name="local",
                timeout_s=max(timeout_s, 120.0),
            )

        else:
            raise ValueError(
                f"Unknown LLM provider: '{provider_name}'. "
                f"Supported providers: 'openai', 'local'"
            )
