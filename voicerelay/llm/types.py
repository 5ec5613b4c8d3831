"""
Type definitions for the voicerelay LLM layer.

One transcript in, one reply out: requests are single-turn, and errors say
which provider failed and whether another provider is worth trying.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class LLMMessage(BaseModel):
    """One chat message."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"] = Field(..., description="Message role")
    content: str = Field(..., description="Message content")


class LLMRequest(BaseModel):
    """Chat completion request sent to an OpenAI-compatible provider."""

    model_config = ConfigDict(frozen=True)

    messages: List[LLMMessage] = Field(..., min_length=1, description="Messages sent to the model")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    model: str = Field(..., description="Model identifier")
    max_tokens: Optional[int] = Field(default=None, ge=1, description="Reply length cap")

    @classmethod
    def for_transcript(
        cls,
        transcript: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> "LLMRequest":
        """Single user turn carrying the transcribed speech."""
        return cls(
            messages=[LLMMessage(role="user", content=transcript)],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )


class LLMError(Exception):
    """
    Base exception for LLM provider errors.

    Attributes:
        status_code: Upstream HTTP status, when there was one
        provider: Name of the provider that failed ("openai", "local")
        transient: True when another provider may still answer
    """

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider
        if status_code is not None and status_code >= 500:
            self.transient = True


class LLMTimeoutError(LLMError):
    """Request or stream timed out."""
    transient = True


class LLMRateLimitError(LLMError):
    """Upstream returned 429."""
    transient = True


class LLMConnectionError(LLMError):
    """Network failure before a response arrived."""
    transient = True


class LLMAuthenticationError(LLMError):
    """Upstream rejected the API key (401/403)."""
