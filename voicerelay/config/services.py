"""
External Service Settings

Endpoints, models and credentials for the transcription and reply services,
plus the HTTP listener. Loaded from environment variables (a .env file is
loaded by voicerelay.main before first use).
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class ServiceSettings:
    """Settings for the OpenAI-compatible transcription and chat endpoints."""

    # Credentials are optional at load time; services raise on first use without them
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"

    # Transcription
    whisper_model: str = "whisper-1"
    whisper_language: str = "en"

    # Reply generation
    llm_model: str = "gpt-3.5-turbo"
    llm_max_tokens: int = 300
    llm_temperature: float = 0.7

    # Local OpenAI-compatible fallback (Ollama, vLLM, ...)
    local_llm_base_url: Optional[str] = None
    local_llm_model: Optional[str] = None
    llm_fallback_enabled: bool = False

    # Request timeout for both services (seconds)
    timeout_s: float = 60.0

    # HTTP listener
    host: str = "0.0.0.0"
    port: int = 3000
    static_dir: str = "web"

    def validate(self) -> None:
        """Validate configuration values."""
        if not 1 <= self.llm_max_tokens <= 4096:
            raise ValueError("llm_max_tokens must be between 1 and 4096")
        if not 0.0 <= self.llm_temperature <= 2.0:
            raise ValueError("llm_temperature must be between 0.0 and 2.0")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if not 1 <= self.port <= 65535:
            raise ValueError("port must be between 1 and 65535")
        if self.llm_fallback_enabled and not self.local_llm_base_url:
            raise ValueError("LLM fallback requires LOCAL_LLM_BASE_URL")


def load_service_settings() -> ServiceSettings:
    """
    Load service settings from environment variables.

    Environment Variables:
        OPENAI_API_KEY: API key for transcription and chat (required at call time)
        OPENAI_BASE_URL: OpenAI-compatible API base (default: https://api.openai.com/v1)
        WHISPER_MODEL: Transcription model (default: whisper-1)
        WHISPER_LANGUAGE: Transcription language hint (default: en)
        LLM_MODEL: Chat model (default: gpt-3.5-turbo)
        LLM_MAX_TOKENS: Reply length cap (default: 300)
        LLM_TEMPERATURE: Sampling temperature (default: 0.7)
        LOCAL_LLM_BASE_URL: Local fallback endpoint (default: unset)
        LOCAL_LLM_MODEL: Model name on the local endpoint (default: same as LLM_MODEL)
        LLM_FALLBACK_ENABLED: Fall back to local LLM on transient errors (default: false)
        SERVICE_TIMEOUT_S: Upstream request timeout (default: 60)
        HOST / PORT: Listener address (default: 0.0.0.0:3000)
        STATIC_DIR: Directory served at / when present (default: web)
    """
    settings = ServiceSettings(
        openai_api_key=os.getenv('OPENAI_API_KEY') or None,
        openai_base_url=os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1').rstrip('/'),
        whisper_model=os.getenv('WHISPER_MODEL', 'whisper-1'),
        whisper_language=os.getenv('WHISPER_LANGUAGE', 'en'),
        llm_model=os.getenv('LLM_MODEL', 'gpt-3.5-turbo'),
        llm_max_tokens=int(os.getenv('LLM_MAX_TOKENS', '300')),
        llm_temperature=float(os.getenv('LLM_TEMPERATURE', '0.7')),
        local_llm_base_url=os.getenv('LOCAL_LLM_BASE_URL') or None,
        local_llm_model=os.getenv('LOCAL_LLM_MODEL') or None,
        llm_fallback_enabled=os.getenv('LLM_FALLBACK_ENABLED', 'false').lower() in ['true', '1', 'yes'],
        timeout_s=float(os.getenv('SERVICE_TIMEOUT_S', '60')),
        host=os.getenv('HOST', '0.0.0.0'),
        port=int(os.getenv('PORT', '3000')),
        static_dir=os.getenv('STATIC_DIR', 'web'),
    )

    settings.validate()
    return settings


_service_settings: ServiceSettings | None = None


def get_service_settings() -> ServiceSettings:
    """Get the cached service settings (loaded from environment on first call)."""
    global _service_settings
    if _service_settings is None:
        _service_settings = load_service_settings()
    return _service_settings


def reset_service_settings() -> None:
    """Drop cached settings so the next get_service_settings() re-reads the environment."""
    global _service_settings
    _service_settings = None
