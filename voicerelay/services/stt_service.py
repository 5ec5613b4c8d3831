"""
STTService

Purpose: Speech-to-text over an OpenAI-compatible transcription endpoint.
One request per flushed batch: the canonical WAV produced by the transcoder is
posted as multipart form data and the transcript text is returned.

Key Features:
- Shared httpx.AsyncClient (connection reuse across connections)
- Language hint from WHISPER_LANGUAGE
- HTTP status and response body preserved on failure (401/403 detection)
- Request/latency metrics
"""

import time
from typing import Any, Dict, Optional

import httpx

from voicerelay.config.logging_config import get_logger
from voicerelay.config.services import ServiceSettings, get_service_settings
from voicerelay.types.pipeline_errors import TranscriptionFailedError

logger = get_logger(__name__)


class STTService:
    """
    Transcription client for /audio/transcriptions.

    Usage:
        stt_service = STTService(get_service_settings())
        text = await stt_service.transcribe(wav_bytes, session_id="conn-1")
        await stt_service.close()
    """

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize STTService.

        Args:
            settings: Endpoint, model, language and timeout (default: environment)
            client: Pre-built httpx client (tests inject a MockTransport here)
        """
        self.settings = settings or get_service_settings()
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.settings.timeout_s, connect=10.0))

        # Metrics tracking
        self.total_requests = 0
        self.failed_requests = 0
        self.total_latency_ms = 0.0

        logger.info(
            f"🎙️ STTService initialized (base_url={self.settings.openai_base_url}, "
            f"model={self.settings.whisper_model}, language={self.settings.whisper_language})"
        )

    async def transcribe(self, wav_bytes: bytes, session_id: str = "-") -> str:
        """
        Transcribe one WAV buffer.

        Args:
            wav_bytes: Canonical WAV (mono, 16 kHz, s16)
            session_id: Connection id for log correlation

        Returns:
            Transcript text, stripped (may be empty)

        Raises:
            TranscriptionFailedError: Missing key, HTTP error or transport error
        """
        if not self.settings.openai_api_key:
            raise TranscriptionFailedError("OPENAI_API_KEY is not configured", status_code=401)

        url = f"{self.settings.openai_base_url}/audio/transcriptions"
        data = {'model': self.settings.whisper_model}
        if self.settings.whisper_language:
            data['language'] = self.settings.whisper_language

        self.total_requests += 1
        start_time = time.time()
        logger.info(f"🎙️ [STT] [{session_id}] Transcribing {len(wav_bytes)} bytes WAV")

        try:
            response = await self.client.post(
                url,
                headers={'Authorization': f"Bearer {self.settings.openai_api_key}"},
                data=data,
                files={'file': ('audio.wav', wav_bytes, 'audio/wav')},
            )
        except httpx.HTTPError as e:
            self.failed_requests += 1
            logger.error(f"❌ [STT] [{session_id}] Request failed: {type(e).__name__}: {e}")
            raise TranscriptionFailedError(f"Transcription request failed: {type(e).__name__}: {e}") from e

        elapsed_ms = (time.time() - start_time) * 1000

        if response.is_error:
            self.failed_requests += 1
            body = response.text[:500]
            logger.error(f"❌ [STT] [{session_id}] HTTP {response.status_code}: {body}")
            raise TranscriptionFailedError(
                f"Transcription HTTP {response.status_code}: {body}",
                status_code=response.status_code,
            )

        try:
            text = response.json().get('text', '')
        except ValueError as e:
            self.failed_requests += 1
            raise TranscriptionFailedError(
                f"Transcription response was not JSON: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

        text = (text or '').strip()
        self.total_latency_ms += elapsed_ms
        logger.info(f"✅ [STT] [{session_id}] Transcript ({elapsed_ms:.0f}ms): \"{text}\"")
        return text

    async def get_metrics(self) -> Dict[str, Any]:
        """Request counts and average latency."""
        succeeded = self.total_requests - self.failed_requests
        return {
            'total_requests': self.total_requests,
            'failed_requests': self.failed_requests,
            'avg_latency_ms': self.total_latency_ms / succeeded if succeeded else 0.0,
        }

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
        logger.info("🎙️ STTService closed")


# Singleton instance
_stt_service: Optional[STTService] = None


def get_stt_service() -> STTService:
    """Get the shared STTService (created on first call)."""
    global _stt_service
    if _stt_service is None:
        _stt_service = STTService()
    return _stt_service


async def close_stt_service() -> None:
    """Close and drop the shared STTService."""
    global _stt_service
    if _stt_service is not None:
        await _stt_service.close()
        _stt_service = None
