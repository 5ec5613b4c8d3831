"""
Reply Service - turns a transcript into the assistant's reply text.

Single-turn chat completion over the voicerelay.llm provider layer, with an
optional fallback to a local OpenAI-compatible server when the primary
provider fails transiently (timeout, rate limit, connection error, 5xx).
"""

import asyncio
import time
from typing import Optional

from voicerelay.config.logging_config import get_logger
from voicerelay.config.services import ServiceSettings, get_service_settings
from voicerelay.llm import (
    LLMProvider,
    LLMProviderFactory,
    LLMRequest,
    LLMError,
    LLMTimeoutError,
)
from voicerelay.types.pipeline_errors import ReplyGenerationFailedError

logger = get_logger(__name__)

EMPTY_REPLY_PREFIX = "AI reply: "


class ReplyService:
    """
    Reply generation with primary → local fallback.

    Environment Variables (via ServiceSettings):
    - OPENAI_API_KEY / OPENAI_BASE_URL: primary provider
    - LLM_MODEL, LLM_MAX_TOKENS, LLM_TEMPERATURE: request shape
    - LOCAL_LLM_BASE_URL, LOCAL_LLM_MODEL, LLM_FALLBACK_ENABLED: fallback (serves
      every request when no OpenAI key is set)
    """

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        primary: Optional[LLMProvider] = None,
        fallback: Optional[LLMProvider] = None,
    ):
        self.settings = settings or get_service_settings()
        self.primary = primary
        self.fallback = fallback

        if self.primary is None and self.settings.openai_api_key:
            self.primary = LLMProviderFactory.create_provider(
                provider_name="openai",
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                timeout_s=self.settings.timeout_s,
            )

        if self.fallback is None and self.settings.llm_fallback_enabled:
            self.fallback = LLMProviderFactory.create_provider(
                provider_name="local",
                base_url=self.settings.local_llm_base_url,
                timeout_s=self.settings.timeout_s,
            )

        logger.info(
            f"🤖 Reply Service: Initialized (model={self.settings.llm_model}, "
            f"primary={'enabled' if self.primary else 'disabled'}, "
            f"fallback={'enabled' if self.fallback else 'disabled'})"
        )

    async def generate_reply(self, text: str, session_id: str = "-") -> str:
        """
        Generate the reply for one transcript.

        Args:
            text: Non-empty transcript
            session_id: Connection id for log correlation

        Returns:
            Trimmed reply; "AI reply: <text>" when the model returned nothing

        Raises:
            ReplyGenerationFailedError: Provider missing or generation failed (status kept)
        """
        request = LLMRequest.for_transcript(
            text,
            model=self.settings.llm_model,
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        )

        if self.primary is None:
            if self.fallback is None:
                raise ReplyGenerationFailedError("OPENAI_API_KEY is not configured", status_code=401)
            return await self._generate_local(request, text, session_id)

        start_time = time.time()
        logger.info(f"🤖 [LLM] [{session_id}] Generating reply (model={request.model})")

        try:
            reply = await self._collect(self.primary, request)

        except LLMError as e:
            if not e.transient:
                logger.error(f"🤖 [LLM] [{session_id}] Generation failed: {e}")
                raise ReplyGenerationFailedError(str(e), status_code=e.status_code) from e

            tech_details = f"Primary provider failed: {type(e).__name__}: {e}"
            logger.warning(f"🤖 [LLM] [{session_id}] {tech_details}")

            if self.fallback is None:
                raise ReplyGenerationFailedError(f"{tech_details} (fallback disabled)", status_code=e.status_code) from e

            logger.info(f"🤖 [LLM] [{session_id}] Falling back to {self.fallback.provider_name}")
            try:
                reply = await self._collect(self.fallback, self._local_request(request))
            except LLMError as fallback_error:
                logger.error(f"🤖 [LLM] [{session_id}] Fallback failed: {fallback_error}")
                raise ReplyGenerationFailedError(
                    f"{tech_details}; fallback failed: {fallback_error}",
                    status_code=fallback_error.status_code,
                ) from fallback_error

        return self._finish(reply, text, session_id, start_time)

    async def _generate_local(self, request: LLMRequest, text: str, session_id: str) -> str:
        """No OpenAI key: the configured local provider answers directly."""
        start_time = time.time()
        request = self._local_request(request)
        logger.info(
            f"🤖 [LLM] [{session_id}] No OPENAI_API_KEY, generating reply on "
            f"{self.fallback.provider_name} (model={request.model})"
        )

        try:
            reply = await self._collect(self.fallback, request)
        except LLMError as e:
            logger.error(f"🤖 [LLM] [{session_id}] Local generation failed: {e}")
            raise ReplyGenerationFailedError(str(e), status_code=e.status_code) from e

        return self._finish(reply, text, session_id, start_time)

    def _local_request(self, request: LLMRequest) -> LLMRequest:
        if self.settings.local_llm_model:
            return request.model_copy(update={"model": self.settings.local_llm_model})
        return request

    def _finish(self, reply: str, text: str, session_id: str, start_time: float) -> str:
        reply = reply.strip()
        if not reply:
            logger.warning(f"⚠️ [LLM] [{session_id}] Empty completion, echoing transcript")
            reply = f"{EMPTY_REPLY_PREFIX}{text}"

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"✅ [LLM] [{session_id}] Reply complete ({len(reply)} chars, {elapsed_ms:.0f}ms)")
        return reply

    async def _collect(self, provider: LLMProvider, request: LLMRequest) -> str:
        """Drain the provider stream into one string, bounded by a service-level timeout."""
        service_timeout = self.settings.timeout_s * 1.5

        try:
            async with asyncio.timeout(service_timeout):
                chunks = []
                async for chunk in provider.generate_stream(request):
                    chunks.append(chunk)
                return "".join(chunks)
        except TimeoutError as e:
            logger.error(f"🤖 [LLM] ⏱️ Service layer timeout after {service_timeout:.0f}s")
            raise LLMTimeoutError(
                f"LLM service timeout: No response in {service_timeout:.0f}s", provider=provider.provider_name
            ) from e

    async def close(self) -> None:
        """Close provider connections."""
        for provider in (self.primary, self.fallback):
            if provider is not None:
                await provider.close()
        logger.info("🤖 Reply Service: Closed provider connections")


# Singleton instance
_reply_service: Optional[ReplyService] = None


def get_reply_service() -> ReplyService:
    """Get the shared ReplyService (created on first call)."""
    global _reply_service
    if _reply_service is None:
        _reply_service = ReplyService()
    return _reply_service


async def close_reply_service() -> None:
    """Close and drop the shared ReplyService."""
    global _reply_service
    if _reply_service is not None:
        await _reply_service.close()
        _reply_service = None
