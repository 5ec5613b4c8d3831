"""
Unit tests for ReplyService

Providers are mocked; these tests cover the request shape, the empty-reply
echo, status propagation and the local fallback.
"""
import asyncio
from typing import List, Optional
from unittest.mock import patch

import pytest

from voicerelay.config.services import ServiceSettings
from voicerelay.llm import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMProvider,
    LLMRateLimitError,
    LLMRequest,
    LLMTimeoutError,
)
from voicerelay.services.reply_service import ReplyService
from voicerelay.types.pipeline_errors import ReplyGenerationFailedError


class FakeProvider(LLMProvider):
    """Streams canned chunks or raises a canned error"""

    def __init__(self, chunks: Optional[List[str]] = None, error: Optional[Exception] = None, name: str = "fake"):
        super().__init__(base_url="http://fake")
        self.chunks = chunks or []
        self.error = error
        self.name = name
        self.requests: List[LLMRequest] = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return self.name

    async def generate_stream(self, request: LLMRequest):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        for chunk in self.chunks:
            yield chunk

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fallback_settings(service_settings) -> ServiceSettings:
    service_settings.llm_fallback_enabled = True
    service_settings.local_llm_base_url = "http://localhost:11434/v1"
    service_settings.local_llm_model = "llama3"
    return service_settings


# ============================================================
# Primary Provider
# ============================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_reply_joins_stream_and_strips(service_settings):
    primary = FakeProvider(chunks=["  It is ", "noon", ".  "])
    service = ReplyService(service_settings, primary=primary)

    reply = await service.generate_reply("what time is it", session_id="conn-1")

    assert reply == "It is noon."
    request = primary.requests[0]
    assert [(m.role, m.content) for m in request.messages] == [("user", "what time is it")]
    assert request.model == service_settings.llm_model
    assert request.max_tokens == service_settings.llm_max_tokens
    assert request.temperature == service_settings.llm_temperature


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("chunks", [[], ["   ", "\n"]])
async def test_empty_completion_echoes_transcript(service_settings, chunks):
    service = ReplyService(service_settings, primary=FakeProvider(chunks=chunks))

    assert await service.generate_reply("hello") == "AI reply: hello"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key_is_auth_failure():
    service = ReplyService(ServiceSettings(openai_api_key=None))

    assert service.primary is None
    with pytest.raises(ReplyGenerationFailedError) as exc_info:
        await service.generate_reply("hello")

    assert exc_info.value.status_code == 401
    assert exc_info.value.is_auth_failure


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key_uses_local_provider(fallback_settings):
    fallback_settings.openai_api_key = None
    local = FakeProvider(chunks=[" local ", "answer "], name="local")

    service = ReplyService(fallback_settings, fallback=local)

    assert service.primary is None
    assert await service.generate_reply("hello") == "local answer"
    assert local.requests[0].model == "llama3"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_local_only_failure_keeps_status(fallback_settings):
    fallback_settings.openai_api_key = None
    local = FakeProvider(error=LLMConnectionError("local down"))
    service = ReplyService(fallback_settings, fallback=local)

    with pytest.raises(ReplyGenerationFailedError, match="local down") as exc_info:
        await service.generate_reply("hello")

    assert not exc_info.value.is_auth_failure


@pytest.mark.unit
@pytest.mark.asyncio
async def test_api_key_creates_openai_provider(service_settings):
    with patch("voicerelay.services.reply_service.LLMProviderFactory.create_provider") as mock_create:
        service = ReplyService(service_settings)

    mock_create.assert_called_once_with(
        provider_name="openai",
        api_key="sk-test",
        base_url="https://api.test/v1",
        timeout_s=5.0,
    )
    assert service.primary is mock_create.return_value
    assert service.fallback is None


# ============================================================
# Error Mapping
# ============================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_authentication_error_keeps_status(service_settings):
    primary = FakeProvider(error=LLMAuthenticationError("LLM authentication failed (401)", status_code=401))
    service = ReplyService(service_settings, primary=primary)

    with pytest.raises(ReplyGenerationFailedError) as exc_info:
        await service.generate_reply("hello")

    assert exc_info.value.status_code == 401
    assert exc_info.value.is_auth_failure


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_error_not_retried_on_fallback(fallback_settings):
    primary = FakeProvider(error=LLMError("LLM HTTP error 400: bad request", status_code=400))
    fallback = FakeProvider(chunks=["local answer"])
    service = ReplyService(fallback_settings, primary=primary, fallback=fallback)

    with pytest.raises(ReplyGenerationFailedError) as exc_info:
        await service.generate_reply("hello")

    assert exc_info.value.status_code == 400
    assert fallback.requests == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transient_error_without_fallback(service_settings):
    primary = FakeProvider(error=LLMRateLimitError("LLM rate limit exceeded", status_code=429))
    service = ReplyService(service_settings, primary=primary)

    with pytest.raises(ReplyGenerationFailedError, match="fallback disabled") as exc_info:
        await service.generate_reply("hello")

    assert exc_info.value.status_code == 429


# ============================================================
# Local Fallback
# ============================================================

@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    LLMTimeoutError("LLM request timeout"),
    LLMRateLimitError("LLM rate limit exceeded", status_code=429),
    LLMConnectionError("LLM connection error"),
    LLMError("LLM HTTP error 503: overloaded", status_code=503),
])
async def test_transient_error_falls_back_to_local(fallback_settings, error):
    primary = FakeProvider(error=error)
    fallback = FakeProvider(chunks=["local ", "answer"], name="local")
    service = ReplyService(fallback_settings, primary=primary, fallback=fallback)

    assert await service.generate_reply("hello") == "local answer"
    assert fallback.requests[0].model == "llama3"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fallback_keeps_model_when_no_local_model(fallback_settings):
    fallback_settings.local_llm_model = None
    fallback = FakeProvider(chunks=["ok"])
    service = ReplyService(fallback_settings, primary=FakeProvider(error=LLMConnectionError("down")), fallback=fallback)

    await service.generate_reply("hello")

    assert fallback.requests[0].model == fallback_settings.llm_model


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fallback_failure_raises(fallback_settings):
    primary = FakeProvider(error=LLMConnectionError("primary down"))
    fallback = FakeProvider(error=LLMConnectionError("local down"))
    service = ReplyService(fallback_settings, primary=primary, fallback=fallback)

    with pytest.raises(ReplyGenerationFailedError, match="local down"):
        await service.generate_reply("hello")


# ============================================================
# Timeouts / Lifecycle
# ============================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_stalled_stream_hits_service_timeout(service_settings):
    class StalledProvider(FakeProvider):
        async def generate_stream(self, request):
            await asyncio.sleep(10)
            yield "never"

    service_settings.timeout_s = 0.05
    service = ReplyService(service_settings, primary=StalledProvider())

    with pytest.raises(ReplyGenerationFailedError, match="service timeout"):
        await service.generate_reply("hello")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_closes_both_providers(fallback_settings):
    primary = FakeProvider()
    fallback = FakeProvider()
    service = ReplyService(fallback_settings, primary=primary, fallback=fallback)

    await service.close()

    assert primary.closed
    assert fallback.closed
