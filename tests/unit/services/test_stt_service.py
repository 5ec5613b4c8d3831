"""
Unit tests for STTService

Requests go through an httpx.MockTransport, so the multipart body, headers
and error mapping are checked without a real transcription endpoint.
"""
import json

import httpx
import pytest

from voicerelay.config.services import ServiceSettings
from voicerelay.services.stt_service import STTService
from voicerelay.types.pipeline_errors import TranscriptionFailedError

WAV = b'RIFF\x24\x00\x00\x00WAVEfmt ' + b'\x00' * 28


def make_service(settings: ServiceSettings, handler) -> STTService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return STTService(settings, client=client)


# ============================================================
# Success
# ============================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_transcribe_posts_multipart_wav(service_settings):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['url'] = str(request.url)
        captured['auth'] = request.headers['Authorization']
        captured['content_type'] = request.headers['Content-Type']
        captured['body'] = request.read()
        return httpx.Response(200, json={"text": "  hello there  "})

    service = make_service(service_settings, handler)

    text = await service.transcribe(WAV, session_id="conn-1")

    assert text == "hello there"
    assert captured['url'] == "https://api.test/v1/audio/transcriptions"
    assert captured['auth'] == "Bearer sk-test"
    assert captured['content_type'].startswith("multipart/form-data")
    assert b'name="model"' in captured['body']
    assert b'whisper-1' in captured['body']
    assert b'name="language"' in captured['body']
    assert b'filename="audio.wav"' in captured['body']
    assert WAV in captured['body']

    metrics = await service.get_metrics()
    assert metrics['total_requests'] == 1
    assert metrics['failed_requests'] == 0

    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_language_omitted_when_blank(service_settings):
    service_settings.whisper_language = ""
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.read())
        return httpx.Response(200, json={"text": "hi"})

    service = make_service(service_settings, handler)
    await service.transcribe(WAV)

    assert b'name="language"' not in bodies[0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_transcript_is_returned_as_empty_string(service_settings):
    service = make_service(service_settings, lambda request: httpx.Response(200, json={"text": "   "}))

    assert await service.transcribe(WAV) == ""


# ============================================================
# Failures
# ============================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key_is_auth_failure():
    service = make_service(ServiceSettings(openai_api_key=None), lambda request: httpx.Response(200))

    with pytest.raises(TranscriptionFailedError) as exc_info:
        await service.transcribe(WAV)

    assert exc_info.value.status_code == 401
    assert exc_info.value.is_auth_failure


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403, 429, 500])
async def test_http_error_keeps_status_and_body(service_settings, status):
    body = json.dumps({"error": {"message": "Incorrect API key provided"}})
    service = make_service(service_settings, lambda request: httpx.Response(status, text=body))

    with pytest.raises(TranscriptionFailedError) as exc_info:
        await service.transcribe(WAV)

    assert exc_info.value.status_code == status
    assert "Incorrect API key provided" in str(exc_info.value)
    assert service.failed_requests == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_error_body_truncated(service_settings):
    service = make_service(service_settings, lambda request: httpx.Response(500, text="e" * 2000))

    with pytest.raises(TranscriptionFailedError) as exc_info:
        await service.transcribe(WAV)

    assert str(exc_info.value) == "Transcription HTTP 500: " + "e" * 500


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transport_error_wrapped(service_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(service_settings, handler)

    with pytest.raises(TranscriptionFailedError, match="ConnectError") as exc_info:
        await service.transcribe(WAV)

    assert exc_info.value.status_code is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_non_json_response(service_settings):
    service = make_service(service_settings, lambda request: httpx.Response(200, text="<html>gateway</html>"))

    with pytest.raises(TranscriptionFailedError, match="not JSON"):
        await service.transcribe(WAV)
