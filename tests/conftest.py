"""
Pytest configuration and shared fixtures for voicerelay tests
"""
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from tests.fixtures.audio_samples import make_webm_recording
from tests.mocks.pipeline_doubles import RecordingPipeline, RecordingSink
from voicerelay.config.aggregation import AggregationConfig, reset_aggregation_config
from voicerelay.config.services import ServiceSettings, reset_service_settings


# ============================================================
# Configuration
# ============================================================

@pytest.fixture(autouse=True)
def reset_config_singletons():
    """Drop cached/overridden configs so tests never leak settings into each other"""
    reset_service_settings()
    reset_aggregation_config()
    yield
    reset_service_settings()
    reset_aggregation_config()


@pytest.fixture
def fast_config() -> AggregationConfig:
    """
    Aggregation config scaled down ~10x so timer behavior is testable quickly.

    Debounce 60ms, hard deadline 400ms, no transcode backoff.
    """
    return AggregationConfig(
        debounce_ms=60,
        hard_deadline_ms=400,
        min_chunk_bytes=50,
        tail_discard_max_chunks=3,
        max_transcode_attempts=4,
        transcode_backoff_ms=0,
    )


@pytest.fixture
def service_settings() -> ServiceSettings:
    """Service settings pointing at a fake OpenAI-compatible host"""
    return ServiceSettings(
        openai_api_key="sk-test",
        openai_base_url="https://api.test/v1",
        whisper_language="en",
        timeout_s=5.0,
    )


# ============================================================
# Pipeline / Sink Doubles
# ============================================================

@pytest.fixture
def pipeline() -> RecordingPipeline:
    return RecordingPipeline()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ============================================================
# Real Audio
# ============================================================

@pytest.fixture(scope="session")
def webm_recording() -> bytes:
    """One second of 440 Hz Opus/WebM"""
    return make_webm_recording()


# ============================================================
# FastAPI Test Client
# ============================================================

@pytest.fixture
async def test_client() -> AsyncGenerator[AsyncClient, None]:
    """
    FastAPI test client using httpx AsyncClient

    Usage:
        async def test_endpoint(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from voicerelay.api.server import app

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client
