"""
Unit tests for pipeline errors and their browser-facing error events
"""
import pytest

from voicerelay.types.error_events import ServiceErrorEvent, ServiceErrorType
from voicerelay.types.pipeline_errors import (
    AUTH_FAILED_MESSAGE,
    DecodeExhaustedError,
    EmptyBatchError,
    NoContainerStructureError,
    ReplyGenerationFailedError,
    TranscriptionFailedError,
)


@pytest.mark.unit
def test_empty_batch_is_the_only_silent_error():
    assert EmptyBatchError().silent
    assert not NoContainerStructureError().silent
    assert not DecodeExhaustedError(4, "x").silent
    assert not TranscriptionFailedError("x").silent
    assert not ReplyGenerationFailedError("x").silent


@pytest.mark.unit
def test_decode_exhausted_event():
    event = DecodeExhaustedError(4, "Invalid data found when processing input").to_event("conn-1")

    assert isinstance(event, ServiceErrorEvent)
    assert event.service_name == "transcoder"
    assert event.error_type == ServiceErrorType.TRANSCODE_EXHAUSTED
    assert event.session_id == "conn-1"
    assert event.retry_suggested
    assert "Invalid data found" in event.technical_details


@pytest.mark.unit
def test_no_structure_event_has_user_message():
    event = NoContainerStructureError("no header or element in 2 chunk(s)").to_event()

    assert event.error_type == ServiceErrorType.AUDIO_NO_CONTAINER_STRUCTURE
    assert event.user_message
    assert event.session_id is None


@pytest.mark.unit
@pytest.mark.parametrize("status", [401, 403])
def test_stt_auth_failure_event(status):
    event = TranscriptionFailedError(f"Transcription HTTP {status}", status_code=status).to_event("conn-1")

    assert event.error_type == ServiceErrorType.STT_AUTHENTICATION_FAILED
    assert event.user_message == AUTH_FAILED_MESSAGE
    assert not event.retry_suggested


@pytest.mark.unit
def test_llm_auth_failure_event():
    event = ReplyGenerationFailedError("LLM authentication failed (401)", status_code=401).to_event()

    assert event.error_type == ServiceErrorType.LLM_AUTHENTICATION_FAILED
    assert event.user_message == AUTH_FAILED_MESSAGE


@pytest.mark.unit
@pytest.mark.parametrize("status", [None, 429, 500])
def test_non_auth_upstream_failure_keeps_generic_message(status):
    error = ReplyGenerationFailedError("LLM HTTP error", status_code=status)
    event = error.to_event()

    assert not error.is_auth_failure
    assert event.error_type == ServiceErrorType.LLM_REPLY_FAILED
    assert event.user_message == ReplyGenerationFailedError.user_message


@pytest.mark.unit
def test_technical_details_truncated():
    event = TranscriptionFailedError("x" * 5000, status_code=500).to_event()

    assert len(event.technical_details) == 2000
