"""
Exceptions raised by the flush pipeline.

Each error knows whether it is silent (batch dropped, nothing said to the user)
and how to describe itself as a ServiceErrorEvent for the browser.
"""

from typing import Optional

from voicerelay.types.error_events import ServiceErrorEvent, ServiceErrorType

AUTH_FAILED_MESSAGE = "API authentication failed. Please check configuration."


class PipelineError(Exception):
    """Base exception for flush pipeline failures."""

    kind = "pipeline"
    service_name = "pipeline"
    error_type = ServiceErrorType.INTERNAL_ERROR
    user_message = "An error occurred while processing audio"
    silent = False
    retry_suggested = True

    def to_event(self, session_id: Optional[str] = None) -> ServiceErrorEvent:
        details = str(self) or self.__class__.__name__
        return ServiceErrorEvent(
            service_name=self.service_name,
            error_type=self.error_type,
            user_message=self.user_message,
            technical_details=details[:2000],
            session_id=session_id,
            severity="warning" if self.silent else "error",
            retry_suggested=self.retry_suggested,
        )


class EmptyBatchError(PipelineError):
    """No chunk survived validity filtering."""

    kind = "EmptyBatch"
    service_name = "audio"
    error_type = ServiceErrorType.AUDIO_EMPTY_BATCH
    silent = True


class NoContainerStructureError(PipelineError):
    """No chunk in the batch carries a header or any recognizable element."""

    kind = "NoContainerStructure"
    service_name = "audio"
    error_type = ServiceErrorType.AUDIO_NO_CONTAINER_STRUCTURE
    user_message = "Could not process audio: the recording had no recognizable structure. Please try again."


class DecodeExhaustedError(PipelineError):
    """Every transcode attempt failed."""

    kind = "DecodeExhausted"
    service_name = "transcoder"
    error_type = ServiceErrorType.TRANSCODE_EXHAUSTED
    user_message = "Could not decode your audio. Please try again."

    def __init__(self, attempts: int, last_error: Optional[str]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{attempts} transcode attempt(s) failed; last error: {last_error}")


class UpstreamServiceError(PipelineError):
    """Failure talking to an external HTTP service."""

    auth_error_type = ServiceErrorType.INTERNAL_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)

    def to_event(self, session_id: Optional[str] = None) -> ServiceErrorEvent:
        event = super().to_event(session_id)
        if self.is_auth_failure:
            event = event.model_copy(update={
                "error_type": self.auth_error_type.value,
                "user_message": AUTH_FAILED_MESSAGE,
                "retry_suggested": False,
            })
        return event


class TranscriptionFailedError(UpstreamServiceError):
    """Speech-to-text request failed."""

    kind = "TranscriptionFailed"
    service_name = "stt"
    error_type = ServiceErrorType.STT_TRANSCRIPTION_FAILED
    auth_error_type = ServiceErrorType.STT_AUTHENTICATION_FAILED
    user_message = "Speech recognition failed. Please try again."


class ReplyGenerationFailedError(UpstreamServiceError):
    """Reply generation request failed."""

    kind = "ReplyGenerationFailed"
    service_name = "llm"
    error_type = ServiceErrorType.LLM_REPLY_FAILED
    auth_error_type = ServiceErrorType.LLM_AUTHENTICATION_FAILED
    user_message = "AI response failed. Please try again."
