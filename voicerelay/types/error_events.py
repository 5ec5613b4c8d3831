"""
voicerelay Error Event System

Purpose: Standardized error event schema for pipeline-to-browser error propagation.
Every failed flush that is worth telling the user about is turned into exactly one
ServiceErrorEvent, which the reply sink serialises onto the WebSocket.

Key Features:
- Typed error categories (ServiceErrorType enum)
- User-friendly messages (for browser display)
- Technical details (for server logs only)
- Session context tracking
- Severity levels (warning, error, critical)
- Retry suggestions
"""

from enum import Enum
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field


class ServiceErrorType(str, Enum):
    """
    Enumeration of all possible pipeline error types.

    Categories:
    - Audio errors: nothing usable in the batch, or no container structure
    - Transcode errors: every decode attempt failed
    - STT errors: transcription request failed
    - LLM errors: reply generation failed
    """

    # Audio reassembly
    AUDIO_EMPTY_BATCH = "audio_empty_batch"
    AUDIO_NO_CONTAINER_STRUCTURE = "audio_no_container_structure"

    # Transcoding
    TRANSCODE_EXHAUSTED = "transcode_exhausted"

    # STT
    STT_TRANSCRIPTION_FAILED = "stt_transcription_failed"
    STT_AUTHENTICATION_FAILED = "stt_authentication_failed"

    # LLM
    LLM_REPLY_FAILED = "llm_reply_failed"
    LLM_AUTHENTICATION_FAILED = "llm_authentication_failed"

    # Anything the pipeline did not anticipate
    INTERNAL_ERROR = "internal_error"


class ServiceErrorEvent(BaseModel):
    """
    Standardized error event emitted for a failed flush.

    Attributes:
        event_type: Always "service_error" for routing
        service_name: Which stage failed ("audio", "transcoder", "stt", "llm", "pipeline")
        error_type: Specific error category (see ServiceErrorType)
        user_message: Human-readable message for browser display
        technical_details: Detailed error info for server logs and debugging
        session_id: Connection id the failed flush belonged to
        severity: Error severity level ("warning", "error", "critical")
        retry_suggested: Whether the user should simply try speaking again

    Example:
        ```python
        error_event = ServiceErrorEvent(
            service_name="transcoder",
            error_type=ServiceErrorType.TRANSCODE_EXHAUSTED,
            user_message="Could not decode your audio. Please try again.",
            technical_details="4 attempts failed; last error: Invalid data found",
            session_id="conn-1f3a",
            retry_suggested=True
        )
        ```
    """

    model_config = ConfigDict(use_enum_values=True)

    event_type: Literal["service_error"] = "service_error"
    service_name: str = Field(
        ...,
        description="Pipeline stage that encountered the error",
        examples=["audio", "transcoder", "stt", "llm"]
    )
    error_type: ServiceErrorType = Field(
        ...,
        description="Specific error category"
    )
    user_message: str = Field(
        ...,
        description="User-friendly error message for browser display",
        min_length=1,
        max_length=500
    )
    technical_details: str = Field(
        ...,
        description="Technical error details for server logs",
        min_length=1,
        max_length=2000
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Connection id if error is connection-specific"
    )
    severity: str = Field(
        default="error",
        description="Error severity level",
        pattern="^(warning|error|critical)$"
    )
    retry_suggested: bool = Field(
        default=False,
        description="Whether user should retry the operation"
    )
