"""
voicerelay Types Module

Error event schema and pipeline exceptions
"""

from .error_events import ServiceErrorEvent, ServiceErrorType
from .pipeline_errors import (
    PipelineError,
    EmptyBatchError,
    NoContainerStructureError,
    DecodeExhaustedError,
    UpstreamServiceError,
    TranscriptionFailedError,
    ReplyGenerationFailedError,
)

__all__ = [
    "ServiceErrorEvent",
    "ServiceErrorType",
    "PipelineError",
    "EmptyBatchError",
    "NoContainerStructureError",
    "DecodeExhaustedError",
    "UpstreamServiceError",
    "TranscriptionFailedError",
    "ReplyGenerationFailedError",
]
