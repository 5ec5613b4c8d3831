"""
Voice connection handling: aggregation, pipeline and WebSocket handler.
"""

from voicerelay.voice.aggregator import (
    AggregationBatch,
    ConnectionAggregator,
    ConnectionRegistry,
    ConnectionState,
    FlushReason,
    run_flush,
)
from voicerelay.voice.pipeline import VoicePipeline
from voicerelay.voice.handler import VoiceConnectionHandler, WebSocketReplySink

__all__ = [
    "AggregationBatch",
    "ConnectionAggregator",
    "ConnectionRegistry",
    "ConnectionState",
    "FlushReason",
    "run_flush",
    "VoicePipeline",
    "VoiceConnectionHandler",
    "WebSocketReplySink",
]
