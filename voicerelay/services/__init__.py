"""
voicerelay Services

External collaborators of the voice pipeline: transcription and reply generation.
"""

from voicerelay.services.stt_service import STTService, get_stt_service, close_stt_service
from voicerelay.services.reply_service import ReplyService, get_reply_service, close_reply_service

__all__ = [
    "STTService",
    "get_stt_service",
    "close_stt_service",
    "ReplyService",
    "get_reply_service",
    "close_reply_service",
]
