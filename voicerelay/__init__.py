"""
voicerelay - browser voice relay.

Receives time-sliced MediaRecorder WebM fragments over a WebSocket, repairs
and reassembles them, transcodes to PCM, transcribes and replies.
"""

__version__ = "1.0.0"
