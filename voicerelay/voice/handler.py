"""
WebSocket voice handler.

Handles browser audio streaming over one WebSocket:
- Receive MediaRecorder WebM fragments (binary frames or JSON `user_audio`)
- Feed them to the connection's aggregator
- Relay replies (`ai_text`) and failures (`error`) back to the browser

Inbound messages:
- binary frame                                   → one chunk
- {"type": "user_audio", "audio": <payload>}     → one chunk (base64 / byte array / Buffer)
- {"type": "user_audio_end"}                     → end of stream

Outbound messages:
- {"type": "ai_text", "text": "..."}
- {"type": "error", "message": "...", "error_type": "..."}
"""

import json
import uuid
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from voicerelay.audio.chunks import decode_audio_payload
from voicerelay.config.aggregation import AggregationConfig
from voicerelay.config.logging_config import get_logger
from voicerelay.types.error_events import ServiceErrorEvent
from voicerelay.voice.aggregator import BatchProcessor, ConnectionAggregator, ConnectionRegistry

logger = get_logger(__name__)


class WebSocketReplySink:
    """
    Sends replies and errors to one WebSocket.

    Once the socket is gone every send is skipped, so background flushes that
    outlive the connection can call it safely.
    """

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.is_open = True

    def mark_closed(self) -> None:
        self.is_open = False

    async def send_reply(self, text: str) -> None:
        await self._send({"type": "ai_text", "text": text})

    async def send_error(self, event: ServiceErrorEvent) -> None:
        logger.warning(
            f"⚠️ [SINK] [{self.connection_id}] Service error: {event.service_name} - {event.error_type} "
            f"(severity={event.severity})"
        )
        await self._send({
            "type": "error",
            "message": event.user_message,
            "error_type": event.error_type,
        })

    async def _send(self, message: dict) -> None:
        if not self.is_open:
            logger.debug(f"⏭️ [SINK] [{self.connection_id}] Skipping {message['type']} send (connection closed)")
            return

        try:
            await self.websocket.send_json(message)
        except Exception as e:
            self.is_open = False
            logger.debug(f"⏭️ [SINK] [{self.connection_id}] Could not send {message['type']} (connection likely closed): {e}")


class VoiceConnectionHandler:
    """
    Drives one browser connection from accept to teardown.

    The WebSocket must already be accepted by the endpoint.
    """

    def __init__(
        self,
        websocket: WebSocket,
        pipeline: BatchProcessor,
        registry: ConnectionRegistry,
        config: Optional[AggregationConfig] = None,
        connection_id: Optional[str] = None,
    ):
        self.websocket = websocket
        self.pipeline = pipeline
        self.registry = registry
        self.config = config
        self.connection_id = connection_id or uuid.uuid4().hex[:12]
        self.sink = WebSocketReplySink(websocket, self.connection_id)
        self.chunks_received = 0
        self.aggregator: Optional[ConnectionAggregator] = None

    async def start(self) -> None:
        """Receive until the browser disconnects, then tear down."""
        self.aggregator = self.registry.open(self.connection_id, self.pipeline, self.sink, self.config)
        logger.info(f"🎙️ [WS] Voice connection {self.connection_id} established")

        try:
            await self._receive_loop()
        except WebSocketDisconnect:
            logger.info(f"🔌 [WS] Browser disconnected ({self.connection_id})")
        finally:
            self._cleanup()

    async def _receive_loop(self) -> None:
        while True:
            message = await self.websocket.receive()

            if message["type"] == "websocket.disconnect":
                logger.info(
                    f"🔌 [WS] Browser disconnected ({self.connection_id}, code={message.get('code')}, "
                    f"chunks_received={self.chunks_received})"
                )
                return

            data = message.get("bytes")
            text = message.get("text")
            if data is not None:
                self._on_audio(data)
            elif text is not None:
                self._on_text(text)

    def _on_audio(self, data: bytes) -> None:
        if not data:
            logger.debug(f"⏭️ [WS] [{self.connection_id}] Ignoring empty binary frame")
            return
        self.chunks_received += 1
        logger.debug(f"🎤 [WS] [{self.connection_id}] Chunk #{self.chunks_received}: {len(data)} bytes")
        self.aggregator.add_chunk(data)

    def _on_text(self, text: str) -> None:
        try:
            message: Any = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"⚠️ [WS] [{self.connection_id}] Ignoring invalid JSON message: {e}")
            return

        if not isinstance(message, dict):
            logger.warning(f"⚠️ [WS] [{self.connection_id}] Ignoring non-object message: {type(message).__name__}")
            return

        message_type = message.get("type")
        if message_type == "user_audio":
            data = decode_audio_payload(message.get("audio"))
            if data is not None:
                self._on_audio(data)
        elif message_type == "user_audio_end":
            logger.info(f"🏁 [WS] [{self.connection_id}] End of stream after {self.chunks_received} chunk(s)")
            self.aggregator.end_of_stream()
        else:
            logger.debug(f"⏭️ [WS] [{self.connection_id}] Ignoring message type: {message_type}")

    def _cleanup(self) -> None:
        logger.info(f"🧹 [WS] Cleaning up connection {self.connection_id}")
        # Detached flush (if any) keeps its own references; the socket is unusable from here on
        self.registry.close(self.connection_id)
        self.sink.mark_closed()
