"""
FastAPI Server

HTTP/WebSocket API for voicerelay: the browser voice endpoint, health check,
runtime aggregation tuning and (optionally) the static web client.
"""

import os
from datetime import datetime
from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from voicerelay.config.aggregation import (
    AggregationConfig,
    get_aggregation_config,
    reset_aggregation_config,
    update_aggregation_config,
)
from voicerelay.config.logging_config import get_logger
from voicerelay.config.services import get_service_settings
from voicerelay.services.reply_service import ReplyService, close_reply_service, get_reply_service
from voicerelay.services.stt_service import STTService, close_stt_service, get_stt_service
from voicerelay.voice.aggregator import ConnectionRegistry
from voicerelay.voice.handler import VoiceConnectionHandler
from voicerelay.voice.pipeline import VoicePipeline

logger = get_logger(__name__)

# ============================================================
# FAST API SETUP
# ============================================================

app = FastAPI(
    title="voicerelay API",
    description="Browser voice relay: fragmented WebM in, transcribed reply out",
    version="1.0.0"
)

# CORS middleware for cross-origin WebSocket and HTTP requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Live connections (one aggregator each)
connection_registry = ConnectionRegistry()

# ============================================================
# DEPENDENCY INJECTION PROVIDERS
# ============================================================


def get_connection_config() -> AggregationConfig:
    """
    Dependency injection provider for a connection's aggregation config.

    Resolved once per WebSocket connection, so runtime updates apply to
    connections opened afterwards and never to one already open.
    """
    return get_aggregation_config()


def get_voice_pipeline(
    config: AggregationConfig = Depends(get_connection_config),
    stt: STTService = Depends(get_stt_service),
    reply: ReplyService = Depends(get_reply_service),
) -> VoicePipeline:
    """
    Dependency injection provider for a connection's VoicePipeline.

    Built per connection from the config snapshot (chunk filter, transcode
    attempts and backoff) over the shared STT and reply services; tests replace
    it through app.dependency_overrides.
    """
    return VoicePipeline.from_config(stt, reply, config)


def get_connection_registry() -> ConnectionRegistry:
    """Dependency injection provider for the connection registry."""
    return connection_registry


# ============================================================
# LIFECYCLE
# ============================================================

@app.on_event("shutdown")
async def shutdown_services():
    """Flush pending batches and close upstream clients."""
    logger.info("🛑 Shutting down services...")

    pending = connection_registry.close_all()
    if pending:
        logger.info(f"🧹 {len(pending)} connection(s) still flushing at shutdown")

    await close_stt_service()
    await close_reply_service()

    logger.info("✅ Services shutdown complete")


# ============================================================
# HEALTH
# ============================================================

@app.get("/health")
async def health_check():
    """Basic server health status."""
    return {
        "status": "ok",
        "active_connections": len(connection_registry),
        "timestamp": datetime.now().isoformat()
    }


# ============================================================
# AGGREGATION CONFIG
# ============================================================

class AggregationConfigUpdate(BaseModel):
    """Aggregation configuration update request"""
    debounce_ms: float | None = None
    hard_deadline_ms: float | None = None
    min_chunk_bytes: int | None = None
    tail_discard_max_chunks: int | None = None
    max_transcode_attempts: int | None = None
    transcode_backoff_ms: float | None = None


def _config_response(config: AggregationConfig) -> dict:
    return {
        "debounce_ms": config.debounce_ms,
        "hard_deadline_ms": config.hard_deadline_ms,
        "min_chunk_bytes": config.min_chunk_bytes,
        "tail_discard_max_chunks": config.tail_discard_max_chunks,
        "max_transcode_attempts": config.max_transcode_attempts,
        "transcode_backoff_ms": config.transcode_backoff_ms,
        "sample_rate": config.sample_rate,
    }


@app.get("/api/aggregation-config")
async def get_aggregation_config_endpoint():
    """Current aggregation configuration (runtime overrides or environment defaults)."""
    return _config_response(get_aggregation_config())


@app.put("/api/aggregation-config")
async def update_aggregation_config_endpoint(config_update: AggregationConfigUpdate):
    """
    Update aggregation configuration at runtime.

    Note:
        Applies to connections opened after the update. Changes persist until
        restart; environment variables provide the defaults restored on restart.
    """
    try:
        updated_config = update_aggregation_config(**config_update.model_dump())
    except ValueError as e:
        logger.error(f"❌ Invalid aggregation config update: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        f"✅ Updated aggregation config: debounce={updated_config.debounce_ms}ms, "
        f"hard_deadline={updated_config.hard_deadline_ms}ms, "
        f"attempts={updated_config.max_transcode_attempts}"
    )
    return _config_response(updated_config)


@app.post("/api/aggregation-config/reset")
async def reset_aggregation_config_endpoint():
    """Reset aggregation configuration to environment variable defaults."""
    config = reset_aggregation_config()
    logger.info("🔄 Reset aggregation config to environment defaults")
    return _config_response(config)


# ============================================================
# VOICE WEBSOCKET
# ============================================================

async def _serve_voice(
    websocket: WebSocket,
    pipeline: VoicePipeline,
    registry: ConnectionRegistry,
    config: AggregationConfig,
) -> None:
    try:
        await websocket.accept()
        logger.info("🔌 WebSocket voice connection request received")

        # Same snapshot the pipeline was built from
        handler = VoiceConnectionHandler(websocket, pipeline, registry, config=config)
        await handler.start()

    except WebSocketDisconnect:
        logger.info("🔌 WebSocket voice connection closed")


@app.websocket("/ws/voice")
async def websocket_voice_endpoint(
    websocket: WebSocket,
    pipeline: VoicePipeline = Depends(get_voice_pipeline),
    registry: ConnectionRegistry = Depends(get_connection_registry),
    config: AggregationConfig = Depends(get_connection_config),
):
    """
    WebSocket endpoint for browser voice streaming.

    Protocol:
    - Client → Server: binary WebM fragments, or JSON {"type": "user_audio", "audio": ...}
      and {"type": "user_audio_end"}
    - Server → Client: {"type": "ai_text", "text": ...} or
      {"type": "error", "message": ..., "error_type": ...}
    """
    await _serve_voice(websocket, pipeline, registry, config)


@app.websocket("/")
async def websocket_root_endpoint(
    websocket: WebSocket,
    pipeline: VoicePipeline = Depends(get_voice_pipeline),
    registry: ConnectionRegistry = Depends(get_connection_registry),
    config: AggregationConfig = Depends(get_connection_config),
):
    """Same protocol as /ws/voice, for clients that connect to the server root."""
    await _serve_voice(websocket, pipeline, registry, config)


# ============================================================
# STATIC WEB CLIENT
# ============================================================

# Mounted last so the routes above take precedence over the catch-all mount
_static_dir = get_service_settings().static_dir
if os.path.isdir(_static_dir):
    app.mount("/", StaticFiles(directory=_static_dir, html=True), name="static")
    logger.info(f"📁 Serving static files from {_static_dir}")
