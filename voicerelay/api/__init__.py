"""
FastAPI application for voicerelay
"""

from voicerelay.api.server import app, get_connection_config, get_voice_pipeline, get_connection_registry

__all__ = ["app", "get_connection_config", "get_voice_pipeline", "get_connection_registry"]
