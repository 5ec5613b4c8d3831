"""
voicerelay process entry point.

Loads .env, configures logging and serves the FastAPI app with uvicorn.
"""

import asyncio

import uvicorn
from dotenv import load_dotenv

from voicerelay.config.logging_config import configure_logging, get_logger
from voicerelay.config.services import get_service_settings

load_dotenv()

configure_logging(default_level="INFO")
logger = get_logger(__name__)


async def start_api():
    """Start FastAPI server"""
    # Imported here so the server module sees the environment loaded above
    from voicerelay.api.server import app

    settings = get_service_settings()
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        ws_ping_interval=300,  # Send keepalive ping every 5 minutes
        ws_ping_timeout=60,    # Wait up to 60 seconds for pong response
    )
    server = uvicorn.Server(config)

    logger.info("=" * 60)
    logger.info(f"🚀 voicerelay listening on {settings.host}:{settings.port}")
    logger.info(f"📍 Voice WebSocket: /ws/voice (also /)")
    logger.info("=" * 60)

    await server.serve()


def run():
    """Console script entry point."""
    try:
        asyncio.run(start_api())
    except KeyboardInterrupt:
        logger.info("👋 Interrupted by user")


if __name__ == "__main__":
    run()
