"""
Tiered Logging Configuration for voicerelay

Provides a flexible logging system with 5 levels:
- TRACE (5): Ultra-verbose debugging (raw chunk bytes, every scheduler wakeup)
- DEBUG (10): Detailed debugging (deadline changes, reassembly decisions)
- INFO (20): Standard operational messages (connections, flushes, replies)
- WARN (30): Warnings (dropped chunks, failed attempts, repaired headers)
- ERROR (40): Errors (exceptions, exhausted retries)

Environment Variables:
- LOG_LEVEL: Global log level (TRACE, DEBUG, INFO, WARN, ERROR) [default: INFO]
- LOG_LEVEL_AUDIO: Override for chunk handling, sniffing and reassembly
- LOG_LEVEL_TRANSCODE: Override for the PyAV transcode attempts
- LOG_LEVEL_VOICE: Override for the aggregator, pipeline and WebSocket handler
- LOG_LEVEL_STT: Override for the transcription service
- LOG_LEVEL_LLM: Override for reply generation and LLM providers

Example Usage:
    from voicerelay.config.logging_config import get_logger

    logger = get_logger(__name__)
    logger.trace("🔍 Raw audio chunk: %d bytes", len(chunk))
    logger.info("✅ Flush complete")
"""

import logging
import os


# Define custom TRACE level (more verbose than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log a message with severity 'TRACE'."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


# Add trace method to Logger class
logging.Logger.trace = trace


# Module name mapping: Python module path → Logical service name
MODULE_NAME_MAP = {
    "voicerelay.audio.chunks": "voicerelay.audio",
    "voicerelay.audio.sniffer": "voicerelay.audio",
    "voicerelay.audio.reassembly": "voicerelay.audio",
    "voicerelay.audio.transcode": "voicerelay.transcode",
    "voicerelay.voice.aggregator": "voicerelay.voice",
    "voicerelay.voice.pipeline": "voicerelay.voice",
    "voicerelay.voice.handler": "voicerelay.voice",
    "voicerelay.services.stt_service": "voicerelay.stt",
    "voicerelay.services.reply_service": "voicerelay.llm",
    "voicerelay.llm.openai_compatible": "voicerelay.llm",
    "voicerelay.llm.factory": "voicerelay.llm",
}

OVERRIDE_AREAS = ["AUDIO", "TRANSCODE", "VOICE", "STT", "LLM"]


def get_log_level(module_name: str, default: str = "INFO") -> int:
    """
    Get the log level for a module, checking both area-specific and global env vars.

    Priority:
    1. Area-specific env var (LOG_LEVEL_AUDIO, LOG_LEVEL_VOICE, etc.)
    2. Global LOG_LEVEL env var
    3. Default level (INFO)

    Args:
        module_name: Python module name (e.g., "voicerelay.voice.aggregator")
        default: Default log level if no env vars set

    Returns:
        Numeric log level (5=TRACE, 10=DEBUG, 20=INFO, 30=WARN, 40=ERROR)
    """
    logical_name = MODULE_NAME_MAP.get(module_name, module_name)

    # "voicerelay.voice" → "VOICE"
    if "." in logical_name:
        area_name = logical_name.split(".")[-1].upper()
    else:
        area_name = None

    if area_name:
        area_level = os.getenv(f"LOG_LEVEL_{area_name}")
        if area_level:
            return _parse_log_level(area_level)

    global_level = os.getenv("LOG_LEVEL")
    if global_level:
        return _parse_log_level(global_level)

    return _parse_log_level(default)


def _parse_log_level(level_str: str) -> int:
    """Parse log level string (TRACE, DEBUG, INFO, WARN, ERROR) to numeric value."""
    level_map = {
        "TRACE": TRACE,
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def configure_logging(default_level: str = "INFO") -> None:
    """
    Configure logging system with tiered levels and per-area control.

    Called once at process startup (see voicerelay.main).

    Args:
        default_level: Default log level if LOG_LEVEL env var not set
    """
    global_level = os.getenv("LOG_LEVEL", default_level)
    numeric_level = _parse_log_level(global_level)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.info(f"🚀 Logging system initialized (global level: {global_level})")

    area_overrides = []
    for area in OVERRIDE_AREAS:
        override = os.getenv(f"LOG_LEVEL_{area}")
        if override:
            area_overrides.append(f"{area}={override}")

    if area_overrides:
        root_logger.info(f"📋 Area overrides: {', '.join(area_overrides)}")


def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for a module with appropriate log level.

    Args:
        module_name: Python module name (use __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(module_name)

    level = get_log_level(module_name)
    logger.setLevel(level)

    return logger
