"""
Recorder chunk types and inbound payload decoding.

A Chunk is one timeslice emitted by the browser's MediaRecorder. Chunks are
immutable; the aggregator owns them until a flush hands them to reassembly.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from voicerelay.config.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MIN_CHUNK_BYTES = 50


@dataclass(frozen=True)
class Chunk:
    """
    One recorder fragment.

    Attributes:
        data: Raw container bytes as received
        sequence: Arrival order within the connection (0-based)
        received_at: Monotonic arrival timestamp (seconds)
    """
    data: bytes
    sequence: int
    received_at: float

    def __len__(self) -> int:
        return len(self.data)


def filter_valid_chunks(
    chunks: Iterable[Chunk],
    min_bytes: int = DEFAULT_MIN_CHUNK_BYTES,
) -> List[Chunk]:
    """
    Drop chunks too small to carry usable container structure.

    Args:
        chunks: Chunks in arrival order
        min_bytes: Minimum accepted chunk size

    Returns:
        Surviving chunks, arrival order preserved
    """
    valid = []
    dropped_sizes = []
    for chunk in chunks:
        if len(chunk.data) >= min_bytes:
            valid.append(chunk)
        else:
            dropped_sizes.append(len(chunk.data))

    if dropped_sizes:
        logger.warning(
            f"⚠️ [CHUNK_FILTER] Dropped {len(dropped_sizes)} chunk(s) under {min_bytes} bytes "
            f"(sizes: {dropped_sizes}), keeping {len(valid)}"
        )

    return valid


def decode_audio_payload(audio: Any) -> Optional[bytes]:
    """
    Decode the `audio` field of a JSON `user_audio` message.

    Browsers and test clients send one of:
    - a base64 string
    - an array of byte values
    - a serialised buffer: {"type": "Buffer", "data": [...]}

    Returns:
        Decoded bytes, or None when the payload is unsupported, malformed or empty
    """
    try:
        if isinstance(audio, str):
            data = base64.b64decode(audio, validate=False)
        elif isinstance(audio, list):
            data = bytes(audio)
        elif isinstance(audio, dict) and audio.get('type') == 'Buffer' and isinstance(audio.get('data'), list):
            data = bytes(audio['data'])
        else:
            logger.warning(f"⚠️ [PAYLOAD] Unsupported audio chunk format: {type(audio).__name__}")
            return None
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning(f"⚠️ [PAYLOAD] Failed to decode audio chunk: {type(e).__name__}: {e}")
        return None

    if not data:
        logger.warning("⚠️ [PAYLOAD] Dropped empty audio chunk")
        return None

    return data
