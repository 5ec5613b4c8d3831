"""
Aggregation Configuration Module

Flush-policy and transcode-retry thresholds for browser audio aggregation.
Loaded from environment variables with fallback defaults.

These values are tuning policy observed to work with MediaRecorder timeslice
output, not correctness requirements: the aggregator behaves correctly for any
values that pass validate().
"""

import os
from dataclasses import dataclass


@dataclass
class AggregationConfig:
    """
    Configuration for per-connection chunk aggregation and transcoding.

    Controls when a buffered batch of recorder fragments is flushed and how
    hard the transcoder tries before giving up.
    """

    # Quiet period after the last chunk before flushing (milliseconds)
    debounce_ms: float = 700

    # Upper bound from the first chunk of a batch to its flush (milliseconds)
    # Guarantees bounded latency under continuous chunk arrival
    hard_deadline_ms: float = 5000

    # Chunks smaller than this carry no usable container structure
    min_chunk_bytes: int = 50

    # End-of-stream tails with no structure and fewer chunks than this are dropped
    tail_discard_max_chunks: int = 3

    # Transcode attempts with escalating tolerance
    max_transcode_attempts: int = 4

    # Fixed pause between failed transcode attempts (milliseconds)
    transcode_backoff_ms: float = 100

    # Canonical PCM sample rate (mono, 16-bit)
    sample_rate: int = 16000

    @property
    def debounce_s(self) -> float:
        return self.debounce_ms / 1000

    @property
    def hard_deadline_s(self) -> float:
        return self.hard_deadline_ms / 1000

    @property
    def transcode_backoff_s(self) -> float:
        return self.transcode_backoff_ms / 1000

    def validate(self) -> None:
        """Validate configuration values."""
        if self.debounce_ms <= 0:
            raise ValueError("debounce_ms must be positive")
        if self.hard_deadline_ms < self.debounce_ms:
            raise ValueError("hard_deadline_ms must be >= debounce_ms")
        if self.min_chunk_bytes < 1:
            raise ValueError("min_chunk_bytes must be at least 1")
        if self.tail_discard_max_chunks < 0:
            raise ValueError("tail_discard_max_chunks must be >= 0")
        if not 1 <= self.max_transcode_attempts <= 4:
            raise ValueError("max_transcode_attempts must be between 1 and 4")
        if self.transcode_backoff_ms < 0:
            raise ValueError("transcode_backoff_ms must be >= 0")
        if self.sample_rate not in (8000, 16000, 22050, 24000, 44100, 48000):
            raise ValueError("sample_rate must be a standard PCM rate")


def load_aggregation_config() -> AggregationConfig:
    """
    Load aggregation configuration from environment variables.

    Environment Variables:
        AUDIO_DEBOUNCE_MS: Quiet period before flush (default: 700)
        AUDIO_HARD_DEADLINE_MS: Max wait from first chunk (default: 5000)
        AUDIO_MIN_CHUNK_BYTES: Minimum usable chunk size (default: 50)
        AUDIO_TAIL_DISCARD_MAX_CHUNKS: Unstructured tail discard count (default: 3)
        TRANSCODE_MAX_ATTEMPTS: Transcode attempts (default: 4)
        TRANSCODE_BACKOFF_MS: Pause between attempts (default: 100)
        TRANSCODE_SAMPLE_RATE: Canonical PCM rate (default: 16000)

    Returns:
        AggregationConfig with values loaded from environment or defaults
    """
    config = AggregationConfig(
        debounce_ms=float(os.getenv('AUDIO_DEBOUNCE_MS', '700')),
        hard_deadline_ms=float(os.getenv('AUDIO_HARD_DEADLINE_MS', '5000')),
        min_chunk_bytes=int(os.getenv('AUDIO_MIN_CHUNK_BYTES', '50')),
        tail_discard_max_chunks=int(os.getenv('AUDIO_TAIL_DISCARD_MAX_CHUNKS', '3')),
        max_transcode_attempts=int(os.getenv('TRANSCODE_MAX_ATTEMPTS', '4')),
        transcode_backoff_ms=float(os.getenv('TRANSCODE_BACKOFF_MS', '100')),
        sample_rate=int(os.getenv('TRANSCODE_SAMPLE_RATE', '16000')),
    )

    config.validate()
    return config


# Global singleton instance
_aggregation_config: AggregationConfig | None = None

# Runtime overrides (in-memory, reset on restart)
_runtime_overrides: AggregationConfig | None = None


def get_aggregation_config() -> AggregationConfig:
    """
    Get global aggregation configuration singleton.

    Priority:
    1. Runtime overrides (set via update_aggregation_config)
    2. Environment variables (loaded on first call)
    """
    global _aggregation_config

    if _runtime_overrides is not None:
        return _runtime_overrides

    if _aggregation_config is None:
        _aggregation_config = load_aggregation_config()
    return _aggregation_config


def update_aggregation_config(
    debounce_ms: float | None = None,
    hard_deadline_ms: float | None = None,
    min_chunk_bytes: int | None = None,
    tail_discard_max_chunks: int | None = None,
    max_transcode_attempts: int | None = None,
    transcode_backoff_ms: float | None = None,
) -> AggregationConfig:
    """
    Update aggregation configuration at runtime.

    Only affects connections opened after the update; live aggregators keep
    the config they were created with.

    Raises:
        ValueError: If validation fails
    """
    global _runtime_overrides

    current = get_aggregation_config()

    new_config = AggregationConfig(
        debounce_ms=debounce_ms if debounce_ms is not None else current.debounce_ms,
        hard_deadline_ms=hard_deadline_ms if hard_deadline_ms is not None else current.hard_deadline_ms,
        min_chunk_bytes=min_chunk_bytes if min_chunk_bytes is not None else current.min_chunk_bytes,
        tail_discard_max_chunks=tail_discard_max_chunks if tail_discard_max_chunks is not None else current.tail_discard_max_chunks,
        max_transcode_attempts=max_transcode_attempts if max_transcode_attempts is not None else current.max_transcode_attempts,
        transcode_backoff_ms=transcode_backoff_ms if transcode_backoff_ms is not None else current.transcode_backoff_ms,
        sample_rate=current.sample_rate,
    )

    new_config.validate()

    _runtime_overrides = new_config

    return new_config


def reset_aggregation_config() -> AggregationConfig:
    """Reset aggregation configuration to environment variable defaults."""
    global _runtime_overrides
    _runtime_overrides = None
    return get_aggregation_config()
