"""
Audio Test Fixtures

Sample recorder fragments and real Opus/WebM recordings for voicerelay tests.

Fragments are hand-built byte strings with the lead bytes MediaRecorder
timeslices actually start with; recordings are encoded with PyAV so the
transcoder has genuine container data to decode.
"""
import io
from typing import List

import av
import numpy as np
import pytest

from voicerelay.audio.sniffer import EBML_MAGIC, MINIMAL_EBML_HEADER

# ============================================================
# Recorder Fragments
# ============================================================

# Header-bearing first fragment: EBML header + Segment ID + payload
WEBM_HEADER_CHUNK = MINIMAL_EBML_HEADER + b'\x18\x53\x80\x67' + bytes(range(1, 61))

# Mid-stream fragments, as MediaRecorder emits after the first timeslice
CLUSTER_CHUNK = b'\x1f\x43\xb6\x75' + bytes([0x02]) * 60
SIMPLEBLOCK_CHUNK = b'\xa3' + bytes([0x03]) * 63

# No recognizable structure (first byte outside every structural range)
GARBAGE_CHUNK = bytes([0x00]) * 64

assert EBML_MAGIC not in CLUSTER_CHUNK + SIMPLEBLOCK_CHUNK + GARBAGE_CHUNK


# ============================================================
# WebM Recordings (Opus, as browsers record)
# ============================================================

def make_webm_recording(duration_s: float = 1.0, rate: int = 48000, frequency: float = 440.0) -> bytes:
    """
    Encode a sine tone as Opus-in-WebM, like a browser MediaRecorder would.

    Args:
        duration_s: Recording length in seconds
        rate: Encoder sample rate (Opus runs at 48kHz)
        frequency: Tone frequency in Hz

    Returns:
        Complete WebM file bytes

    Skips the calling test when this FFmpeg build has no libopus encoder.
    """
    try:
        av.codec.Codec('libopus', 'w')
    except ValueError:
        pytest.skip("libopus encoder not available in this PyAV build")

    buffer = io.BytesIO()
    with av.open(buffer, mode='w', format='webm') as container:
        stream = container.add_stream('libopus', rate=rate, layout='mono')
        total = int(duration_s * rate)
        pts = 0
        while pts < total:
            count = min(960, total - pts)  # 20ms frames
            t = np.arange(pts, pts + count) / rate
            samples = (np.sin(2 * np.pi * frequency * t) * 0.3 * 32767).astype(np.int16).reshape(1, -1)
            frame = av.AudioFrame.from_ndarray(samples, format='s16', layout='mono')
            frame.sample_rate = rate
            frame.pts = pts
            for packet in stream.encode(frame):
                container.mux(packet)
            pts += count

        # Flush encoder
        for packet in stream.encode(None):
            container.mux(packet)

    return buffer.getvalue()


def split_fragments(data: bytes, size: int) -> List[bytes]:
    """Slice a recording into fixed-size fragments, like a timesliced recorder"""
    return [data[i:i + size] for i in range(0, len(data), size)]
