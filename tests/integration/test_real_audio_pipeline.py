"""
Integration tests: real Opus/WebM recordings through reassembly and PyAV

A one-second tone is encoded like a browser MediaRecorder would, sliced into
timeslice-sized fragments and pushed through the real reassembler, transcoder
and attempt policy. Upstream services are mocked.
"""
import io
import wave
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fixtures.audio_samples import split_fragments
from voicerelay.audio.chunks import Chunk
from voicerelay.audio.reassembly import FragmentReassembler, HeaderConfidence
from voicerelay.audio.sniffer import EBML_MAGIC
from voicerelay.audio.transcode import PyAVTranscoder, TranscodeAttemptPolicy
from voicerelay.voice.aggregator import AggregationBatch, FlushReason
from voicerelay.voice.pipeline import VoicePipeline

CLUSTER_ID = b'\x1f\x43\xb6\x75'


def as_chunks(fragments):
    return [Chunk(data=data, sequence=i, received_at=float(i)) for i, data in enumerate(fragments)]


def read_wav(data: bytes):
    with wave.open(io.BytesIO(data), 'rb') as wav_file:
        return wav_file.getnchannels(), wav_file.getsampwidth(), wav_file.getframerate(), wav_file.getnframes()


@pytest.fixture
def policy():
    return TranscodeAttemptPolicy(PyAVTranscoder(sample_rate=16000), backoff_s=0)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_in_order_fragments_decode_to_canonical_wav(webm_recording, policy):
    fragments = split_fragments(webm_recording, 1500)
    stream = FragmentReassembler().reassemble(as_chunks(fragments))

    outcome = await policy.run(stream, session_id="real-1")

    assert stream.confidence is HeaderConfidence.VERIFIED
    assert stream.data == webm_recording
    assert outcome.ok
    assert outcome.attempts == 1

    channels, width, rate, frames = read_wav(outcome.pcm)
    assert (channels, width, rate) == (1, 2, 16000)
    assert 0.8 * 16000 <= frames <= 1.2 * 16000


@pytest.mark.integration
@pytest.mark.asyncio
async def test_lead_byte_split_is_repaired_and_decodes(webm_recording, policy):
    """The recorder's first slice lost the 0x1A lead byte; restoring it recovers the file"""
    assert webm_recording.startswith(EBML_MAGIC)
    fragments = split_fragments(webm_recording[1:], 1500)

    stream = FragmentReassembler().reassemble(as_chunks(fragments))
    outcome = await policy.run(stream)

    assert stream.confidence is HeaderConfidence.REPAIRED
    assert stream.data == webm_recording
    assert outcome.ok


@pytest.mark.integration
@pytest.mark.asyncio
async def test_garbage_before_header_is_trimmed(webm_recording, policy):
    fragments = [b'\x00\x11\x22\x33' + webm_recording[:1500]] + split_fragments(webm_recording[1500:], 1500)

    stream = FragmentReassembler().reassemble(as_chunks(fragments))
    outcome = await policy.run(stream)

    assert stream.trimmed_bytes == 4
    assert stream.data == webm_recording
    assert outcome.ok


@pytest.mark.integration
@pytest.mark.asyncio
async def test_mid_stream_fragments_never_raise(webm_recording, policy):
    """Without the initialization segment decoding is best effort; failure is a tagged outcome"""
    cluster_at = webm_recording.find(CLUSTER_ID)
    assert cluster_at > 0
    fragments = split_fragments(webm_recording[cluster_at:], 1500)

    stream = FragmentReassembler().reassemble(as_chunks(fragments))
    outcome = await policy.run(stream)

    assert stream.confidence is HeaderConfidence.UNVERIFIED
    assert stream.data.startswith(EBML_MAGIC)
    assert 1 <= outcome.attempts <= 4
    if not outcome.ok:
        assert outcome.last_error


@pytest.mark.integration
@pytest.mark.asyncio
async def test_voice_pipeline_end_to_end_with_mocked_services(webm_recording, fast_config):
    stt = MagicMock()
    stt.transcribe = AsyncMock(return_value="testing one two")
    reply = MagicMock()
    reply.generate_reply = AsyncMock(return_value="Loud and clear.")
    voice_pipeline = VoicePipeline.from_config(stt, reply, fast_config)

    batch = AggregationBatch(
        connection_id="real-e2e",
        chunks=as_chunks(split_fragments(webm_recording, 1500)),
        flush_reason=FlushReason.END_OF_STREAM,
        first_chunk_at=0.0,
        flushed_at=1.0,
    )

    assert await voice_pipeline.process(batch) == "Loud and clear."

    wav_bytes = stt.transcribe.await_args.args[0]
    channels, width, rate, _ = read_wav(wav_bytes)
    assert (channels, width, rate) == (1, 2, 16000)
    reply.generate_reply.assert_awaited_once_with("testing one two", session_id="real-e2e")
