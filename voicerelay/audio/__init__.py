"""
Audio handling: recorder chunks, container sniffing, reassembly and transcoding.
"""

from voicerelay.audio.chunks import Chunk, DEFAULT_MIN_CHUNK_BYTES, decode_audio_payload, filter_valid_chunks
from voicerelay.audio.sniffer import (
    EBML_MAGIC,
    MINIMAL_EBML_HEADER,
    ContainerSignature,
    SniffResult,
    StructuralKind,
    has_structural_evidence,
    sniff,
)
from voicerelay.audio.reassembly import FragmentReassembler, HeaderConfidence, ReassembledStream
from voicerelay.audio.transcode import (
    DEFAULT_ATTEMPTS,
    AttemptResult,
    PyAVTranscoder,
    TranscodeAttempt,
    TranscodeAttemptPolicy,
    TranscodeError,
    TranscodeOutcome,
    Transcoder,
    filter_diagnostics,
)

__all__ = [
    "Chunk",
    "DEFAULT_MIN_CHUNK_BYTES",
    "decode_audio_payload",
    "filter_valid_chunks",
    "EBML_MAGIC",
    "MINIMAL_EBML_HEADER",
    "ContainerSignature",
    "SniffResult",
    "StructuralKind",
    "has_structural_evidence",
    "sniff",
    "FragmentReassembler",
    "HeaderConfidence",
    "ReassembledStream",
    "DEFAULT_ATTEMPTS",
    "AttemptResult",
    "PyAVTranscoder",
    "TranscodeAttempt",
    "TranscodeAttemptPolicy",
    "TranscodeError",
    "TranscodeOutcome",
    "Transcoder",
    "filter_diagnostics",
]
