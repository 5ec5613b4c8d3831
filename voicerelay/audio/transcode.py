"""
Transcoding of reassembled WebM buffers to canonical PCM (mono, 16 kHz, s16 WAV).

The reassembled buffer is often a best-effort container (truncated clusters,
synthesized header, missing timestamps), so decoding is attempted several
times with escalating tolerance. Attempts are a plain ordered list of option
sets; TranscodeAttemptPolicy walks it and returns a tagged outcome.
"""

import asyncio
import contextlib
import io
import os
import tempfile
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence

import av

from voicerelay.audio.reassembly import ReassembledStream
from voicerelay.config.logging_config import get_logger

logger = get_logger(__name__)

# FFmpeg chatter that every truncated recorder buffer produces
NON_CRITICAL_PATTERNS = (
    'File ended prematurely',
    'Estimating duration from bitrate',
    'Truncating packet',
    'Format matroska,webm detected only with low score',
    'Guessed Channel Layout',
)
CRITICAL_MARKERS = ('Error', 'Invalid')


@dataclass(frozen=True)
class TranscodeAttempt:
    """
    One decode configuration.

    Attributes:
        label: Short name for logs
        format_hint: Demuxer name to force (None = auto-detect)
        options: Demuxer options passed to av.open
    """
    label: str
    format_hint: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)


DEFAULT_ATTEMPTS: tuple[TranscodeAttempt, ...] = (
    TranscodeAttempt(
        label="genpts",
        options={'fflags': '+genpts'},
    ),
    TranscodeAttempt(
        label="genpts+ignore_err",
        options={'fflags': '+genpts', 'err_detect': 'ignore_err'},
    ),
    TranscodeAttempt(
        label="webm+genpts+ignore_err",
        format_hint='webm',
        options={'fflags': '+genpts', 'err_detect': 'ignore_err'},
    ),
    TranscodeAttempt(
        label="webm+lenient",
        format_hint='webm',
        options={
            'fflags': '+genpts+igndts',
            'err_detect': 'ignore_err',
            'analyzeduration': '1000000',
        },
    ),
)


class TranscodeError(Exception):
    """A single decode attempt failed."""

    def __init__(self, message: str, diagnostics: Optional[List[str]] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or []


@dataclass(frozen=True)
class AttemptResult:
    """Tagged result of one attempt: pcm on success, error otherwise."""
    number: int
    attempt: TranscodeAttempt
    pcm: Optional[bytes] = None
    error: Optional[str] = None
    diagnostics: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.pcm is not None


@dataclass
class TranscodeOutcome:
    """Canonical PCM on success, or the attempt count and last error on terminal failure."""
    pcm: Optional[bytes]
    attempts: int
    last_error: Optional[str] = None
    results: List[AttemptResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.pcm is not None


def filter_diagnostics(lines: Sequence[str]) -> List[str]:
    """
    Keep only transcoder log lines that indicate a genuine error.

    Known non-critical notices (premature EOF, bitrate estimation, packet
    truncation, low-score detection, guessed layout) are dropped.
    """
    surfaced = []
    for line in lines:
        if any(pattern in line for pattern in NON_CRITICAL_PATTERNS):
            continue
        if any(marker in line for marker in CRITICAL_MARKERS):
            surfaced.append(line.strip())
    return surfaced


def pcm_to_wav(pcm: bytes, sample_rate: int) -> bytes:
    """Wrap mono s16le PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


class Transcoder(ABC):
    """Decodes a container file to canonical PCM (WAV bytes)."""

    @abstractmethod
    def transcode(self, path: str, attempt: TranscodeAttempt) -> bytes:
        """
        Decode one file with one attempt configuration.

        Raises:
            TranscodeError: Decode failed or produced no audio
        """


class PyAVTranscoder(Transcoder):
    """
    PyAV-backed transcoder: demux, decode the first audio stream, resample to
    mono s16 at the canonical rate and wrap as WAV.
    """

    def __init__(self, sample_rate: int = 16000, capture_level: Optional[int] = av.logging.WARNING):
        self.sample_rate = sample_rate
        # FFmpeg logs are off by default in PyAV; route them to Python logging so they can be captured
        if capture_level is not None:
            av.logging.set_level(capture_level)

    def transcode(self, path: str, attempt: TranscodeAttempt) -> bytes:
        with av.logging.Capture() as captured:
            try:
                pcm = self._decode(path, attempt)
            except (av.error.FFmpegError, ValueError, IndexError) as e:
                diagnostics = filter_diagnostics([message for _, _, message in captured])
                raise TranscodeError(f"{type(e).__name__}: {e}", diagnostics) from e

        diagnostics = filter_diagnostics([message for _, _, message in captured])
        for line in diagnostics:
            logger.warning(f"⚠️ [TRANSCODE] ffmpeg ({attempt.label}): {line}")

        if not pcm:
            raise TranscodeError("no audio frames decoded", diagnostics)

        return pcm_to_wav(pcm, self.sample_rate)

    def _decode(self, path: str, attempt: TranscodeAttempt) -> bytes:
        pcm_chunks = []
        with av.open(path, 'r', format=attempt.format_hint, options=dict(attempt.options)) as container:
            if not container.streams.audio:
                raise ValueError("container has no audio stream")
            audio_stream = container.streams.audio[0]
            logger.debug(
                f"🎵 [TRANSCODE] Opened {container.format.name}: codec={audio_stream.codec_context.name}, "
                f"rate={audio_stream.codec_context.sample_rate}"
            )

            resampler = av.AudioResampler(format='s16', layout='mono', rate=self.sample_rate)
            for frame in container.decode(audio_stream):
                for resampled in resampler.resample(frame):
                    pcm_chunks.append(resampled.to_ndarray().tobytes())

            # Drain samples buffered inside the resampler
            for resampled in resampler.resample(None):
                pcm_chunks.append(resampled.to_ndarray().tobytes())

        return b''.join(pcm_chunks)


@contextlib.contextmanager
def scoped_temp_file(data: bytes, prefix: str, suffix: str = '.webm') -> Iterator[str]:
    """Write data to a temp file and delete it on every exit path (cleanup errors swallowed)."""
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    try:
        with os.fdopen(fd, 'wb') as handle:
            handle.write(data)
        yield path
    finally:
        try:
            os.unlink(path)
        except OSError as e:
            logger.debug(f"⏭️ [TRANSCODE] Could not remove temp file {path}: {e}")


class TranscodeAttemptPolicy:
    """
    Drives a bounded sequence of decode attempts with escalating tolerance.

    Usage:
        policy = TranscodeAttemptPolicy(PyAVTranscoder())
        outcome = await policy.run(stream, session_id="conn-1")
        if outcome.ok:
            wav = outcome.pcm
    """

    def __init__(
        self,
        transcoder: Transcoder,
        attempts: Sequence[TranscodeAttempt] = DEFAULT_ATTEMPTS,
        max_attempts: int = 4,
        backoff_s: float = 0.1,
    ):
        self.transcoder = transcoder
        self.attempts = tuple(attempts)[:max_attempts]
        self.backoff_s = backoff_s

    async def run(self, stream: ReassembledStream, session_id: str = "-") -> TranscodeOutcome:
        loop = asyncio.get_running_loop()
        total = len(self.attempts)
        results: List[AttemptResult] = []

        with scoped_temp_file(stream.data, prefix=f"voicerelay-{session_id}-") as path:
            for number, attempt in enumerate(self.attempts, start=1):
                logger.info(f"🔄 [TRANSCODE] Attempt {number}/{total} ({attempt.label}), {len(stream.data)} bytes")
                try:
                    wav = await loop.run_in_executor(None, self.transcoder.transcode, path, attempt)
                except TranscodeError as e:
                    results.append(AttemptResult(
                        number=number,
                        attempt=attempt,
                        error=str(e),
                        diagnostics=tuple(e.diagnostics),
                    ))
                    logger.warning(f"⚠️ [TRANSCODE] Attempt {number}/{total} failed: {e}")
                    if number < total:
                        await asyncio.sleep(self.backoff_s)
                    continue

                results.append(AttemptResult(number=number, attempt=attempt, pcm=wav))
                logger.info(f"✅ [TRANSCODE] Decoded on attempt {number}/{total} → {len(wav)} bytes WAV")
                return TranscodeOutcome(pcm=wav, attempts=number, results=results)

        last_error = results[-1].error if results else "no transcode attempts configured"
        logger.error(f"❌ [TRANSCODE] All {len(results)} attempt(s) failed; last error: {last_error}")
        return TranscodeOutcome(pcm=None, attempts=len(results), last_error=last_error, results=results)
