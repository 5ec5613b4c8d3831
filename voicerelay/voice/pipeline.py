"""
Voice pipeline: one flushed batch in, one reply (or a typed failure) out.

    filter → reassemble → transcode → transcribe → reply
"""

import time
from typing import Optional

from voicerelay.audio.chunks import filter_valid_chunks
from voicerelay.audio.reassembly import FragmentReassembler
from voicerelay.audio.transcode import PyAVTranscoder, TranscodeAttemptPolicy
from voicerelay.config.aggregation import AggregationConfig, get_aggregation_config
from voicerelay.config.logging_config import get_logger
from voicerelay.services.reply_service import ReplyService
from voicerelay.services.stt_service import STTService
from voicerelay.types.pipeline_errors import DecodeExhaustedError, EmptyBatchError
from voicerelay.voice.aggregator import AggregationBatch

logger = get_logger(__name__)


class VoicePipeline:
    """
    Runs a batch through every stage in sequence.

    Stage failures are raised as PipelineError subclasses; the aggregator
    decides what the user gets to see.
    """

    def __init__(
        self,
        reassembler: FragmentReassembler,
        policy: TranscodeAttemptPolicy,
        stt: STTService,
        reply: ReplyService,
        config: Optional[AggregationConfig] = None,
    ):
        self.reassembler = reassembler
        self.policy = policy
        self.stt = stt
        self.reply = reply
        self.config = config or get_aggregation_config()

    @classmethod
    def from_config(
        cls,
        stt: STTService,
        reply: ReplyService,
        config: Optional[AggregationConfig] = None,
    ) -> "VoicePipeline":
        """Build the default PyAV-backed pipeline."""
        config = config or get_aggregation_config()
        policy = TranscodeAttemptPolicy(
            PyAVTranscoder(sample_rate=config.sample_rate),
            max_attempts=config.max_transcode_attempts,
            backoff_s=config.transcode_backoff_s,
        )
        return cls(FragmentReassembler(), policy, stt, reply, config)

    async def process(self, batch: AggregationBatch) -> Optional[str]:
        """
        Process one batch.

        Returns:
            Reply text, or None when nothing was said

        Raises:
            EmptyBatchError: No chunk survived filtering (silent)
            NoContainerStructureError: Nothing recognizable in the batch
            DecodeExhaustedError: Every transcode attempt failed
            TranscriptionFailedError: Speech-to-text failed
            ReplyGenerationFailedError: Reply generation failed
        """
        session_id = batch.connection_id
        start_time = time.time()

        chunks = filter_valid_chunks(batch.chunks, self.config.min_chunk_bytes)
        if not chunks:
            raise EmptyBatchError(
                f"all {len(batch.chunks)} chunk(s) under {self.config.min_chunk_bytes} bytes"
            )

        stream = self.reassembler.reassemble(chunks)
        logger.info(
            f"🧩 [PIPELINE] [{session_id}] Reassembled {stream.chunk_count} chunk(s) → "
            f"{len(stream.data)} bytes ({stream.confidence.value})"
        )

        outcome = await self.policy.run(stream, session_id=session_id)
        if not outcome.ok:
            raise DecodeExhaustedError(outcome.attempts, outcome.last_error)

        transcript = await self.stt.transcribe(outcome.pcm, session_id=session_id)
        if not transcript:
            logger.info(f"🤫 [PIPELINE] [{session_id}] Empty transcript, skipping reply")
            return None

        reply = await self.reply.generate_reply(transcript, session_id=session_id)

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"⏱️ [PIPELINE] [{session_id}] Batch processed in {elapsed_ms:.0f}ms")
        return reply
