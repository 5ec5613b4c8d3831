"""
Per-connection audio aggregation.

Chunks from one browser connection accumulate in a ConnectionState until a
flush is triggered by one of:
- debounce: no new chunk for `debounce_ms`
- hard deadline: `hard_deadline_ms` after the first chunk of the batch
- end of stream: explicit `user_audio_end` from the browser
- disconnect: one best-effort detached flush during teardown

Timers are explicit deadlines on a monotonic clock, serviced by a single
scheduler task per connection that sleeps until the earliest deadline or until
woken by a new chunk. Flushes move the chunk list out of the state (so the next
batch can accumulate immediately) and run under a per-connection lock, so two
flushes of the same connection never overlap.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Set

from voicerelay.audio.chunks import Chunk
from voicerelay.audio.sniffer import has_structural_evidence
from voicerelay.config.aggregation import AggregationConfig, get_aggregation_config
from voicerelay.config.logging_config import get_logger
from voicerelay.types.error_events import ServiceErrorEvent, ServiceErrorType
from voicerelay.types.pipeline_errors import (
    DecodeExhaustedError,
    PipelineError,
    UpstreamServiceError,
)

logger = get_logger(__name__)


class FlushReason(str, Enum):
    """What triggered a flush"""
    DEBOUNCE = "debounce"
    HARD_DEADLINE = "hard_deadline"
    END_OF_STREAM = "end_of_stream"
    DISCONNECT = "disconnect"


@dataclass
class AggregationBatch:
    """
    Chunks taken out of a connection by one flush.

    Attributes:
        connection_id: Connection the chunks came from
        chunks: Chunks in arrival order (unfiltered)
        flush_reason: Trigger of this flush
        first_chunk_at: Monotonic arrival time of the first chunk
        flushed_at: Monotonic time the batch was taken
    """
    connection_id: str
    chunks: List[Chunk]
    flush_reason: FlushReason
    first_chunk_at: float
    flushed_at: float

    @property
    def total_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    @property
    def wait_ms(self) -> float:
        return (self.flushed_at - self.first_chunk_at) * 1000


@dataclass
class ConnectionState:
    """Mutable aggregation state for one connection (owned by its aggregator)."""
    chunks: List[Chunk] = field(default_factory=list)
    debounce_deadline: Optional[float] = None
    hard_deadline: Optional[float] = None
    first_chunk_at: Optional[float] = None
    next_sequence: int = 0
    closed: bool = False

    def next_deadline(self) -> Optional[float]:
        deadlines = [d for d in (self.debounce_deadline, self.hard_deadline) if d is not None]
        return min(deadlines) if deadlines else None


class BatchProcessor(Protocol):
    """Runs one batch through reassembly, transcoding, transcription and reply."""

    async def process(self, batch: AggregationBatch) -> Optional[str]: ...


class ReplySink(Protocol):
    """Delivers results back to the connection; must tolerate a closed destination."""

    async def send_reply(self, text: str) -> None: ...

    async def send_error(self, event: ServiceErrorEvent) -> None: ...


# Strong references to detached disconnect flushes (the event loop only keeps weak ones)
_background_tasks: Set[asyncio.Task] = set()


def _describe_failure(error: PipelineError) -> str:
    if isinstance(error, DecodeExhaustedError):
        return f"attempts={error.attempts}, last_error={error.last_error}"
    if isinstance(error, UpstreamServiceError):
        return f"status={error.status_code}"
    return ""


async def run_flush(
    batch: AggregationBatch,
    pipeline: BatchProcessor,
    lock: asyncio.Lock,
    sink: ReplySink,
    notify_errors: bool = True,
) -> Optional[str]:
    """
    Process one batch under the connection's flush lock and deliver the result.

    Every failure is caught here; at most one error message is sent per flush,
    and none when notify_errors is False (disconnect flushes).

    Returns:
        Reply text that was delivered, or None
    """
    async with lock:
        tag = f"[FLUSH] [{batch.connection_id}]"
        logger.info(
            f"🔄 {tag} Processing {len(batch.chunks)} chunk(s), {batch.total_bytes} bytes "
            f"(reason={batch.flush_reason.value}, waited {batch.wait_ms:.0f}ms)"
        )

        try:
            reply = await pipeline.process(batch)

        except PipelineError as e:
            if e.silent:
                logger.info(f"⏭️ {tag} Dropped batch silently ({e.kind}): {e}")
                return None
            logger.error(f"❌ {tag} {e.kind}: {e} {_describe_failure(e)}".rstrip())
            if notify_errors:
                await sink.send_error(e.to_event(batch.connection_id))
            return None

        except Exception as e:
            logger.error(f"❌ {tag} Unexpected error: {type(e).__name__}: {e}", exc_info=True)
            if notify_errors:
                await sink.send_error(ServiceErrorEvent(
                    service_name="pipeline",
                    error_type=ServiceErrorType.INTERNAL_ERROR,
                    user_message=PipelineError.user_message,
                    technical_details=f"{type(e).__name__}: {e}"[:2000],
                    session_id=batch.connection_id,
                    retry_suggested=True,
                ))
            return None

        if reply is None:
            logger.info(f"🤫 {tag} No speech recognized, nothing to reply")
            return None

        await sink.send_reply(reply)
        logger.info(f"✅ {tag} Reply delivered ({len(reply)} chars)")
        return reply


class ConnectionAggregator:
    """
    Flush policy state machine for one connection: Idle → Accumulating → Flushing → Idle.

    Usage:
        aggregator = ConnectionAggregator("conn-1", pipeline, sink)
        aggregator.start()
        aggregator.add_chunk(data)          # from the receive loop
        aggregator.end_of_stream()          # on user_audio_end
        aggregator.close()                  # on disconnect
    """

    def __init__(
        self,
        connection_id: str,
        pipeline: BatchProcessor,
        sink: ReplySink,
        config: Optional[AggregationConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.connection_id = connection_id
        self.pipeline = pipeline
        self.sink = sink
        self.config = config or get_aggregation_config()
        self.clock = clock

        self.state = ConnectionState()
        self.flush_count = 0

        self._flush_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._scheduler_task: Optional[asyncio.Task] = None
        self._flush_tasks: Set[asyncio.Task] = set()

    @property
    def is_flushing(self) -> bool:
        return self._flush_lock.locked()

    @property
    def pending_chunks(self) -> int:
        return len(self.state.chunks)

    def start(self) -> None:
        """Start the deadline scheduler (requires a running event loop)."""
        if self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(
                self._run_scheduler(), name=f"aggregator-{self.connection_id}"
            )
            logger.debug(
                f"⏱️ [AGGREGATOR] [{self.connection_id}] Scheduler started "
                f"(debounce={self.config.debounce_ms:.0f}ms, hard_deadline={self.config.hard_deadline_ms:.0f}ms)"
            )

    def add_chunk(self, data: bytes) -> Optional[Chunk]:
        """
        Append a chunk and move the deadlines.

        The first chunk of a batch arms the hard deadline; every chunk re-arms
        the debounce deadline.
        """
        if self.state.closed:
            logger.debug(f"⏭️ [AGGREGATOR] [{self.connection_id}] Ignoring chunk after close")
            return None

        now = self.clock()
        chunk = Chunk(data=data, sequence=self.state.next_sequence, received_at=now)
        self.state.next_sequence += 1

        if not self.state.chunks:
            self.state.first_chunk_at = now
            self.state.hard_deadline = now + self.config.hard_deadline_s

        self.state.chunks.append(chunk)
        self.state.debounce_deadline = now + self.config.debounce_s

        logger.trace(
            f"🎤 [AGGREGATOR] [{self.connection_id}] Chunk #{chunk.sequence}: {len(data)} bytes, "
            f"first bytes={data[:8].hex()}, batch={len(self.state.chunks)}"
        )

        self._wakeup.set()
        return chunk

    def end_of_stream(self) -> Optional[asyncio.Task]:
        """
        Flush now on explicit end of stream, or drop an unrecoverable tail.

        A tail with fewer than `tail_discard_max_chunks` chunks and no structural
        evidence is discarded silently. Ingestion is not blocked; the returned
        task completes when the flush has been processed.
        """
        chunks = self.state.chunks
        if not chunks:
            logger.debug(f"⏭️ [AGGREGATOR] [{self.connection_id}] End of stream with empty batch")
            return None

        if len(chunks) < self.config.tail_discard_max_chunks and not any(
            has_structural_evidence(chunk.data) for chunk in chunks
        ):
            batch = self._take_batch(FlushReason.END_OF_STREAM)
            logger.info(
                f"🗑️ [AGGREGATOR] [{self.connection_id}] Discarding {len(batch.chunks)} unstructured "
                f"tail chunk(s) ({batch.total_bytes} bytes)"
            )
            self._wakeup.set()
            return None

        task = self._flush(FlushReason.END_OF_STREAM)
        self._wakeup.set()
        return task

    def close(self) -> Optional[asyncio.Task]:
        """
        Tear down: stop the scheduler and hand any pending batch to a detached flush.

        The detached task gets only the batch, the pipeline, the flush lock and
        the sink, so it never touches this aggregator after teardown. Its errors
        are logged, not sent.
        """
        if self.state.closed:
            return None
        self.state.closed = True

        if self._scheduler_task is not None:
            self._scheduler_task.cancel()
            self._scheduler_task = None

        batch = self._take_batch(FlushReason.DISCONNECT)
        if batch is None:
            logger.debug(f"🧹 [AGGREGATOR] [{self.connection_id}] Closed with empty batch")
            return None

        logger.info(
            f"🧹 [AGGREGATOR] [{self.connection_id}] Closed with {len(batch.chunks)} pending chunk(s), "
            f"flushing in background"
        )
        task = asyncio.create_task(
            run_flush(batch, self.pipeline, self._flush_lock, self.sink, notify_errors=False),
            name=f"disconnect-flush-{self.connection_id}",
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every flush started so far (tests and graceful shutdown)."""
        while self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)

    def _take_batch(self, reason: FlushReason) -> Optional[AggregationBatch]:
        """Clear both deadlines and move the chunk list out of the state."""
        self.state.debounce_deadline = None
        self.state.hard_deadline = None

        if not self.state.chunks:
            self.state.first_chunk_at = None
            return None

        chunks, self.state.chunks = self.state.chunks, []
        first_chunk_at = self.state.first_chunk_at if self.state.first_chunk_at is not None else chunks[0].received_at
        self.state.first_chunk_at = None

        return AggregationBatch(
            connection_id=self.connection_id,
            chunks=chunks,
            flush_reason=reason,
            first_chunk_at=first_chunk_at,
            flushed_at=self.clock(),
        )

    def _flush(self, reason: FlushReason) -> Optional[asyncio.Task]:
        batch = self._take_batch(reason)
        if batch is None:
            return None

        self.flush_count += 1
        logger.info(
            f"📤 [AGGREGATOR] [{self.connection_id}] Flush #{self.flush_count} "
            f"({reason.value}, {len(batch.chunks)} chunk(s))"
        )

        task = asyncio.create_task(
            run_flush(batch, self.pipeline, self._flush_lock, self.sink),
            name=f"flush-{self.connection_id}-{self.flush_count}",
        )
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        return task

    def _due_reason(self, now: float) -> FlushReason:
        if self.state.hard_deadline is not None and now >= self.state.hard_deadline:
            return FlushReason.HARD_DEADLINE
        return FlushReason.DEBOUNCE

    async def _run_scheduler(self) -> None:
        try:
            while not self.state.closed:
                self._wakeup.clear()
                deadline = self.state.next_deadline()

                if deadline is None:
                    await self._wakeup.wait()
                    continue

                now = self.clock()
                if deadline > now:
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=deadline - now)
                    except asyncio.TimeoutError:
                        pass
                    continue

                self._flush(self._due_reason(now))

        except asyncio.CancelledError:
            logger.debug(f"⏱️ [AGGREGATOR] [{self.connection_id}] Scheduler cancelled")
            raise


class ConnectionRegistry:
    """Live aggregators keyed by connection id."""

    def __init__(self):
        self._aggregators: Dict[str, ConnectionAggregator] = {}

    def open(
        self,
        connection_id: str,
        pipeline: BatchProcessor,
        sink: ReplySink,
        config: Optional[AggregationConfig] = None,
    ) -> ConnectionAggregator:
        if connection_id in self._aggregators:
            raise ValueError(f"Connection {connection_id} is already registered")

        aggregator = ConnectionAggregator(connection_id, pipeline, sink, config)
        aggregator.start()
        self._aggregators[connection_id] = aggregator
        logger.info(f"🔌 [REGISTRY] Opened {connection_id} ({len(self._aggregators)} active)")
        return aggregator

    def get(self, connection_id: str) -> Optional[ConnectionAggregator]:
        return self._aggregators.get(connection_id)

    def close(self, connection_id: str) -> Optional[asyncio.Task]:
        aggregator = self._aggregators.pop(connection_id, None)
        if aggregator is None:
            return None
        task = aggregator.close()
        logger.info(f"🔌 [REGISTRY] Closed {connection_id} ({len(self._aggregators)} active)")
        return task

    def close_all(self) -> List[asyncio.Task]:
        tasks = [self.close(connection_id) for connection_id in list(self._aggregators)]
        return [task for task in tasks if task is not None]

    def __len__(self) -> int:
        return len(self._aggregators)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._aggregators
