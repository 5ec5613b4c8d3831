"""
Pipeline and reply sink doubles

Stand-ins for VoicePipeline and WebSocketReplySink so aggregator and
WebSocket tests can observe batches, replies and errors without audio
decoding or upstream services.
"""
import asyncio
from typing import List, Optional

from voicerelay.types.error_events import ServiceErrorEvent


class RecordingPipeline:
    """
    Stand-in for VoicePipeline: records every batch and returns a canned reply.

    Set `error` to make process() raise, `delay_s` to make it slow.
    """

    def __init__(self, reply: Optional[str] = "hello back", delay_s: float = 0.0):
        self.reply = reply
        self.delay_s = delay_s
        self.error: Optional[BaseException] = None
        self.batches = []
        self.active = 0
        self.max_active = 0
        self.processed = asyncio.Event()

    @property
    def sequences(self) -> List[List[int]]:
        """Chunk sequence numbers of every batch processed so far"""
        return [[chunk.sequence for chunk in batch.chunks] for batch in self.batches]

    async def process(self, batch):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.batches.append(batch)
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            if self.error is not None:
                raise self.error
            return self.reply
        finally:
            self.active -= 1
            self.processed.set()


class RecordingSink:
    """Collects replies and error events instead of writing to a socket"""

    def __init__(self):
        self.replies: List[str] = []
        self.errors: List[ServiceErrorEvent] = []

    async def send_reply(self, text: str) -> None:
        self.replies.append(text)

    async def send_error(self, event: ServiceErrorEvent) -> None:
        self.errors.append(event)
