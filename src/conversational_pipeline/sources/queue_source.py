"""Transcription source fed through an asyncio.Queue."""

import asyncio
import contextlib

from conversational_pipeline.logging import get_logger
from conversational_pipeline.models import TranscriptSource

from .base import TranscriptionSource

logger = get_logger()


class QueueTranscriptionSource(TranscriptionSource):
    """
    Drains ``(chunk_id | None, text)`` items from a queue and forwards them.

    Producers (websocket readers, worker threads via
    ``loop.call_soon_threadsafe``) only need to put items on the queue.
    """

    def __init__(self, source: TranscriptSource, queue: asyncio.Queue | None = None):
        super().__init__()
        self._source = TranscriptSource(source)
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.items_forwarded = 0

    @property
    def source(self) -> TranscriptSource:
        return self._source

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._drain())
        logger.info("transcription_source_started", source=self._source.value)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("transcription_source_stopped", source=self._source.value)

    async def put(self, chunk_id: str | None, text: str) -> None:
        await self.queue.put((chunk_id, text))

    async def _drain(self) -> None:
        while True:
            chunk_id, text = await self.queue.get()
            try:
                self.emit(chunk_id, text)
                self.items_forwarded += 1
            except Exception as e:
                logger.warning(
                    "transcript_listener_failed",
                    source=self._source.value,
                    chunk_id=chunk_id,
                    error=str(e),
                )
            finally:
                self.queue.task_done()
