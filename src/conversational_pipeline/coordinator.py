"""
Chunk Emission Coordinator

Per-chunk state machine that turns facet events into exactly one emission:

    PENDING -> AUDIO_READY | TRANSCRIPT_READY -> READY -> EMITTED
    any non-emitted state -> TIMED_OUT   (forced emission, is_complete=False)

The completion path and the timeout path race for a per-chunk claim. The
claim is taken synchronously, before any await, so whichever path gets there
first is the only one that ever reaches the emission callback.

Usage:
    coordinator = ChunkEmissionCoordinator(
        registry=ChunkRegistry(),
        pipeline=create_default_pipeline(),
        monitor=LatencyMonitor(),
        retained=RetainedChunks(),
        on_emit=handle_chunk,
    )
    coordinator.create_chunk("c1", 0, 8000)
    coordinator.on_audio_ready("c1", "blob:abc", vad_score=0.7)
    coordinator.on_transcript("c1", TranscriptSource.CLOUD_ASR, "hola")
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from conversational_pipeline.errors import UnknownChunkError
from conversational_pipeline.latency import LatencyMonitor
from conversational_pipeline.logging import get_logger
from conversational_pipeline.merger import SourceMerger
from conversational_pipeline.middleware import MiddlewarePipeline
from conversational_pipeline.middleware.pipeline import finalize
from conversational_pipeline.models import (
    DEFAULT_SOURCE_PRIORITY,
    Chunk,
    ChunkState,
    EmittedChunk,
    LatencySample,
    StageLatencies,
    TranscriptSource,
    best_text,
)
from conversational_pipeline.registry import ChunkRegistry, monotonic_ms
from conversational_pipeline.retention import RetainedChunks

logger = get_logger()

DEFAULT_CHUNK_TIMEOUT_MS = 4000.0

EmitCallback = Callable[[EmittedChunk], Awaitable[None] | None]


@dataclass
class CoordinatorStats:
    """Statistics tracked by the coordinator."""

    chunks_created: int = 0
    chunks_emitted: int = 0
    chunks_timed_out: int = 0
    emissions_suppressed: int = 0
    callback_errors: int = 0
    late_events: int = 0
    average_latency_ms: float = 0.0

    def record_emission(self, latency_ms: float, timed_out: bool) -> None:
        n = self.chunks_emitted + self.chunks_timed_out
        self.average_latency_ms = (self.average_latency_ms * n + latency_ms) / (n + 1)
        if timed_out:
            self.chunks_timed_out += 1
        else:
            self.chunks_emitted += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunks_created": self.chunks_created,
            "chunks_emitted": self.chunks_emitted,
            "chunks_timed_out": self.chunks_timed_out,
            "emissions_suppressed": self.emissions_suppressed,
            "callback_errors": self.callback_errors,
            "late_events": self.late_events,
            "average_latency_ms": round(self.average_latency_ms, 2),
        }


class ChunkEmissionCoordinator:
    """Decides when each chunk is emitted and guarantees it happens once."""

    def __init__(
        self,
        registry: ChunkRegistry,
        pipeline: MiddlewarePipeline,
        monitor: LatencyMonitor,
        retained: RetainedChunks,
        merger: SourceMerger | None = None,
        on_emit: EmitCallback | None = None,
        chunk_timeout_ms: float = DEFAULT_CHUNK_TIMEOUT_MS,
        source_priority: Iterable[TranscriptSource] = DEFAULT_SOURCE_PRIORITY,
        clock: Callable[[], float] = monotonic_ms,
    ):
        if chunk_timeout_ms <= 0:
            raise ValueError("chunk_timeout_ms must be positive")

        self.registry = registry
        self.pipeline = pipeline
        self.monitor = monitor
        self.retained = retained
        self.merger = merger
        self.chunk_timeout_s = chunk_timeout_ms / 1000.0
        self.source_priority = tuple(TranscriptSource(s) for s in source_priority)
        self._clock = clock

        self._on_emit: EmitCallback | None = on_emit

        # Emission guard: ids whose single emission has been claimed
        self._claimed: set[str] = set()
        self._timeouts: dict[str, asyncio.TimerHandle] = {}
        # Terminal state of chunks already disposed from the registry
        self._final_states: dict[str, ChunkState] = {}

        self._stats = CoordinatorStats()
        self._stopped = False

        # Background task tracking (prevents fire-and-forget)
        self._background_tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Events
    # =========================================================================

    def create_chunk(self, chunk_id: str, start_time: float, end_time: float) -> Chunk | None:
        """Register a chunk and arm its timeout.

        Raises:
            DuplicateChunkError: if the id was registered before
        """
        if self._stopped:
            self._drop_late_event("create", chunk_id)
            return None

        loop = asyncio.get_running_loop()
        chunk = self.registry.create(chunk_id, start_time, end_time)
        self._stats.chunks_created += 1
        self._timeouts[chunk_id] = loop.call_later(self.chunk_timeout_s, self._on_timeout, chunk_id)
        return chunk

    def on_audio_ready(
        self, chunk_id: str, processed_audio_ref: str, vad_score: float | None = None
    ) -> None:
        if self._stopped:
            self._drop_late_event("audio", chunk_id)
            return
        if self._is_finished(chunk_id):
            self._drop_late_event("audio", chunk_id)
            return

        self.registry.set_audio_ready(chunk_id, processed_audio_ref, vad_score)
        self._evaluate(chunk_id)

    def on_transcript(self, chunk_id: str, source: TranscriptSource | str, text: str) -> None:
        if self._stopped:
            self._drop_late_event("transcript", chunk_id)
            return

        source = TranscriptSource(source)
        if self._is_finished(chunk_id):
            # Too late for the chunk; the session text still benefits
            if self.merger is not None:
                self.merger.on_source_text(source, text, chunk_id=chunk_id)
            self._drop_late_event("transcript", chunk_id)
            return

        self.registry.append_transcript(chunk_id, source, text)
        if self.merger is not None:
            self.merger.on_source_text(source, text, chunk_id=chunk_id)
        self._evaluate(chunk_id)

    # =========================================================================
    # Emission
    # =========================================================================

    def _evaluate(self, chunk_id: str) -> None:
        chunk = self.registry.get(chunk_id)
        if chunk is None or chunk_id in self._claimed:
            return

        if not self.registry.is_ready(chunk_id):
            chunk.state = self.registry.facet_state(chunk_id)
            return

        self._claim(chunk_id)
        chunk.state = ChunkState.READY
        self._spawn(self._emit(chunk, timed_out=False))

    def _on_timeout(self, chunk_id: str) -> None:
        self._timeouts.pop(chunk_id, None)
        if self._stopped or chunk_id in self._claimed:
            return
        chunk = self.registry.get(chunk_id)
        if chunk is None:
            return

        self._claim(chunk_id)
        chunk.state = ChunkState.TIMED_OUT
        logger.info(
            "chunk_timed_out",
            chunk_id=chunk_id,
            has_audio=chunk.has_audio,
            has_transcript=chunk.has_transcript,
        )
        self._spawn(self._emit(chunk, timed_out=True))

    def _claim(self, chunk_id: str) -> None:
        self._claimed.add(chunk_id)
        handle = self._timeouts.pop(chunk_id, None)
        if handle is not None:
            handle.cancel()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _emit(self, chunk: Chunk, timed_out: bool) -> None:
        emitted = EmittedChunk(
            id=chunk.id,
            audio_url=chunk.processed_audio_ref,
            transcript=best_text(chunk.transcripts, self.source_priority),
            start_time=chunk.start_time,
            end_time=chunk.end_time,
            vad_score=chunk.vad_score if chunk.vad_score is not None else 0.0,
            is_complete=not timed_out,
            sources={source.value: text for source, text in chunk.transcripts.items()},
            metadata={"timed_out": timed_out},
        )

        try:
            ctx = await self.pipeline.run(emitted)
        except Exception as e:
            # Stage failures are isolated inside the pipeline; this is a pipeline bug
            logger.error("middleware_pipeline_failed", chunk_id=chunk.id, error=str(e))
            ctx = None

        if self._stopped:
            self._stats.emissions_suppressed += 1
            logger.info("emission_suppressed", chunk_id=chunk.id, reason="stopped")
            return

        if ctx is not None:
            emitted = finalize(ctx)
        emitted_at = self._clock()
        latency_ms = emitted_at - chunk.created_at_ms

        chunk.processing_latency_ms = latency_ms
        chunk.is_complete = not timed_out
        emitted.processing_latency = latency_ms
        emitted.is_complete = not timed_out

        self.retained.append(emitted)
        await self._deliver(emitted)

        if not timed_out:
            chunk.state = ChunkState.EMITTED
        self._stats.record_emission(latency_ms, timed_out)

        self.monitor.record(
            LatencySample(
                chunk_id=chunk.id,
                captured_at_ms=emitted_at,
                stage_latencies=StageLatencies(
                    audio_processing=_since(chunk.created_at_ms, chunk.audio_ready_at_ms),
                    transcription=_since(chunk.created_at_ms, chunk.transcript_ready_at_ms),
                    middleware=float(emitted.metadata.get("total_middleware_time", 0.0)),
                ),
                total_latency_ms=latency_ms,
                vad_score=chunk.vad_score,
            )
        )

        self._final_states[chunk.id] = chunk.state
        self.registry.dispose(chunk.id)
        # Finished chunks are recognised through _final_states from here on
        self._claimed.discard(chunk.id)
        logger.debug(
            "chunk_emitted",
            chunk_id=chunk.id,
            state=chunk.state.value,
            latency_ms=round(latency_ms, 2),
        )

    async def _deliver(self, emitted: EmittedChunk) -> None:
        if self._on_emit is None:
            return
        try:
            result = self._on_emit(emitted)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._stats.callback_errors += 1
            logger.error("emit_callback_failed", chunk_id=emitted.id, error=str(e), exc_info=e)

    # =========================================================================
    # Lifecycle and introspection
    # =========================================================================

    def stop(self) -> None:
        """Cancel every pending timeout and suppress undelivered emissions."""
        self._stopped = True
        for handle in self._timeouts.values():
            handle.cancel()
        cancelled = len(self._timeouts)
        self._timeouts.clear()
        logger.info(
            "coordinator_stopped",
            timeouts_cancelled=cancelled,
            emissions_in_flight=len(self._background_tasks),
        )

    async def flush(self) -> None:
        """Wait for emissions already in flight."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def get_state(self, chunk_id: str) -> ChunkState:
        chunk = self.registry.get(chunk_id)
        if chunk is not None:
            return chunk.state
        if chunk_id in self._final_states:
            return self._final_states[chunk_id]
        raise UnknownChunkError(chunk_id)

    def pending_chunk_ids(self) -> list[str]:
        return [cid for cid in self.registry.chunk_ids() if cid not in self._claimed]

    def get_stats(self) -> dict[str, Any]:
        stats = self._stats.to_dict()
        stats["pending_chunks"] = len(self.pending_chunk_ids())
        stats["emissions_in_flight"] = len(self._background_tasks)
        stats["stopped"] = self._stopped
        return stats

    @property
    def stats(self) -> CoordinatorStats:
        return self._stats

    # Callback setters
    def on_emit(self, callback: EmitCallback) -> "ChunkEmissionCoordinator":
        """Set callback invoked once per emitted chunk."""
        self._on_emit = callback
        return self

    def _is_finished(self, chunk_id: str) -> bool:
        return chunk_id in self._final_states

    def _drop_late_event(self, kind: str, chunk_id: str) -> None:
        self._stats.late_events += 1
        logger.debug("late_event_dropped", kind=kind, chunk_id=chunk_id, stopped=self._stopped)


def _since(start_ms: float, end_ms: float | None) -> float:
    if end_ms is None:
        return 0.0
    return max(0.0, end_ms - start_ms)
