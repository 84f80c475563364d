"""
Conversational Session

Wires registry, merger, middleware, latency monitor, retention and the
emission coordinator for one capture session, and owns start/stop.

Stop is ordered:
    1. cancel every pending chunk timeout (undelivered chunks are dropped)
    2. abandon any in-flight refinement
    3. revoke every retained audio reference, then the audio of chunks
       that were never emitted
    4. keep the retained chunk list for read-out

Usage:
    session = ConversationalSession(PipelineSettings(), on_emit=print)
    session.add_source(QueueTranscriptionSource(TranscriptSource.CLOUD_ASR))
    await session.start()
    session.on_audio_ready(AudioReadyEvent(id="c1", start_time=0, end_time=8000,
                                           processed_audio_ref="blob:abc", vad_score=0.8))
    ...
    await session.stop()
    chunks = session.get_chunks()
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from conversational_pipeline.clients import RefinementClient
from conversational_pipeline.clients.protocol import Refiner
from conversational_pipeline.config import PipelineSettings
from conversational_pipeline.coordinator import ChunkEmissionCoordinator, EmitCallback
from conversational_pipeline.engine import AudioEngineManager
from conversational_pipeline.errors import UnknownChunkError
from conversational_pipeline.latency import LatencyMonitor, LatencyReport, OptimizationHint
from conversational_pipeline.logging import get_logger
from conversational_pipeline.merger import SourceMerger
from conversational_pipeline.middleware import MiddlewarePipeline, create_default_pipeline
from conversational_pipeline.models import EmittedChunk, TranscriptSource
from conversational_pipeline.registry import ChunkRegistry, monotonic_ms
from conversational_pipeline.retention import AudioRevoker, RetainedChunks
from conversational_pipeline.sources import TranscriptionSource

logger = get_logger()


@dataclass
class AudioReadyEvent:
    """Processed audio for one chunk, as reported by the capture side."""

    id: str
    start_time: float
    end_time: float
    processed_audio_ref: str
    vad_score: float | None = None
    duration_ms: float | None = None

    def __post_init__(self) -> None:
        if self.duration_ms is None:
            self.duration_ms = self.end_time - self.start_time


class ConversationalSession:
    """One capture session from start to stop."""

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        *,
        on_emit: EmitCallback | None = None,
        refiner: Refiner | None = None,
        refinement_client: RefinementClient | None = None,
        pipeline: MiddlewarePipeline | None = None,
        revoke_audio: AudioRevoker | None = None,
        engine_manager: AudioEngineManager | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.settings = settings or PipelineSettings()
        s = self.settings

        if refinement_client is None and refiner is None and s.refinement_url:
            refinement_client = RefinementClient(
                base_url=s.refinement_url,
                timeout=s.refinement_timeout_s,
                language=s.language,
            )
        self.refinement_client = refinement_client
        if refiner is None and refinement_client is not None:
            refiner = refinement_client.refine

        self.engine_manager = engine_manager
        self.registry = ChunkRegistry(clock=clock)
        self.monitor = LatencyMonitor(
            window_capacity=s.latency_window_capacity,
            target_threshold_ms=s.latency_target_ms,
        )
        self.pipeline = pipeline or create_default_pipeline(source_language=s.language)
        self.retained = RetainedChunks(ceiling=s.retention_ceiling, revoke=revoke_audio)
        self.merger = SourceMerger(
            refiner=refiner,
            debounce_ms=s.refine_debounce_ms,
            source_priority=s.source_priority,
        )
        self.coordinator = ChunkEmissionCoordinator(
            registry=self.registry,
            pipeline=self.pipeline,
            monitor=self.monitor,
            retained=self.retained,
            merger=self.merger,
            on_emit=on_emit,
            chunk_timeout_ms=s.chunk_timeout_ms,
            source_priority=s.source_priority,
            clock=clock,
        )

        if s.auto_optimize:
            self.monitor.add_listener(self._apply_optimization)

        self.sources: list[TranscriptionSource] = []
        self._started = False
        self._stopped = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Bring up the engine, probe refinement, start sources.

        Raises:
            EngineInitializationError: if the audio engine fails to start
        """
        if self._started:
            return

        if self.engine_manager is not None:
            await self.engine_manager.initialize()

        if self.refinement_client is not None:
            await self.refinement_client.connect()
            health = await self.refinement_client.health_check()
            self.merger.refinement_enabled = health.is_healthy
            logger.info(
                "refinement_health_checked",
                status=health.status,
                refinement_enabled=self.merger.refinement_enabled,
            )

        for source in self.sources:
            await self._start_source(source)

        self._started = True
        logger.info("session_started", sources=[s.source.value for s in self.sources])

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True

        self.coordinator.stop()
        self.merger.abandon()

        for source in self.sources:
            try:
                await source.stop()
            except Exception as e:
                logger.warning("source_stop_failed", source=source.source.value, error=str(e))

        revoked = self.retained.release_all()
        revoked += self._revoke_unemitted_audio()

        if self.refinement_client is not None:
            await self.refinement_client.close()
        if self.engine_manager is not None:
            await self.engine_manager.destroy()

        logger.info(
            "session_stopped",
            retained_chunks=len(self.retained),
            audio_refs_revoked=revoked,
        )

    def _revoke_unemitted_audio(self) -> int:
        revoked = 0
        for chunk_id in self.registry.chunk_ids():
            chunk = self.registry.get(chunk_id)
            if chunk is not None and self.retained.revoke(chunk.processed_audio_ref, chunk_id=chunk_id):
                revoked += 1
        return revoked

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    # =========================================================================
    # Capture and source events
    # =========================================================================

    def add_source(self, source: TranscriptionSource) -> "ConversationalSession":
        self.sources.append(source)
        source.set_listener(self.on_transcript)
        return self

    def on_new_chunk(self, chunk_id: str, start_time: float, end_time: float) -> None:
        self.coordinator.create_chunk(chunk_id, start_time, end_time)

    def on_audio_ready(self, event: AudioReadyEvent) -> None:
        """Attach processed audio; an unseen chunk id is registered first."""
        if self._stopped:
            logger.debug("audio_ready_after_stop", chunk_id=event.id)
            return
        if not self._is_known(event.id):
            self.coordinator.create_chunk(event.id, event.start_time, event.end_time)
        self.coordinator.on_audio_ready(event.id, event.processed_audio_ref, event.vad_score)

    def on_transcript(self, source: TranscriptSource, chunk_id: str | None, text: str) -> None:
        if self._stopped:
            logger.debug("transcript_after_stop", source=TranscriptSource(source).value)
            return
        if chunk_id is None:
            self.merger.on_source_text(source, text)
            return
        try:
            self.coordinator.on_transcript(chunk_id, source, text)
        except UnknownChunkError:
            logger.warning(
                "transcript_for_unknown_chunk",
                source=TranscriptSource(source).value,
                chunk_id=chunk_id,
            )
            self.merger.on_source_text(source, text, chunk_id=chunk_id)

    async def _start_source(self, source: TranscriptionSource) -> None:
        try:
            await source.start()
        except Exception as e:
            logger.warning("source_start_failed", source=source.source.value, error=str(e))

    def _is_known(self, chunk_id: str) -> bool:
        try:
            self.coordinator.get_state(chunk_id)
        except UnknownChunkError:
            return False
        return True

    def _apply_optimization(self, hint: OptimizationHint) -> None:
        if hint.action != "disable-middleware":
            logger.info("optimization_hint_ignored", rule=hint.rule, action=hint.action)
            return
        for name in hint.payload.get("stages", []):
            if name in self.pipeline.stage_names and self.pipeline.is_enabled(name):
                self.pipeline.disable(name)
                logger.info("middleware_auto_disabled", stage=name, rule=hint.rule)

    # =========================================================================
    # Read-out
    # =========================================================================

    def current_text(self) -> str:
        return self.merger.current_text()

    def get_chunks(self) -> list[EmittedChunk]:
        return self.retained.list()

    def get_chunk(self, chunk_id: str) -> EmittedChunk | None:
        return self.retained.get(chunk_id)

    def latency_report(self) -> LatencyReport:
        return self.monitor.generate_report()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "coordinator": self.coordinator.get_stats(),
            "middleware": self.pipeline.get_status(),
            "latency": self.monitor.get_realtime_status().to_dict(),
            "merged_text": self.merger.snapshot().to_dict(),
            "refinement": {
                "enabled": self.merger.refinement_enabled,
                "count": self.merger.refinement_count,
                "failures": self.merger.refinement_failures,
            },
            "retained_chunks": len(self.retained),
        }
