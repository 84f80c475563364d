"""
Chunk Registry

Single source of truth for per-chunk facet readiness. Holds one Chunk per
id and records when each facet landed. The registry has no business logic:
emission decisions live in the ChunkEmissionCoordinator.

All mutations run on the event loop thread, so no locking is needed.
"""

import time
from collections.abc import Callable, Iterator

from conversational_pipeline.errors import DuplicateChunkError, UnknownChunkError
from conversational_pipeline.logging import get_logger
from conversational_pipeline.models import Chunk, ChunkState, TranscriptSource

logger = get_logger()


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0


class ChunkRegistry:
    """
    Append-only store of chunks keyed by id.

    Usage:
        registry = ChunkRegistry()
        registry.create("chunk-1", start_time=0, end_time=8000)
        registry.set_audio_ready("chunk-1", "blob:abc", vad_score=0.8)
        registry.append_transcript("chunk-1", TranscriptSource.CLOUD_ASR, "hola")
        registry.is_ready("chunk-1")  # True
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms):
        self._clock = clock
        self._chunks: dict[str, Chunk] = {}
        # Ids of disposed chunks; kept so duplicates are still rejected.
        self._disposed: set[str] = set()

    def create(self, chunk_id: str, start_time: float, end_time: float) -> Chunk:
        if chunk_id in self._chunks or chunk_id in self._disposed:
            raise DuplicateChunkError(chunk_id)
        chunk = Chunk(
            id=chunk_id,
            start_time=start_time,
            end_time=end_time,
            created_at_ms=self._clock(),
        )
        self._chunks[chunk_id] = chunk
        logger.debug("chunk_created", chunk_id=chunk_id, start_time=start_time, end_time=end_time)
        return chunk

    def set_audio_ready(
        self, chunk_id: str, processed_audio_ref: str, vad_score: float | None = None
    ) -> Chunk:
        chunk = self._require(chunk_id)
        if chunk.has_audio:
            logger.warning("audio_facet_overwritten", chunk_id=chunk_id)
        chunk.processed_audio_ref = processed_audio_ref
        chunk.vad_score = _clamp_unit(vad_score) if vad_score is not None else None
        chunk.audio_ready_at_ms = self._clock()
        return chunk

    def append_transcript(self, chunk_id: str, source: TranscriptSource, text: str) -> Chunk:
        """Record ``text`` for ``source``; later text replaces earlier (partial then final)."""
        chunk = self._require(chunk_id)
        source = TranscriptSource(source)
        chunk.transcripts[source] = text or ""
        if chunk.transcript_ready_at_ms is None and text and text.strip():
            chunk.transcript_ready_at_ms = self._clock()
        return chunk

    def is_ready(self, chunk_id: str) -> bool:
        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            return False
        return chunk.has_audio and chunk.has_transcript

    def get(self, chunk_id: str) -> Chunk | None:
        return self._chunks.get(chunk_id)

    def facet_state(self, chunk_id: str) -> ChunkState:
        """Pre-emission state implied by the facets present."""
        chunk = self._require(chunk_id)
        if chunk.state.is_terminal or chunk.state == ChunkState.READY:
            return chunk.state
        if chunk.has_audio and chunk.has_transcript:
            return ChunkState.READY
        if chunk.has_audio:
            return ChunkState.AUDIO_READY
        if chunk.has_transcript:
            return ChunkState.TRANSCRIPT_READY
        return ChunkState.PENDING

    def dispose(self, chunk_id: str) -> None:
        """Drop a chunk's facets; its id stays reserved."""
        if self._chunks.pop(chunk_id, None) is not None:
            self._disposed.add(chunk_id)

    def chunk_ids(self) -> list[str]:
        return list(self._chunks)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._chunks

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(list(self._chunks.values()))

    def _require(self, chunk_id: str) -> Chunk:
        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            raise UnknownChunkError(chunk_id, disposed=chunk_id in self._disposed)
        return chunk


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))
