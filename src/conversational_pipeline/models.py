"""
Pipeline Data Model

Types shared by the registry, merger, middleware pipeline, latency monitor
and emission coordinator:

- Chunk: mutable per-chunk facet record owned by the ChunkRegistry
- EmittedChunk: the conversational unit handed to the emission callback
- MergedText: rolling session-level text view owned by the SourceMerger
- LatencySample: immutable timing sample owned by the LatencyMonitor
- MiddlewareContext: per-run scratch space for middleware stages
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TranscriptSource(str, Enum):
    """Independent transcription producers."""

    WEB_SPEECH = "web-speech"  # instantaneous local recognizer
    CLOUD_ASR = "cloud-asr"  # network-bound transcription service
    LOCAL_NEURAL = "local-neural"  # locally-run neural model


# Fallback order for display, best first. Refined text always outranks these.
DEFAULT_SOURCE_PRIORITY: tuple[TranscriptSource, ...] = (
    TranscriptSource.CLOUD_ASR,
    TranscriptSource.LOCAL_NEURAL,
    TranscriptSource.WEB_SPEECH,
)


class ChunkState(str, Enum):
    """Per-chunk emission state machine."""

    PENDING = "pending"
    AUDIO_READY = "audio_ready"
    TRANSCRIPT_READY = "transcript_ready"
    READY = "ready"
    EMITTED = "emitted"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ChunkState.EMITTED, ChunkState.TIMED_OUT)


class LatencyTrend(str, Enum):
    IMPROVING = "improving"
    DEGRADING = "degrading"
    STABLE = "stable"


def best_text(
    texts: dict[TranscriptSource, str],
    priority: tuple[TranscriptSource, ...] = DEFAULT_SOURCE_PRIORITY,
) -> str:
    """Return the first non-empty text following ``priority``."""
    for source in priority:
        text = texts.get(source, "")
        if text and text.strip():
            return text
    return ""


# =============================================================================
# Chunk
# =============================================================================


@dataclass
class Chunk:
    """
    A fixed-duration segment of the capture and its facets.

    Identity and timing are immutable after creation; the audio facet and
    per-source transcripts are filled in by independent producers.

    Attributes:
        id: Opaque chunk identifier
        start_time: Recording-relative start in ms
        end_time: Recording-relative end in ms
        created_at_ms: Monotonic clock reading when the chunk was registered
        vad_score: Voice-activity confidence in [0, 1]
        processed_audio_ref: Reference to processed audio (URL, path, handle)
        transcripts: Latest raw text per source
        state: Emission state machine position
    """

    id: str
    start_time: float
    end_time: float
    created_at_ms: float
    vad_score: float | None = None
    processed_audio_ref: str | None = None
    transcripts: dict[TranscriptSource, str] = field(default_factory=dict)
    audio_ready_at_ms: float | None = None
    transcript_ready_at_ms: float | None = None
    state: ChunkState = ChunkState.PENDING
    is_complete: bool = False
    processing_latency_ms: float | None = None

    @property
    def duration_ms(self) -> float:
        return self.end_time - self.start_time

    @property
    def has_audio(self) -> bool:
        return self.processed_audio_ref is not None

    @property
    def has_transcript(self) -> bool:
        return any(text.strip() for text in self.transcripts.values())


# =============================================================================
# Emitted chunk
# =============================================================================


@dataclass
class EmittedChunk:
    """The conversational unit delivered to the emission callback."""

    id: str
    audio_url: str | None
    transcript: str
    start_time: float
    end_time: float
    vad_score: float
    is_complete: bool
    processing_latency: float | None = None
    sources: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape consumers expect."""
        return {
            "id": self.id,
            "audioUrl": self.audio_url,
            "transcript": self.transcript,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "vadScore": self.vad_score,
            "isComplete": self.is_complete,
            "processingLatency": self.processing_latency,
            "sources": dict(self.sources),
            "metadata": dict(self.metadata),
        }


# =============================================================================
# Merged text
# =============================================================================


@dataclass
class MergedText:
    """Session-level view of every source's latest text."""

    by_source: dict[TranscriptSource, str] = field(default_factory=dict)
    refined_text: str = ""
    refining: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "by_source": {source.value: text for source, text in self.by_source.items()},
            "refined_text": self.refined_text,
            "refining": self.refining,
        }


# =============================================================================
# Latency samples
# =============================================================================


@dataclass(frozen=True)
class StageLatencies:
    """Per-stage latency breakdown in ms."""

    audio_processing: float = 0.0
    transcription: float = 0.0
    middleware: float = 0.0


@dataclass(frozen=True)
class LatencySample:
    """One chunk's timing, recorded at emission."""

    chunk_id: str
    captured_at_ms: float
    stage_latencies: StageLatencies
    total_latency_ms: float
    vad_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "captured_at_ms": self.captured_at_ms,
            "total_latency_ms": self.total_latency_ms,
            "audio_processing_ms": self.stage_latencies.audio_processing,
            "transcription_ms": self.stage_latencies.transcription,
            "middleware_ms": self.stage_latencies.middleware,
            "vad_score": self.vad_score,
        }


# =============================================================================
# Middleware context
# =============================================================================


@dataclass
class MiddlewareContext:
    """Scratch space a middleware run threads through its stages."""

    chunk: EmittedChunk
    metadata: dict[str, Any] = field(default_factory=dict)
    stage: str | None = None
