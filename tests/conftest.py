"""Shared fixtures for the conversational pipeline tests."""

import pytest

from conversational_pipeline.models import EmittedChunk, LatencySample, StageLatencies


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_sample():
    def _make(
        total: float,
        chunk_id: str = "c",
        audio: float = 0.0,
        transcription: float = 0.0,
        middleware: float = 0.0,
    ) -> LatencySample:
        return LatencySample(
            chunk_id=chunk_id,
            captured_at_ms=0.0,
            stage_latencies=StageLatencies(
                audio_processing=audio,
                transcription=transcription,
                middleware=middleware,
            ),
            total_latency_ms=total,
        )

    return _make


@pytest.fixture
def make_emitted():
    def _make(chunk_id: str = "c1", transcript: str = "hola", audio_url: str | None = None):
        return EmittedChunk(
            id=chunk_id,
            audio_url=audio_url if audio_url is not None else f"blob:{chunk_id}",
            transcript=transcript,
            start_time=0.0,
            end_time=8000.0,
            vad_score=0.7,
            is_complete=True,
        )

    return _make


@pytest.fixture
def emitted_chunks():
    """List that collects emitted chunks; pass ``emitted_chunks.append`` as callback."""
    return []
