"""
Conversational chunk pipeline.

Joins per-chunk audio and multi-source transcripts into one conversational
unit per chunk, emitted at most once, enriched by togglable middleware, and
measured by a rolling latency monitor.
"""

from conversational_pipeline.config import PipelineSettings, ServiceSettings
from conversational_pipeline.coordinator import ChunkEmissionCoordinator, CoordinatorStats
from conversational_pipeline.latency import LatencyMonitor, LatencyReport
from conversational_pipeline.merger import SourceMerger
from conversational_pipeline.middleware import MiddlewarePipeline, create_default_pipeline
from conversational_pipeline.models import (
    Chunk,
    ChunkState,
    EmittedChunk,
    LatencySample,
    MergedText,
    MiddlewareContext,
    TranscriptSource,
)
from conversational_pipeline.registry import ChunkRegistry
from conversational_pipeline.retention import RetainedChunks
from conversational_pipeline.session import AudioReadyEvent, ConversationalSession

__version__ = "0.1.0"

__all__ = [
    "AudioReadyEvent",
    "Chunk",
    "ChunkEmissionCoordinator",
    "ChunkRegistry",
    "ChunkState",
    "ConversationalSession",
    "CoordinatorStats",
    "EmittedChunk",
    "LatencyMonitor",
    "LatencyReport",
    "LatencySample",
    "MergedText",
    "MiddlewareContext",
    "MiddlewarePipeline",
    "PipelineSettings",
    "RetainedChunks",
    "ServiceSettings",
    "SourceMerger",
    "TranscriptSource",
    "__version__",
    "create_default_pipeline",
]
