"""Structured error hierarchy for the conversational chunk pipeline."""

from conversational_pipeline.errors.exceptions import (
    DuplicateChunkError,
    EngineInitializationError,
    MiddlewareStageError,
    PipelineError,
    RefinementUnavailableError,
    UnknownChunkError,
)

__all__ = [
    "DuplicateChunkError",
    "EngineInitializationError",
    "MiddlewareStageError",
    "PipelineError",
    "RefinementUnavailableError",
    "UnknownChunkError",
]
