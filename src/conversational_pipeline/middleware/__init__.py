"""Chunk enrichment middleware."""

from .pipeline import FunctionStage, MiddlewarePipeline, MiddlewareStage
from .stages import (
    IntentStage,
    QualityStage,
    SentimentStage,
    TranslationStage,
    create_default_pipeline,
)

__all__ = [
    "FunctionStage",
    "IntentStage",
    "MiddlewarePipeline",
    "MiddlewareStage",
    "QualityStage",
    "SentimentStage",
    "TranslationStage",
    "create_default_pipeline",
]
