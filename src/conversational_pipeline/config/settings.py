"""
Configuration for the conversational chunk pipeline.

ServiceSettings carries process-level logging options; PipelineSettings
carries every pipeline knob and reads ``CHUNK_PIPELINE_*`` environment
variables.
"""

import os
from dataclasses import dataclass, field

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from conversational_pipeline.models import DEFAULT_SOURCE_PRIORITY, TranscriptSource


@dataclass(frozen=True)
class ServiceSettings:
    """Immutable service configuration read from environment variables."""

    service_name: str = "conversational-pipeline"
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    def __post_init__(self) -> None:
        object.__setattr__(self, "log_level", self.log_level.upper())


class PipelineSettings(BaseSettings):
    """Pipeline tuning knobs; every field has a working default."""

    chunk_timeout_ms: float = Field(
        default=4000.0,
        gt=0,
        description="Force-emit a chunk this long after creation",
    )
    refine_debounce_ms: float = Field(
        default=500.0,
        ge=0,
        description="Quiet period before a refinement request is dispatched",
    )
    latency_window_capacity: int = Field(
        default=200,
        gt=0,
        description="Number of latency samples kept by the monitor",
    )
    latency_target_ms: float = Field(
        default=300.0,
        gt=0,
        description="Average latency below which the target is considered met",
    )
    retention_ceiling: int = Field(
        default=100,
        gt=0,
        description="Maximum emitted chunks retained for read-out",
    )
    refinement_url: str | None = Field(
        default=None,
        description="Base URL of the refinement service; refinement is off when unset",
    )
    refinement_timeout_s: float = Field(default=10.0, gt=0)
    language: str = Field(default="es", description="Language hint sent with refinement")
    source_priority: list[TranscriptSource] = Field(
        default_factory=lambda: list(DEFAULT_SOURCE_PRIORITY),
        description="Fallback display order, best first",
    )
    auto_optimize: bool = Field(
        default=False,
        description="Apply latency optimisation hints (e.g. disable slow middleware)",
    )

    model_config = SettingsConfigDict(env_prefix="CHUNK_PIPELINE_")

    @field_validator("source_priority")
    @classmethod
    def validate_source_priority(cls, value: list[TranscriptSource]) -> list[TranscriptSource]:
        if len(set(value)) != len(value):
            raise ValueError("source_priority must not repeat a source")
        missing = set(TranscriptSource) - set(value)
        if missing:
            names = ", ".join(sorted(source.value for source in missing))
            raise ValueError(f"source_priority is missing: {names}")
        return value

    @property
    def chunk_timeout_s(self) -> float:
        return self.chunk_timeout_ms / 1000.0

    @property
    def refine_debounce_s(self) -> float:
        return self.refine_debounce_ms / 1000.0
