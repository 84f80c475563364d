"""
Refinement Service Wire Models

Request/response bodies for the refinement service:
- POST /refine  {web_speech_text, deepgram_text, language}
                -> {refined_text, confidence, fallback?}
- GET  /health  -> {status, model_size, ...}
"""

from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from conversational_pipeline.models import TranscriptSource


class RefineRequest(BaseModel):
    """Request model for refinement"""

    web_speech_text: str = ""
    deepgram_text: str = ""
    language: str = "es"

    @classmethod
    def from_sources(cls, texts: Mapping[TranscriptSource, str], language: str) -> "RefineRequest":
        """Build a request from per-source texts.

        The service takes two inputs: the instantaneous text and the
        processed text. The processed slot prefers cloud ASR and falls back
        to the local neural model.
        """
        processed = texts.get(TranscriptSource.CLOUD_ASR, "") or texts.get(
            TranscriptSource.LOCAL_NEURAL, ""
        )
        return cls(
            web_speech_text=texts.get(TranscriptSource.WEB_SPEECH, ""),
            deepgram_text=processed,
            language=language,
        )

    @property
    def has_text(self) -> bool:
        return bool(self.web_speech_text.strip() or self.deepgram_text.strip())


class RefineResponse(BaseModel):
    """Response model for refinement"""

    refined_text: str
    confidence: float = 0.0
    fallback: bool = False

    model_config = ConfigDict(extra="ignore")


class HealthResponse(BaseModel):
    """Health payload; unknown fields are kept."""

    status: Literal["healthy", "unhealthy"] = "unhealthy"
    model_size: str | None = None
    error: str | None = Field(default=None, description="Client-side failure reason")

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"
