"""Transcription source adapters."""

from .base import TranscriptionSource, TranscriptListener
from .queue_source import QueueTranscriptionSource

__all__ = ["QueueTranscriptionSource", "TranscriptListener", "TranscriptionSource"]
