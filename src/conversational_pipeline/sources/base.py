"""
Base Transcription Source

Interface for the independent transcription producers (instantaneous
recognizer, cloud ASR, local neural model). A source pushes
``(chunk_id | None, text)`` to its listener; ``None`` means the text is
session-level rather than tied to one chunk.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from conversational_pipeline.models import TranscriptSource

TranscriptListener = Callable[[TranscriptSource, str | None, str], None]


class TranscriptionSource(ABC):
    """
    Abstract base for transcription producers.

    Usage:
        source = QueueTranscriptionSource(TranscriptSource.CLOUD_ASR)
        source.set_listener(session.on_transcript)
        await source.start()
    """

    def __init__(self) -> None:
        self._listener: TranscriptListener | None = None

    @property
    @abstractmethod
    def source(self) -> TranscriptSource:
        """Which producer this is."""

    @abstractmethod
    async def start(self) -> None:
        """Begin producing text."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing text. Must be safe to call twice."""

    def set_listener(self, listener: TranscriptListener | None) -> None:
        self._listener = listener

    def emit(self, chunk_id: str | None, text: str) -> None:
        """Forward one transcript to the listener, if any."""
        if self._listener is not None:
            self._listener(self.source, chunk_id, text)
