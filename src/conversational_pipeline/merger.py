"""
Source Merger

Keeps the latest text from every transcription source and exposes one
display text for the session:

    refined > cloud ASR > local neural > web speech   (default policy)

Updates from a trigger source (cloud ASR by default) arm a trailing
debounce. When the quiet period elapses the latest text of every source is
sent to the refiner. At most one refinement runs at a time; a debounce that
fires while a call is in flight is deferred until that call resolves.

Usage:
    merger = SourceMerger(refiner=client.refine, debounce_ms=500)
    merger.on_source_text(TranscriptSource.WEB_SPEECH, "hola")
    merger.on_source_text(TranscriptSource.CLOUD_ASR, "hola mundo", chunk_id="c1")
    text = merger.current_text()
"""

import asyncio
from collections.abc import Callable, Iterable, Mapping

from conversational_pipeline.clients.protocol import Refiner
from conversational_pipeline.logging import get_logger, log_performance
from conversational_pipeline.models import (
    DEFAULT_SOURCE_PRIORITY,
    MergedText,
    TranscriptSource,
    best_text,
)

logger = get_logger()

DEFAULT_DEBOUNCE_MS = 500.0
DEFAULT_TRIGGER_SOURCES = (TranscriptSource.CLOUD_ASR,)
# Refinement round trips above this are logged as slow
REFINE_SLOW_MS = 2000.0


class SourceMerger:
    """Priority fallback across sources plus debounced refinement."""

    def __init__(
        self,
        refiner: Refiner | None = None,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
        source_priority: Iterable[TranscriptSource] = DEFAULT_SOURCE_PRIORITY,
        trigger_sources: Iterable[TranscriptSource] = DEFAULT_TRIGGER_SOURCES,
    ):
        self.refiner = refiner
        self.debounce_s = max(0.0, debounce_ms) / 1000.0
        self.source_priority = tuple(TranscriptSource(s) for s in source_priority)
        self.trigger_sources = frozenset(TranscriptSource(s) for s in trigger_sources)

        # Flipped off by the session when the refinement health check fails
        self.refinement_enabled = refiner is not None
        self.refinement_count = 0
        self.refinement_failures = 0

        self._texts: dict[TranscriptSource, str] = {}
        self._chunk_texts: dict[TranscriptSource, dict[str, str]] = {}
        self._refined = ""

        self._debounce_handle: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task | None = None
        self._pending = False
        self._closed = False

        self._on_text_changed: Callable[[str], None] | None = None

    # =========================================================================
    # Source updates
    # =========================================================================

    def on_source_text(
        self, source: TranscriptSource | str, text: str, chunk_id: str | None = None
    ) -> None:
        """Record a source's latest text.

        Session-level text (no chunk id) replaces the source's text. Chunk
        scoped text is kept per chunk and the source's text becomes the
        chunk texts joined in arrival order.
        """
        source = TranscriptSource(source)
        text = text or ""

        if chunk_id is None:
            self._texts[source] = text
        else:
            per_chunk = self._chunk_texts.setdefault(source, {})
            per_chunk[chunk_id] = text
            self._texts[source] = " ".join(t.strip() for t in per_chunk.values() if t.strip())

        self._notify()

        if source in self.trigger_sources:
            self._arm_debounce()

    def current_text(self) -> str:
        if self._refined.strip():
            return self._refined
        return best_text(self._texts, self.source_priority)

    def snapshot(self) -> MergedText:
        return MergedText(
            by_source=dict(self._texts),
            refined_text=self._refined,
            refining=self.is_refining,
        )

    @property
    def is_refining(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # =========================================================================
    # Refinement
    # =========================================================================

    async def refine(self, texts: Mapping[TranscriptSource, str] | None = None) -> str | None:
        """Ask the refiner for a consolidated text.

        Returns the refined text, or None when refinement is unavailable or
        fails. A failure clears any earlier refined text so the display
        falls back to the freshest source text.
        """
        if self.refiner is None or not self.refinement_enabled:
            return None

        payload = dict(texts if texts is not None else self._texts)
        try:
            with log_performance(
                logger, "refine", slow_ms=REFINE_SLOW_MS, sources=[s.value for s in payload]
            ) as perf:
                refined = await self.refiner(payload)
                perf["refined_chars"] = len(refined or "")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.refinement_failures += 1
            self._refined = ""
            logger.warning(
                "refinement_unavailable",
                error=str(e),
                error_code=getattr(e, "error_code", None),
            )
            self._notify()
            return None

        if not refined or not refined.strip():
            self.refinement_failures += 1
            self._refined = ""
            logger.warning("refinement_empty")
            return None

        self.refinement_count += 1
        self._refined = refined
        logger.debug("refinement_applied", refinement_count=self.refinement_count)
        self._notify()
        return refined

    def _arm_debounce(self) -> None:
        if self._closed or self.refiner is None or not self.refinement_enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("refinement_skipped_no_loop")
            return

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.debounce_s, self._on_debounce_elapsed)

    def _on_debounce_elapsed(self) -> None:
        self._debounce_handle = None
        if self._closed:
            return
        if self.is_refining:
            self._pending = True
            return
        self._dispatch()

    def _dispatch(self) -> None:
        self._inflight = asyncio.get_running_loop().create_task(self._run_refinement())

    async def _run_refinement(self) -> None:
        try:
            await self.refine()
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None
            if self._pending and not self._closed:
                self._pending = False
                self._dispatch()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def abandon(self) -> None:
        """Cancel the debounce timer and any in-flight refinement. Never raises."""
        self._closed = True
        self._pending = False
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            logger.info("refinement_abandoned")
        self._inflight = None

    def reset(self) -> None:
        """Abandon pending work and forget every text."""
        self.abandon()
        self._texts.clear()
        self._chunk_texts.clear()
        self._refined = ""
        self._closed = False

    # Callback setters
    def on_text_changed(self, callback: Callable[[str], None]) -> "SourceMerger":
        """Set callback invoked with the current display text after every change."""
        self._on_text_changed = callback
        return self

    def _notify(self) -> None:
        if self._on_text_changed is None:
            return
        try:
            self._on_text_changed(self.current_text())
        except Exception as e:
            logger.warning("text_changed_callback_failed", error=str(e))
